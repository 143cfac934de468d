"""Build RFC 6902 JSON patches that merge an injection template into a pod.

Only ``add`` operations are produced. Whether a target array or map already
exists on the pod is asked of :class:`TargetDocument` before choosing between
creating the whole array and appending element by element, because appending
to a missing array is not a valid JSON patch.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import jsonpatch
from jsonpointer import JsonPointer, resolve_pointer

from ..common.annotations import DEFAULT_ANNOTATION_NAMESPACE, STATUS_INJECTED, AnnotationKeys
from ..common.errors import PatchBuildError, PatchEncodingError
from ..config.injection import TARGET_CONTAINER_KEY, InjectionConfig

_MISSING = object()


def pointer(*parts: Any) -> str:
    return JsonPointer.from_parts([str(part) for part in parts]).path


class TargetDocument:
    """Read-only view of the original pod used to answer existence queries."""

    def __init__(self, document: Mapping[str, Any]) -> None:
        self._document = document

    def resolve(self, path: str) -> Any:
        return resolve_pointer(self._document, path, _MISSING)

    def exists(self, path: str) -> bool:
        return self.resolve(path) is not _MISSING

    def has_items(self, path: str) -> bool:
        value = self.resolve(path)
        return isinstance(value, list) and len(value) > 0

    def has_entries(self, path: str) -> bool:
        value = self.resolve(path)
        return isinstance(value, Mapping) and len(value) > 0

    def container_index(self, name: str) -> int:
        containers = self.resolve("/spec/containers")
        if isinstance(containers, list):
            for idx, container in enumerate(containers):
                if isinstance(container, Mapping) and container.get("name") == name:
                    return idx
        raise PatchBuildError(f"container {name!r} not found in pod")

    def container_names(self) -> Set[str]:
        names: Set[str] = set()
        for path in ("/spec/containers", "/spec/initContainers"):
            containers = self.resolve(path)
            if not isinstance(containers, list):
                continue
            for container in containers:
                if isinstance(container, Mapping) and isinstance(container.get("name"), str):
                    names.add(container["name"])
        return names


class _PatchRecorder:
    def __init__(self, target: TargetDocument) -> None:
        self.target = target
        self.operations: List[Dict[str, Any]] = []
        self._created: Set[str] = set()

    def add(self, path: str, value: Any) -> None:
        self.operations.append({"op": "add", "path": path, "value": copy.deepcopy(value)})

    def array_exists(self, path: str) -> bool:
        return path in self._created or self.target.has_items(path)

    def append(self, path: str, value: Any) -> None:
        if not self.array_exists(path):
            raise PatchBuildError(f"cannot append to {path}: array does not exist")
        self.add(f"{path}/-", value)

    def extend(self, path: str, values: Sequence[Any]) -> None:
        if not values:
            return
        if self.array_exists(path):
            for value in values:
                self.append(path, value)
            return
        self.add(path, list(values))
        self._created.add(path)


def _entries(section: str, values: Any) -> List[Dict[str, Any]]:
    if values is None:
        return []
    if not isinstance(values, (list, tuple)):
        raise PatchBuildError(f"template {section} must be a list")
    entries = []
    for idx, value in enumerate(values):
        if not isinstance(value, Mapping):
            raise PatchBuildError(f"template {section}[{idx}] must be a mapping")
        entries.append(dict(value))
    return entries


def _group_by_container(section: str, values: Any) -> List[Tuple[str, List[Dict[str, Any]]]]:
    groups: Dict[str, List[Dict[str, Any]]] = {}
    for idx, entry in enumerate(_entries(section, values)):
        target = entry.pop(TARGET_CONTAINER_KEY, None)
        if not isinstance(target, str) or not target:
            raise PatchBuildError(f"template {section}[{idx}] is missing {TARGET_CONTAINER_KEY}")
        groups.setdefault(target, []).append(entry)
    return list(groups.items())


def _check_container_names(target: TargetDocument, injection: InjectionConfig) -> None:
    taken = target.container_names()
    for section, containers in (
        ("containers", injection.containers),
        ("initContainers", injection.init_containers),
    ):
        for idx, container in enumerate(_entries(section, containers)):
            name = container.get("name")
            if not isinstance(name, str) or not name:
                raise PatchBuildError(f"template {section}[{idx}] is missing a container name")
            if name in taken:
                raise PatchBuildError(f"container name {name!r} already present in pod")
            taken.add(name)


def _annotation_operations(
    recorder: _PatchRecorder,
    keys: AnnotationKeys,
    applied_annotations: Optional[Mapping[str, str]],
) -> None:
    annotations: Dict[str, str] = {
        key: value for key, value in (applied_annotations or {}).items() if key != keys.status
    }
    annotations[keys.status] = STATUS_INJECTED

    target = recorder.target
    if not isinstance(target.resolve("/metadata"), Mapping):
        recorder.add("/metadata", {})
    if not target.has_entries("/metadata/annotations"):
        recorder.add("/metadata/annotations", annotations)
        return
    for key, value in annotations.items():
        recorder.add(pointer("metadata", "annotations", key), value)


def build_patch_operations(
    pod: Mapping[str, Any],
    injection: InjectionConfig,
    applied_annotations: Optional[Mapping[str, str]] = None,
    annotation_namespace: str = DEFAULT_ANNOTATION_NAMESPACE,
) -> List[Dict[str, Any]]:
    if not isinstance(pod, Mapping):
        raise PatchBuildError("pod must be a mapping")
    if not isinstance(pod.get("spec"), Mapping):
        raise PatchBuildError("pod has no spec")

    target = TargetDocument(pod)
    recorder = _PatchRecorder(target)
    _check_container_names(target, injection)

    recorder.extend("/spec/containers", _entries("containers", injection.containers))
    recorder.extend("/spec/volumes", _entries("volumes", injection.volumes))
    for section, field, values in (
        ("volumeMounts", "volumeMounts", injection.volume_mounts),
        ("env", "env", injection.env),
    ):
        for container_name, entries in _group_by_container(section, values):
            idx = target.container_index(container_name)
            recorder.extend(pointer("spec", "containers", idx, field), entries)
    recorder.extend("/spec/hostAliases", _entries("hostAliases", injection.host_aliases))
    recorder.extend("/spec/initContainers", _entries("initContainers", injection.init_containers))

    _annotation_operations(
        recorder, AnnotationKeys.for_namespace(annotation_namespace), applied_annotations
    )
    return recorder.operations


def encode_patch(operations: Iterable[Mapping[str, Any]]) -> bytes:
    try:
        return jsonpatch.JsonPatch(list(operations)).to_string().encode("utf-8")
    except (jsonpatch.JsonPatchException, TypeError, ValueError) as exc:
        raise PatchEncodingError(f"unable to encode JSON patch: {exc}") from exc


def build_patch(
    pod: Mapping[str, Any],
    injection: InjectionConfig,
    applied_annotations: Optional[Mapping[str, str]] = None,
    annotation_namespace: str = DEFAULT_ANNOTATION_NAMESPACE,
) -> bytes:
    """Return the UTF-8 encoded JSON patch that injects ``injection`` into ``pod``."""

    operations = build_patch_operations(
        pod,
        injection,
        applied_annotations=applied_annotations,
        annotation_namespace=annotation_namespace,
    )
    return encode_patch(operations)


__all__ = [
    "TargetDocument",
    "build_patch",
    "build_patch_operations",
    "encode_patch",
    "pointer",
]
