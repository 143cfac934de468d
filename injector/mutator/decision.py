from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import AbstractSet, Any, Mapping, Optional

from ..common.annotations import STATUS_INJECTED, AnnotationKeys, read_annotations
from ..config.injection import InjectorConfig

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    INJECT = "inject"
    SKIP_IGNORED_NAMESPACE = "skip_ignored_namespace"
    SKIP_ALREADY_INJECTED = "skip_already_injected"
    MISSING_REQUEST_ANNOTATION = "missing_request_annotation"
    REQUESTED_SIDECAR_NOT_FOUND = "requested_sidecar_not_found"

    @property
    def is_skip(self) -> bool:
        return self in _SKIP_OUTCOMES

    @property
    def is_misconfiguration(self) -> bool:
        return self is Outcome.REQUESTED_SIDECAR_NOT_FOUND


_SKIP_OUTCOMES = frozenset(
    {
        Outcome.SKIP_IGNORED_NAMESPACE,
        Outcome.SKIP_ALREADY_INJECTED,
        Outcome.MISSING_REQUEST_ANNOTATION,
    }
)


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    template_name: str = ""

    @property
    def should_inject(self) -> bool:
        return self.outcome is Outcome.INJECT


def object_metadata(obj: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    """Return ``obj['metadata']`` for a full object, or ``obj`` if it is metadata already."""

    if not isinstance(obj, Mapping):
        return {}
    metadata = obj.get("metadata")
    if isinstance(metadata, Mapping):
        return metadata
    if "kind" in obj or "spec" in obj:
        return {}
    return obj


def decide(
    ignored_namespaces: AbstractSet[str],
    object_meta: Optional[Mapping[str, Any]],
    config: InjectorConfig,
) -> Decision:
    """Classify an object: which template to inject, or why it is left alone.

    ``object_meta`` may be either the object's metadata or the whole object.
    Namespace policy is checked before any annotation, and the status
    annotation before the request annotation, so an already mutated object is
    never injected twice.
    """

    metadata = object_metadata(object_meta)
    namespace = metadata.get("namespace") or ""
    keys = AnnotationKeys.for_namespace(config.annotation_namespace)

    if namespace in ignored_namespaces:
        logger.debug("Skipping object in ignored namespace %s", namespace)
        return Decision(Outcome.SKIP_IGNORED_NAMESPACE)

    annotations = read_annotations(metadata)
    if annotations and annotations.get(keys.status) == STATUS_INJECTED:
        logger.debug("Skipping object already marked %s=%s", keys.status, STATUS_INJECTED)
        return Decision(Outcome.SKIP_ALREADY_INJECTED)

    requested = annotations.get(keys.request) if annotations else None
    if not isinstance(requested, str) or not requested:
        logger.debug("No %s annotation present; nothing to inject", keys.request)
        return Decision(Outcome.MISSING_REQUEST_ANNOTATION)

    if config.get(requested) is None:
        logger.warning(
            "Requested injection config %r not found (known: %s)",
            requested,
            ", ".join(config.names()) or "<none>",
        )
        return Decision(Outcome.REQUESTED_SIDECAR_NOT_FOUND, requested)

    logger.debug("Selected injection config %s", requested)
    return Decision(Outcome.INJECT, requested)


__all__ = ["Decision", "Outcome", "decide", "object_metadata"]
