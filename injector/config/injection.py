from __future__ import annotations

import copy
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..common.annotations import DEFAULT_ANNOTATION_NAMESPACE
from ..common.errors import ConfigError

TARGET_CONTAINER_KEY = "containerName"

_LIST_FIELDS = (
    ("containers", "containers"),
    ("volumes", "volumes"),
    ("volumeMounts", "volume_mounts"),
    ("env", "env"),
    ("hostAliases", "host_aliases"),
    ("initContainers", "init_containers"),
)


@dataclass(frozen=True)
class InjectionConfig:
    """A named bundle of pod fragments merged into a pod on request."""

    name: str
    containers: Tuple[Dict[str, Any], ...] = ()
    volumes: Tuple[Dict[str, Any], ...] = ()
    volume_mounts: Tuple[Dict[str, Any], ...] = ()
    env: Tuple[Dict[str, Any], ...] = ()
    host_aliases: Tuple[Dict[str, Any], ...] = ()
    init_containers: Tuple[Dict[str, Any], ...] = ()

    @classmethod
    def from_dict(cls, data: Any, *, source: Optional[str] = None) -> "InjectionConfig":
        where = f" in {source}" if source else ""
        if not isinstance(data, Mapping):
            raise ConfigError(f"injection config{where} must be a mapping")
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigError(f"injection config{where} is missing a name")
        name = name.strip()

        values: Dict[str, Tuple[Dict[str, Any], ...]] = {}
        for key, attr in _LIST_FIELDS:
            raw = data.get(key)
            if raw is None:
                values[attr] = ()
                continue
            if not isinstance(raw, list):
                raise ConfigError(f"{name}{where}: {key} must be a list")
            entries = []
            for idx, entry in enumerate(raw):
                if not isinstance(entry, Mapping):
                    raise ConfigError(f"{name}{where}: {key}[{idx}] must be a mapping")
                entries.append(copy.deepcopy(dict(entry)))
            values[attr] = tuple(entries)

        for attr in ("containers", "init_containers"):
            for idx, container in enumerate(values[attr]):
                if not isinstance(container.get("name"), str) or not container["name"]:
                    raise ConfigError(f"{name}{where}: {attr}[{idx}] is missing a container name")
        for attr in ("volume_mounts", "env"):
            for idx, entry in enumerate(values[attr]):
                target = entry.get(TARGET_CONTAINER_KEY)
                if not isinstance(target, str) or not target:
                    raise ConfigError(
                        f"{name}{where}: {attr}[{idx}] is missing {TARGET_CONTAINER_KEY}"
                    )
        return cls(name=name, **values)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        for key, attr in _LIST_FIELDS:
            entries = getattr(self, attr)
            if entries:
                data[key] = [copy.deepcopy(entry) for entry in entries]
        return data


@dataclass(frozen=True)
class InjectorConfig:
    """Immutable snapshot of every loaded template plus the annotation namespace."""

    annotation_namespace: str = DEFAULT_ANNOTATION_NAMESPACE
    injections: Mapping[str, InjectionConfig] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def build(
        cls,
        injections: Iterable[InjectionConfig],
        annotation_namespace: str = DEFAULT_ANNOTATION_NAMESPACE,
    ) -> "InjectorConfig":
        registry: Dict[str, InjectionConfig] = {}
        for injection in injections:
            if injection.name in registry:
                raise ConfigError(f"duplicate injection config name: {injection.name}")
            registry[injection.name] = injection
        return cls(
            annotation_namespace=annotation_namespace,
            injections=MappingProxyType(registry),
        )

    def get(self, name: str) -> Optional[InjectionConfig]:
        return self.injections.get(name)

    def names(self) -> List[str]:
        return sorted(self.injections)


__all__ = ["InjectionConfig", "InjectorConfig", "TARGET_CONTAINER_KEY"]
