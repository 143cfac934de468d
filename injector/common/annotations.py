"""Helpers for deriving the annotation keys the injector reads and writes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

DEFAULT_ANNOTATION_NAMESPACE = "injector.tumblr.com"
STATUS_INJECTED = "injected"


@dataclass(frozen=True)
class AnnotationKeys:
    namespace: str = DEFAULT_ANNOTATION_NAMESPACE

    @property
    def request(self) -> str:
        return f"{self.namespace}/request"

    @property
    def status(self) -> str:
        return f"{self.namespace}/status"

    @classmethod
    def for_namespace(cls, namespace: Optional[str]) -> "AnnotationKeys":
        cleaned = (namespace or "").strip().strip("/")
        return cls(cleaned or DEFAULT_ANNOTATION_NAMESPACE)


def read_annotations(metadata: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """Return the annotation map of ``metadata`` or ``None`` when it is absent."""

    if not isinstance(metadata, Mapping):
        return None
    annotations = metadata.get("annotations")
    if not isinstance(annotations, Mapping):
        return None
    return annotations


__all__ = [
    "AnnotationKeys",
    "DEFAULT_ANNOTATION_NAMESPACE",
    "STATUS_INJECTED",
    "read_annotations",
]
