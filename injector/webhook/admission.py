from __future__ import annotations

import base64
import logging
from typing import AbstractSet, Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..common.errors import AdmissionError, PatchError
from ..config.loader import load_config_directory
from ..config.settings import WebhookSettings
from ..config.store import ConfigStore
from ..mutator.decision import decide, object_metadata
from ..mutator.patch import build_patch

logger = logging.getLogger(__name__)

ADMISSION_API_VERSION = "admission.k8s.io/v1"
PATCH_TYPE_JSON = "JSONPatch"
_MUTATING_OPERATIONS = {"CREATE", "UPDATE"}


class AdmissionRequest(BaseModel):
    uid: str
    kind: Dict[str, Any] = Field(default_factory=dict)
    namespace: Optional[str] = None
    name: Optional[str] = None
    operation: Optional[str] = None
    pod_object: Optional[Any] = Field(default=None, alias="object")


class AdmissionResponse(BaseModel):
    uid: str
    allowed: bool
    patch: Optional[str] = None
    patchType: Optional[str] = None
    status: Optional[Dict[str, Any]] = None
    warnings: Optional[List[str]] = None


class AdmissionReview(BaseModel):
    apiVersion: str = ADMISSION_API_VERSION
    kind: str = "AdmissionReview"
    request: Optional[AdmissionRequest] = None
    response: Optional[AdmissionResponse] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def parse_review(payload: Any) -> AdmissionReview:
    if not isinstance(payload, dict):
        raise AdmissionError("AdmissionReview body must be a JSON object")
    try:
        review = AdmissionReview.model_validate(payload)
    except ValidationError as exc:
        raise AdmissionError(f"malformed AdmissionReview: {exc}") from exc
    if review.request is None:
        raise AdmissionError("AdmissionReview has no request")
    return review


def _describe(metadata: Dict[str, Any]) -> str:
    name = metadata.get("name") or metadata.get("generateName") or "<unnamed>"
    return f"{metadata.get('namespace') or '<none>'}/{name}"


class AdmissionHandler:
    """Turns AdmissionReview requests into allow/deny responses with JSON patches."""

    def __init__(
        self,
        store: ConfigStore,
        ignored_namespaces: AbstractSet[str],
        *,
        deny_on_misconfiguration: bool = False,
    ) -> None:
        self.store = store
        self.ignored_namespaces = frozenset(ignored_namespaces)
        self.deny_on_misconfiguration = deny_on_misconfiguration

    @classmethod
    def from_settings(cls, settings: WebhookSettings) -> "AdmissionHandler":
        store = ConfigStore(
            lambda: load_config_directory(settings.config_dir, settings.annotation_namespace)
        )
        return cls(
            store,
            settings.ignored_namespaces,
            deny_on_misconfiguration=settings.deny_on_misconfiguration,
        )

    def review(self, review: AdmissionReview) -> AdmissionReview:
        if review.request is None:
            raise AdmissionError("AdmissionReview has no request")
        response = self.admit(review.request)
        return AdmissionReview(apiVersion=review.apiVersion, response=response)

    def admit(self, request: AdmissionRequest) -> AdmissionResponse:
        kind = request.kind.get("kind")
        if kind != "Pod":
            logger.debug("Ignoring %s object in request %s", kind, request.uid)
            return AdmissionResponse(uid=request.uid, allowed=True)
        if request.operation and request.operation not in _MUTATING_OPERATIONS:
            return AdmissionResponse(uid=request.uid, allowed=True)

        pod = request.pod_object
        if not isinstance(pod, dict):
            logger.error("Request %s carries no decodable pod object", request.uid)
            return AdmissionResponse(
                uid=request.uid,
                allowed=False,
                status={"code": 400, "message": "request object is not a Pod"},
            )

        metadata = dict(object_metadata(pod))
        if not metadata.get("namespace") and request.namespace:
            metadata["namespace"] = request.namespace
        target = _describe(metadata)

        config = self.store.snapshot()
        decision = decide(self.ignored_namespaces, metadata, config)
        if decision.outcome.is_skip:
            logger.info("Skipping injection for pod %s: %s", target, decision.outcome.value)
            return AdmissionResponse(uid=request.uid, allowed=True)
        if request.operation == "UPDATE":
            # Containers and volumes are immutable once a pod exists.
            logger.info(
                "Not patching pod %s on UPDATE: %s %s",
                target,
                decision.outcome.value,
                decision.template_name,
            )
            warnings = None
            if decision.outcome.is_misconfiguration:
                warnings = [f"requested injection config {decision.template_name!r} not found"]
            return AdmissionResponse(uid=request.uid, allowed=True, warnings=warnings)
        if decision.outcome.is_misconfiguration:
            return self._misconfigured(
                request.uid,
                f"requested injection config {decision.template_name!r} not found",
                target,
            )

        injection = config.injections[decision.template_name]
        try:
            patch = build_patch(pod, injection, annotation_namespace=config.annotation_namespace)
        except PatchError as exc:
            return self._misconfigured(
                request.uid,
                f"unable to inject {decision.template_name!r}: {exc}",
                target,
            )

        logger.info("Injecting %s into pod %s", decision.template_name, target)
        return AdmissionResponse(
            uid=request.uid,
            allowed=True,
            patch=base64.b64encode(patch).decode("ascii"),
            patchType=PATCH_TYPE_JSON,
        )

    def _misconfigured(self, uid: str, message: str, target: str) -> AdmissionResponse:
        if self.deny_on_misconfiguration:
            logger.error("Denying pod %s: %s", target, message)
            return AdmissionResponse(
                uid=uid,
                allowed=False,
                status={"code": 500, "message": message},
            )
        logger.warning("Admitting pod %s unmodified: %s", target, message)
        return AdmissionResponse(uid=uid, allowed=True, warnings=[message])


__all__ = [
    "ADMISSION_API_VERSION",
    "AdmissionHandler",
    "AdmissionRequest",
    "AdmissionResponse",
    "AdmissionReview",
    "PATCH_TYPE_JSON",
    "parse_review",
]
