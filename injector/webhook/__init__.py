"""AdmissionReview handling, HTTP server and command line for the injector."""

from .admission import AdmissionHandler, AdmissionRequest, AdmissionResponse, AdmissionReview

__all__ = [
    "AdmissionHandler",
    "AdmissionRequest",
    "AdmissionResponse",
    "AdmissionReview",
]
