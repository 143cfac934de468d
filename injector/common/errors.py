from __future__ import annotations


class InjectorError(Exception):
    """Base class for errors raised by the injector."""


class ConfigError(InjectorError):
    """Raised when injection templates or runtime settings cannot be loaded."""


class PatchError(InjectorError):
    """Raised when a JSON patch cannot be produced for a pod."""


class PatchBuildError(PatchError):
    """Raised when a template cannot be merged into the target pod."""


class PatchEncodingError(PatchError):
    """Raised when the generated operations cannot be serialised."""


class AdmissionError(InjectorError):
    """Raised when an AdmissionReview envelope is malformed."""


__all__ = [
    "AdmissionError",
    "ConfigError",
    "InjectorError",
    "PatchBuildError",
    "PatchEncodingError",
    "PatchError",
]
