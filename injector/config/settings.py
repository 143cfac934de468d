from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Mapping, Optional

from ..common.annotations import DEFAULT_ANNOTATION_NAMESPACE
from ..common.errors import ConfigError

DEFAULT_IGNORED_NAMESPACES = frozenset({"kube-system", "kube-public"})
DEFAULT_PORT = 9443

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def parse_namespaces(value: Optional[str]) -> FrozenSet[str]:
    if value is None:
        return DEFAULT_IGNORED_NAMESPACES
    return frozenset(part.strip() for part in value.split(",") if part.strip())


def parse_bool(value: Optional[str], *, name: str, default: bool = False) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


@dataclass
class WebhookSettings:
    config_dir: Path = Path("conf/sidecars")
    annotation_namespace: str = DEFAULT_ANNOTATION_NAMESPACE
    ignored_namespaces: FrozenSet[str] = field(default_factory=lambda: DEFAULT_IGNORED_NAMESPACES)
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    tls_cert_file: Optional[Path] = None
    tls_key_file: Optional[Path] = None
    deny_on_misconfiguration: bool = False
    log_level: str = "INFO"

    @property
    def tls_enabled(self) -> bool:
        return self.tls_cert_file is not None and self.tls_key_file is not None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "WebhookSettings":
        env = os.environ if environ is None else environ
        port_text = env.get("INJECTOR_PORT")
        try:
            port = int(port_text) if port_text else DEFAULT_PORT
        except ValueError as exc:
            raise ConfigError(f"INJECTOR_PORT must be an integer, got {port_text!r}") from exc
        if not 0 < port < 65536:
            raise ConfigError(f"INJECTOR_PORT out of range: {port}")

        cert = env.get("INJECTOR_TLS_CERT_FILE")
        key = env.get("INJECTOR_TLS_KEY_FILE")
        if bool(cert) != bool(key):
            raise ConfigError("INJECTOR_TLS_CERT_FILE and INJECTOR_TLS_KEY_FILE must be set together")

        return cls(
            config_dir=Path(env.get("INJECTOR_CONFIG_DIR", "conf/sidecars")),
            annotation_namespace=env.get("INJECTOR_ANNOTATION_NAMESPACE", DEFAULT_ANNOTATION_NAMESPACE),
            ignored_namespaces=parse_namespaces(env.get("INJECTOR_IGNORED_NAMESPACES")),
            host=env.get("INJECTOR_HOST", "0.0.0.0"),
            port=port,
            tls_cert_file=Path(cert) if cert else None,
            tls_key_file=Path(key) if key else None,
            deny_on_misconfiguration=parse_bool(
                env.get("INJECTOR_DENY_ON_MISCONFIGURATION"),
                name="INJECTOR_DENY_ON_MISCONFIGURATION",
            ),
            log_level=env.get("INJECTOR_LOG_LEVEL", "INFO").upper(),
        )


__all__ = [
    "DEFAULT_IGNORED_NAMESPACES",
    "DEFAULT_PORT",
    "WebhookSettings",
    "parse_bool",
    "parse_namespaces",
]
