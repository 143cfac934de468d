from __future__ import annotations

import logging
from pathlib import Path
from typing import List

import yaml

from ..common.annotations import DEFAULT_ANNOTATION_NAMESPACE
from ..common.errors import ConfigError
from .injection import InjectionConfig, InjectorConfig

logger = logging.getLogger(__name__)

_PATTERNS = ("*.yaml", "*.yml")


def load_injection_config(path: Path) -> InjectionConfig:
    path = Path(path)
    try:
        raw_text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"unable to read injection config {path}: {exc}") from exc
    try:
        data = yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    return InjectionConfig.from_dict(data, source=str(path))


def load_config_directory(
    directory: Path,
    annotation_namespace: str = DEFAULT_ANNOTATION_NAMESPACE,
) -> InjectorConfig:
    """Load every YAML template in ``directory`` into a fresh snapshot."""

    directory = Path(directory).expanduser()
    if not directory.is_dir():
        raise ConfigError(f"config directory not found: {directory}")

    files: List[Path] = []
    for pattern in _PATTERNS:
        files.extend(directory.glob(pattern))
    injections = [load_injection_config(path) for path in sorted(files)]
    config = InjectorConfig.build(injections, annotation_namespace=annotation_namespace)
    logger.info(
        "Loaded %d injection config(s) from %s: %s",
        len(config.injections),
        directory,
        ", ".join(config.names()) or "<none>",
    )
    return config


__all__ = ["load_config_directory", "load_injection_config"]
