"""Injection template repository and runtime settings."""

from .injection import InjectionConfig, InjectorConfig
from .loader import load_config_directory, load_injection_config
from .settings import WebhookSettings
from .store import ConfigStore

__all__ = [
    "ConfigStore",
    "InjectionConfig",
    "InjectorConfig",
    "WebhookSettings",
    "load_config_directory",
    "load_injection_config",
]
