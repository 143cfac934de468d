from __future__ import annotations

import logging
import threading
from typing import Callable

from .injection import InjectorConfig

logger = logging.getLogger(__name__)


class ConfigStore:
    """Holds the current template snapshot and swaps it wholesale on reload.

    Readers call :meth:`snapshot` once per request and keep using that value;
    they never observe a partially rebuilt template set.
    """

    def __init__(self, loader: Callable[[], InjectorConfig]) -> None:
        self._loader = loader
        self._reload_lock = threading.Lock()
        self._current = loader()

    @classmethod
    def from_config(cls, config: InjectorConfig) -> "ConfigStore":
        return cls(lambda: config)

    def snapshot(self) -> InjectorConfig:
        return self._current

    def reload(self) -> InjectorConfig:
        with self._reload_lock:
            fresh = self._loader()
            self._current = fresh
        logger.info("Reloaded %d injection config(s)", len(fresh.injections))
        return fresh


__all__ = ["ConfigStore"]
