"""Holder for the single currently-applied AppConfig."""

import threading

from sadis.schemas.ingest import AppConfig


class ConfigStore:
    """Replaces the AppConfig wholesale; never mutates it in place."""

    def __init__(self) -> None:
        self._config: AppConfig | None = None
        self._lock = threading.Lock()

    @property
    def current(self) -> AppConfig | None:
        with self._lock:
            return self._config

    def replace(self, config: AppConfig) -> AppConfig | None:
        """Install ``config`` and return the one it replaced."""
        with self._lock:
            previous, self._config = self._config, config
        return previous

    def clear(self) -> None:
        with self._lock:
            self._config = None
