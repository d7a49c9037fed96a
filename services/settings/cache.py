"""Lazily established, watcher-backed views of the settings resources.

The cache moves through ``UNINITIALIZED -> INITIALIZING -> SYNCED``. The
first read (or any read after a forced resync) starts a fresh
:class:`~services.settings.watcher.ChangeWatcher` and blocks until both
resources have been listed. All transitions happen under ``lock``, which the
manager also uses for the subscriber registry and notification delivery.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Any, Callable, List, Mapping, Optional, Tuple

from metrics import SETTINGS_CACHE_STATE, SETTINGS_RESYNCS_TOTAL, SETTINGS_SYNC_SECONDS
from services.settings.config import ManagerConfig
from services.settings.errors import ResourceNotFoundError, SyncTimeoutError
from services.settings.watcher import ChangeHandler, ChangeWatcher

LOGGER = logging.getLogger(__name__)

WatcherFactory = Callable[[], ChangeWatcher]


class CacheState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    SYNCED = "synced"


_STATE_VALUES = {
    CacheState.UNINITIALIZED: 0,
    CacheState.INITIALIZING: 1,
    CacheState.SYNCED: 2,
}


class SettingsCache:
    """Owns the watcher lifecycle and serves reads from its local index."""

    def __init__(
        self,
        config: ManagerConfig,
        watcher_factory: WatcherFactory,
        *,
        on_change: Optional[ChangeHandler] = None,
        lock: Optional[threading.Lock] = None,
    ) -> None:
        self._config = config
        self._watcher_factory = watcher_factory
        self._on_change = on_change
        self.lock = lock or threading.Lock()
        self._state = CacheState.UNINITIALIZED
        self._watcher: Optional[ChangeWatcher] = None
        self._set_state(CacheState.UNINITIALIZED)

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def watcher(self) -> Optional[ChangeWatcher]:
        return self._watcher

    def _set_state(self, state: CacheState) -> None:
        self._state = state
        SETTINGS_CACHE_STATE.set(_STATE_VALUES[state])

    def ensure_synced(self, force_resync: bool = False) -> ChangeWatcher:
        """Return a synced watcher, (re)establishing it when needed.

        ``force_resync`` tears down the current watcher even when the cache is
        already synced so the next read observes the latest cluster state.
        Raises :class:`SyncTimeoutError` if the initial sync does not finish
        within ``sync_timeout_seconds``.
        """

        with self.lock:
            if (
                not force_resync
                and self._state is CacheState.SYNCED
                and self._watcher is not None
            ):
                return self._watcher
            return self._initialize()

    def _initialize(self) -> ChangeWatcher:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        self._set_state(CacheState.INITIALIZING)
        SETTINGS_RESYNCS_TOTAL.inc()

        watcher = self._watcher_factory()
        if self._on_change is not None:
            watcher.add_handler(self._guarded_handler(watcher, self._on_change))
        self._watcher = watcher
        started = time.monotonic()
        watcher.start()
        timeout = self._config.sync_timeout_seconds
        if not watcher.wait_for_sync(timeout):
            watcher.stop()
            self._watcher = None
            self._set_state(CacheState.UNINITIALIZED)
            raise SyncTimeoutError(
                f"Timed out after {timeout:.1f}s waiting for settings cache to sync"
            )
        SETTINGS_SYNC_SECONDS.observe(time.monotonic() - started)
        LOGGER.info("Configmap/secret informer synced")
        self._set_state(CacheState.SYNCED)
        return watcher

    def _guarded_handler(self, watcher: ChangeWatcher, handler: ChangeHandler) -> ChangeHandler:
        def _handle(kind: str, name: str) -> None:
            # Events from a superseded watcher are dropped.
            if self._watcher is not watcher or watcher.stopped:
                return
            handler(kind, name)

        return _handle

    def shutdown(self) -> None:
        with self.lock:
            if self._watcher is not None:
                self._watcher.stop()
                self._watcher = None
            self._set_state(CacheState.UNINITIALIZED)

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------
    def read_sources(self, watcher: Optional[ChangeWatcher] = None) -> Tuple[Any, Any]:
        """Return the settings ConfigMap and Secret from one watcher's index."""

        watcher = watcher or self.ensure_synced()
        cm_name = self._config.config_map_name
        secret_name = self._config.secret_name
        config_map = self._require(watcher.config_maps.get(cm_name), "ConfigMap", cm_name)
        secret = self._require(watcher.secrets.get(secret_name), "Secret", secret_name)
        return config_map, secret

    def get_config_map(self) -> Any:
        name = self._config.config_map_name
        return self._require(self.ensure_synced().config_maps.get(name), "ConfigMap", name)

    def find_config_map(self) -> Optional[Any]:
        return self.ensure_synced().config_maps.get(self._config.config_map_name)

    def find_secret(self) -> Optional[Any]:
        return self.ensure_synced().secrets.get(self._config.secret_name)

    def list_secrets(self, labels: Optional[Mapping[str, str]] = None) -> List[Any]:
        return self.ensure_synced().secrets.list(labels)

    @staticmethod
    def _require(obj: Optional[Any], kind: str, name: str) -> Any:
        if obj is None:
            raise ResourceNotFoundError(f"{kind} {name!r} not found")
        return obj


__all__ = ["CacheState", "SettingsCache", "WatcherFactory"]
