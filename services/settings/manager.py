"""Process-scoped entry point for reading, saving and watching settings."""

from __future__ import annotations

import logging
import queue
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from metrics import configure_prometheus_exporter_from_env
from services.settings import keys
from services.settings.assembler import AssemblyResult, assemble_settings, decode_list, decode_map
from services.settings.cache import CacheState, SettingsCache
from services.settings.config import ManagerConfig, load_config
from services.settings.errors import StoreUnavailableError
from services.settings.initializer import Initializer
from services.settings.models import (
    ConfigManagementPlugin,
    DeploymentSettings,
    FilteredResource,
    ResourceOverride,
    ResourcesFilter,
)
from services.settings.notifier import Notifier
from services.settings.persister import Persister
from services.settings.watcher import ChangeWatcher
from shared.k8s import CredentialStore, build_core_v1_api, decode_secret_data

LOGGER = logging.getLogger(__name__)


class SettingsManager:
    """Lazily watches the settings resources and serves typed snapshots.

    One instance is created per process and handed to the components that
    need settings. Watches are not opened until the first read; call
    :meth:`shutdown` (or use the manager as a context manager) to stop them.
    """

    def __init__(
        self,
        core_v1: Any,
        config: Optional[ManagerConfig] = None,
        *,
        watch_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self._config = config or load_config()
        self._core_v1 = core_v1
        self._watch_factory = watch_factory
        self._store = CredentialStore(core_v1, self._config.namespace)
        self._cache = SettingsCache(
            self._config,
            self._new_watcher,
            on_change=self._on_change,
        )
        self._notifier = Notifier(self._cache.lock, self._settings_from_current_watcher)
        self._persister = Persister(self._store, self._cache, self._config)
        self._initializer = Initializer(
            config=self._config,
            store=self._store,
            cache=self._cache,
            persister=self._persister,
            assemble_current=self._assemble_allowing_missing,
            read_settings=self.get_settings,
        )

    @classmethod
    def from_environment(cls) -> "SettingsManager":
        """Build a manager for the cluster this process runs in.

        Loads in-cluster client configuration (falling back to the local
        kubeconfig), reads :class:`ManagerConfig` from ``SETTINGS_*`` variables
        and starts the Prometheus exporter when ``PROMETHEUS_EXPORTER_PORT`` is
        set.
        """

        configure_prometheus_exporter_from_env()
        return cls(build_core_v1_api(), load_config())

    def __enter__(self) -> "SettingsManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    @property
    def config(self) -> ManagerConfig:
        return self._config

    @property
    def state(self) -> CacheState:
        return self._cache.state

    @property
    def store(self) -> CredentialStore:
        return self._store

    def _new_watcher(self) -> ChangeWatcher:
        return ChangeWatcher(
            self._core_v1,
            self._config.namespace,
            config_map_name=self._config.config_map_name,
            secret_name=self._config.secret_name,
            resync_period=self._config.resync_period_seconds,
            watch_factory=self._watch_factory,
        )

    def _on_change(self, kind: str, name: str) -> None:
        self._notifier.on_change(kind, name)

    # ------------------------------------------------------------------
    # Snapshot assembly
    # ------------------------------------------------------------------
    @staticmethod
    def _assemble(config_map: Any, secret: Any) -> AssemblyResult:
        config_data: Mapping[str, str] = getattr(config_map, "data", None) or {}
        secret_data = decode_secret_data(secret) if secret is not None else {}
        return assemble_settings(config_data, secret_data)

    def _settings_from_current_watcher(self) -> DeploymentSettings:
        watcher = self._cache.watcher
        if watcher is None:
            raise StoreUnavailableError("settings watcher is not running")
        config_map, secret = self._cache.read_sources(watcher)
        return self._assemble(config_map, secret).raise_for_errors()

    def _assemble_allowing_missing(self) -> AssemblyResult:
        return self._assemble(self._cache.find_config_map(), self._cache.find_secret())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get_settings(self) -> DeploymentSettings:
        """Return the current snapshot.

        Raises the first collected assembly error (with the best-effort
        snapshot attached as ``settings``) when any key failed to decode or a
        required key is missing.
        """

        config_map, secret = self._cache.read_sources()
        return self._assemble(config_map, secret).raise_for_errors()

    def save_settings(self, settings: DeploymentSettings) -> None:
        """Persist ``settings``; subsequent reads observe the write."""

        self._persister.save(settings)

    def resync_informers(self) -> None:
        self._cache.ensure_synced(force_resync=True)

    def subscribe(self, channel: queue.Queue) -> None:
        self._notifier.subscribe(channel)

    def unsubscribe(self, channel: queue.Queue) -> None:
        self._notifier.unsubscribe(channel)

    def initialize_settings(self, secure_mode: bool) -> DeploymentSettings:
        """Generate missing signature, password and certificate, then persist."""

        return self._initializer.initialize(secure_mode)

    def migrate_legacy_repo_settings(self, settings: DeploymentSettings) -> DeploymentSettings:
        return replace(settings, repositories=self._initializer.migrate_legacy_repositories())

    def list_secrets(self, labels: Optional[Mapping[str, str]] = None) -> List[Any]:
        return self._cache.list_secrets(labels)

    def _config_map_data(self) -> Mapping[str, str]:
        return getattr(self._cache.get_config_map(), "data", None) or {}

    def get_resources_filter(self) -> ResourcesFilter:
        data = self._config_map_data()
        exclusions: Tuple[FilteredResource, ...] = ()
        inclusions: Tuple[FilteredResource, ...] = ()
        if data.get(keys.RESOURCE_INCLUSIONS_KEY):
            inclusions = decode_list(
                keys.RESOURCE_INCLUSIONS_KEY, data[keys.RESOURCE_INCLUSIONS_KEY], FilteredResource
            )
        if data.get(keys.RESOURCE_EXCLUSIONS_KEY):
            exclusions = decode_list(
                keys.RESOURCE_EXCLUSIONS_KEY, data[keys.RESOURCE_EXCLUSIONS_KEY], FilteredResource
            )
        return ResourcesFilter(
            resource_exclusions=list(exclusions), resource_inclusions=list(inclusions)
        )

    def get_app_instance_label_key(self) -> str:
        label = self._config_map_data().get(keys.APP_INSTANCE_LABEL_KEY, "")
        return label or keys.DEFAULT_APP_INSTANCE_LABEL_KEY

    def get_config_management_plugins(self) -> Tuple[ConfigManagementPlugin, ...]:
        raw = self._config_map_data().get(keys.CONFIG_MANAGEMENT_PLUGINS_KEY)
        if not raw:
            return ()
        return decode_list(keys.CONFIG_MANAGEMENT_PLUGINS_KEY, raw, ConfigManagementPlugin)

    def get_resource_overrides(self) -> Dict[str, ResourceOverride]:
        raw = self._config_map_data().get(keys.RESOURCE_CUSTOMIZATIONS_KEY)
        if not raw:
            return {}
        return decode_map(keys.RESOURCE_CUSTOMIZATIONS_KEY, raw, ResourceOverride)

    def shutdown(self) -> None:
        self._cache.shutdown()
        LOGGER.info("Settings manager shut down")


__all__ = ["SettingsManager"]
