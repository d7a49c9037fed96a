"""Write a settings snapshot back into the ConfigMap and Secret."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional

import yaml

from metrics import SETTINGS_SAVES_TOTAL
from services.settings import keys
from services.settings.assembler import format_timestamp
from services.settings.cache import SettingsCache
from services.settings.config import ManagerConfig
from services.settings.errors import SettingsError
from services.settings.models import DeploymentSettings
from shared.k8s import CredentialStore, decode_secret_data

LOGGER = logging.getLogger(__name__)


def _dump_yaml(document: Any) -> str:
    return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)


def _set_or_delete(data: MutableMapping[str, Any], key: str, value: Optional[Any]) -> None:
    if value:
        data[key] = value
    else:
        data.pop(key, None)


def _records_yaml(records: Iterable[Any]) -> str:
    wire = [record.to_wire() for record in records]
    return _dump_yaml(wire) if wire else ""


def config_map_data(
    existing: Optional[Mapping[str, str]], settings: DeploymentSettings
) -> Dict[str, str]:
    """Merge ``settings`` into a copy of the current ConfigMap data.

    Empty fields delete their key instead of storing an empty value; keys this
    layer does not manage are left untouched.
    """

    data: Dict[str, str] = dict(existing or {})
    _set_or_delete(data, keys.URL_KEY, settings.url)
    _set_or_delete(data, keys.DEX_CONFIG_KEY, settings.dex_config)
    _set_or_delete(data, keys.OIDC_CONFIG_KEY, settings.oidc_config_raw)
    _set_or_delete(data, keys.APP_INSTANCE_LABEL_KEY, settings.app_instance_label_key)
    _set_or_delete(data, keys.REPOSITORIES_KEY, _records_yaml(settings.repositories))
    _set_or_delete(
        data, keys.REPOSITORY_CREDENTIALS_KEY, _records_yaml(settings.repository_credentials)
    )
    _set_or_delete(data, keys.HELM_REPOSITORIES_KEY, _records_yaml(settings.helm_repositories))
    _set_or_delete(data, keys.RESOURCE_EXCLUSIONS_KEY, _records_yaml(settings.resource_exclusions))
    _set_or_delete(data, keys.RESOURCE_INCLUSIONS_KEY, _records_yaml(settings.resource_inclusions))
    _set_or_delete(
        data,
        keys.CONFIG_MANAGEMENT_PLUGINS_KEY,
        _records_yaml(settings.config_management_plugins),
    )
    overrides = {kind: override.to_wire() for kind, override in settings.resource_overrides.items()}
    _set_or_delete(
        data, keys.RESOURCE_CUSTOMIZATIONS_KEY, _dump_yaml(overrides) if overrides else ""
    )
    return data


def secret_data(
    existing: Optional[Mapping[str, bytes]], settings: DeploymentSettings
) -> Dict[str, bytes]:
    """Merge ``settings`` into a copy of the current Secret data.

    ``settings.secrets`` is never written back, so operator-added keys survive.
    """

    data: Dict[str, bytes] = dict(existing or {})
    data[keys.SERVER_SIGNATURE_KEY] = bytes(settings.server_signature)
    data[keys.ADMIN_PASSWORD_HASH_KEY] = settings.admin_password_hash.encode("utf-8")
    mtime = format_timestamp(settings.admin_password_mtime)
    data[keys.ADMIN_PASSWORD_MTIME_KEY] = mtime.encode("utf-8")
    for key, value in (
        (keys.WEBHOOK_GITHUB_SECRET_KEY, settings.webhook_github_secret),
        (keys.WEBHOOK_GITLAB_SECRET_KEY, settings.webhook_gitlab_secret),
        (keys.WEBHOOK_BITBUCKET_UUID_KEY, settings.webhook_bitbucket_uuid),
    ):
        if value:
            data[key] = value.encode("utf-8")
    if settings.certificate is not None:
        data[keys.SERVER_CERTIFICATE_KEY] = settings.certificate.cert_pem
        data[keys.SERVER_PRIVATE_KEY_KEY] = settings.certificate.key_pem
    else:
        data.pop(keys.SERVER_CERTIFICATE_KEY, None)
        data.pop(keys.SERVER_PRIVATE_KEY_KEY, None)
    return data


class Persister:
    """Upserts both settings resources and forces a resync afterwards."""

    def __init__(self, store: CredentialStore, cache: SettingsCache, config: ManagerConfig) -> None:
        self._store = store
        self._cache = cache
        self._config = config

    def save(self, settings: DeploymentSettings) -> None:
        try:
            self._save_config_map(settings)
            self._save_secret(settings)
        except SettingsError:
            SETTINGS_SAVES_TOTAL.labels(result="error").inc()
            raise
        SETTINGS_SAVES_TOTAL.labels(result="ok").inc()
        self._cache.ensure_synced(force_resync=True)

    def _save_config_map(self, settings: DeploymentSettings) -> None:
        current = self._cache.find_config_map()
        if current is None:
            data = config_map_data({}, settings)
            self._store.create_config_map(self._config.config_map_name, data)
            LOGGER.info("Created ConfigMap %s", self._config.config_map_name)
            return
        data = config_map_data(getattr(current, "data", None), settings)
        self._store.update_config_map(current, data)

    def _save_secret(self, settings: DeploymentSettings) -> None:
        current = self._cache.find_secret()
        if current is None:
            data = secret_data({}, settings)
            self._store.create_secret(self._config.secret_name, data)
            LOGGER.info("Created Secret %s", self._config.secret_name)
            return
        data = secret_data(decode_secret_data(current), settings)
        self._store.update_secret(current, data)


__all__ = ["Persister", "config_map_data", "secret_data"]
