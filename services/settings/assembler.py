"""Decode the settings ConfigMap and Secret into a :class:`DeploymentSettings`.

Assembly is best effort: a failure on one key is collected and the remaining
keys are still decoded, so partial configuration is never lost. Callers get an
:class:`AssemblyResult` holding both the snapshot and the collected errors.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from services.settings import keys
from services.settings.errors import (
    CertificateError,
    IncompleteSettingsError,
    SettingsDecodeError,
    SettingsError,
)
from services.settings.models import (
    ConfigManagementPlugin,
    DeploymentSettings,
    FilteredResource,
    HelmRepoCredential,
    RepoCredential,
    ResourceOverride,
    TLSCertificate,
)
from services.settings.tls import parse_key_pair

LOGGER = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class AssemblyResult:
    settings: DeploymentSettings
    errors: List[SettingsError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> DeploymentSettings:
        """Return the snapshot, or raise the first collected error.

        The raised error carries the best-effort snapshot and the full error
        list as ``settings`` and ``errors``.
        """

        if not self.errors:
            return self.settings
        first = self.errors[0]
        first.settings = self.settings
        first.errors = list(self.errors)
        raise first


def _load_yaml(key: str, raw: str) -> Any:
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise SettingsDecodeError(key, str(exc)) from exc


def decode_list(key: str, raw: str, model: Type[ModelT]) -> Tuple[ModelT, ...]:
    """Decode a YAML list of ``model`` records stored under ``key``."""

    document = _load_yaml(key, raw)
    if document is None:
        return ()
    if not isinstance(document, list):
        raise SettingsDecodeError(key, f"expected a list, got {type(document).__name__}")
    try:
        return tuple(model.model_validate(item) for item in document)
    except ValidationError as exc:
        raise SettingsDecodeError(key, str(exc)) from exc


def decode_map(key: str, raw: str, model: Type[ModelT]) -> Dict[str, ModelT]:
    document = _load_yaml(key, raw)
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise SettingsDecodeError(key, f"expected a mapping, got {type(document).__name__}")
    try:
        return {str(name): model.model_validate(value or {}) for name, value in document.items()}
    except ValidationError as exc:
        raise SettingsDecodeError(key, str(exc)) from exc


# fromisoformat before 3.11 only takes 3 or 6 fractional digits.
_FRACTION_RE = re.compile(r"\.(\d+)(?=[+-]\d\d:\d\d$|$)")


def _microseconds(match: re.Match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_timestamp(raw: str) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp; unparsable values yield ``None``."""

    if not raw:
        return None
    try:
        normalized = _FRACTION_RE.sub(_microseconds, raw.strip().replace("Z", "+00:00"))
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        LOGGER.debug("Ignoring unparsable timestamp %r", raw)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# (ConfigMap key, snapshot field, decoder)
_STRUCTURED_KEYS: Tuple[Tuple[str, str, Callable[[str, str], Any]], ...] = (
    (keys.REPOSITORIES_KEY, "repositories", lambda k, v: decode_list(k, v, RepoCredential)),
    (
        keys.REPOSITORY_CREDENTIALS_KEY,
        "repository_credentials",
        lambda k, v: decode_list(k, v, RepoCredential),
    ),
    (
        keys.HELM_REPOSITORIES_KEY,
        "helm_repositories",
        lambda k, v: decode_list(k, v, HelmRepoCredential),
    ),
    (
        keys.RESOURCE_CUSTOMIZATIONS_KEY,
        "resource_overrides",
        lambda k, v: decode_map(k, v, ResourceOverride),
    ),
    (
        keys.RESOURCE_EXCLUSIONS_KEY,
        "resource_exclusions",
        lambda k, v: decode_list(k, v, FilteredResource),
    ),
    (
        keys.RESOURCE_INCLUSIONS_KEY,
        "resource_inclusions",
        lambda k, v: decode_list(k, v, FilteredResource),
    ),
    (
        keys.CONFIG_MANAGEMENT_PLUGINS_KEY,
        "config_management_plugins",
        lambda k, v: decode_list(k, v, ConfigManagementPlugin),
    ),
)


def fields_from_config_map(data: Mapping[str, str]) -> Tuple[Dict[str, Any], List[SettingsError]]:
    values: Dict[str, Any] = {
        "url": data.get(keys.URL_KEY, ""),
        "dex_config": data.get(keys.DEX_CONFIG_KEY, ""),
        "oidc_config_raw": data.get(keys.OIDC_CONFIG_KEY, ""),
        "app_instance_label_key": data.get(keys.APP_INSTANCE_LABEL_KEY, ""),
    }
    errors: List[SettingsError] = []
    for key, attribute, decoder in _STRUCTURED_KEYS:
        raw = data.get(key)
        if not raw:
            continue
        try:
            values[attribute] = decoder(key, raw)
        except SettingsDecodeError as exc:
            errors.append(exc)
    return values, errors


def _text(value: bytes) -> str:
    return value.decode("utf-8", errors="replace")


def fields_from_secret(data: Mapping[str, bytes]) -> Tuple[Dict[str, Any], List[SettingsError]]:
    values: Dict[str, Any] = {}
    errors: List[SettingsError] = []

    if keys.ADMIN_PASSWORD_HASH_KEY in data:
        values["admin_password_hash"] = _text(data[keys.ADMIN_PASSWORD_HASH_KEY])
    else:
        errors.append(IncompleteSettingsError(keys.ADMIN_PASSWORD_HASH_KEY))

    mtime = data.get(keys.ADMIN_PASSWORD_MTIME_KEY)
    if mtime:
        values["admin_password_mtime"] = parse_timestamp(_text(mtime))

    if keys.SERVER_SIGNATURE_KEY in data:
        values["server_signature"] = bytes(data[keys.SERVER_SIGNATURE_KEY])
    else:
        errors.append(IncompleteSettingsError(keys.SERVER_SIGNATURE_KEY))

    for key, attribute in (
        (keys.WEBHOOK_GITHUB_SECRET_KEY, "webhook_github_secret"),
        (keys.WEBHOOK_GITLAB_SECRET_KEY, "webhook_gitlab_secret"),
        (keys.WEBHOOK_BITBUCKET_UUID_KEY, "webhook_bitbucket_uuid"),
    ):
        if data.get(key):
            values[attribute] = _text(data[key])

    certificate, cert_error = _certificate_from_secret(data)
    if cert_error is not None:
        errors.append(cert_error)
    values["certificate"] = certificate

    values["secrets"] = {key: _text(value) for key, value in data.items()}
    return values, errors


def _certificate_from_secret(
    data: Mapping[str, bytes],
) -> Tuple[Optional[TLSCertificate], Optional[CertificateError]]:
    cert = data.get(keys.SERVER_CERTIFICATE_KEY)
    key = data.get(keys.SERVER_PRIVATE_KEY_KEY)
    if cert is None and key is None:
        return None, None
    if cert is None or key is None:
        missing = keys.SERVER_PRIVATE_KEY_KEY if key is None else keys.SERVER_CERTIFICATE_KEY
        return None, CertificateError(missing, "certificate and private key must be set together")
    try:
        return parse_key_pair(cert, key), None
    except CertificateError as exc:
        return None, exc


def assemble_settings(
    config_data: Optional[Mapping[str, str]],
    secret_data: Optional[Mapping[str, bytes]],
) -> AssemblyResult:
    """Build a snapshot from raw ConfigMap data and decoded Secret data."""

    config_values, config_errors = fields_from_config_map(config_data or {})
    secret_values, secret_errors = fields_from_secret(secret_data or {})
    settings = DeploymentSettings(**config_values, **secret_values)
    return AssemblyResult(settings=settings, errors=config_errors + secret_errors)


__all__ = [
    "AssemblyResult",
    "assemble_settings",
    "decode_list",
    "decode_map",
    "fields_from_config_map",
    "fields_from_secret",
    "format_timestamp",
    "parse_timestamp",
]
