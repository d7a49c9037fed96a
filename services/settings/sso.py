"""Single-sign-on parameters derived from a settings snapshot."""

from __future__ import annotations

import base64
import hashlib
import logging
import ssl
from typing import Any, Mapping, Optional

import yaml
from pydantic import ValidationError

from services.settings.keys import SECRET_REFERENCE_PREFIX
from services.settings.models import DeploymentSettings, OIDCConfig
from services.settings.tls import client_context

LOGGER = logging.getLogger(__name__)

DEX_API_ENDPOINT = "/api/dex"
CALLBACK_ENDPOINT = "/auth/callback"
DEX_CLIENT_APP_ID = "argo-cd"


def resolve_secret_reference(value: str, secrets: Mapping[str, str]) -> str:
    """Resolve ``$key`` against ``secrets``.

    Values without the prefix are returned as is. A reference to a missing
    key is returned unchanged and logged.
    """

    if not value or not value.startswith(SECRET_REFERENCE_PREFIX):
        return value
    key = value[len(SECRET_REFERENCE_PREFIX):]
    if key not in secrets:
        LOGGER.warning("config referenced '%s', but key does not exist in secret", value)
        return value
    return secrets[key]


def oidc_config(settings: DeploymentSettings) -> Optional[OIDCConfig]:
    """Decode ``oidc.config``; references are resolved, nothing is cached."""

    if not settings.oidc_config_raw:
        return None
    try:
        document = yaml.safe_load(settings.oidc_config_raw)
        if not isinstance(document, dict):
            raise ValueError("oidc.config must be a mapping")
        config = OIDCConfig.model_validate(document)
    except (yaml.YAMLError, ValidationError, ValueError) as exc:
        LOGGER.warning("invalid oidc config: %s", exc)
        return None
    resolved = {
        name: resolve_secret_reference(value, settings.secrets)
        for name, value in config.model_dump().items()
        if isinstance(value, str)
    }
    return config.model_copy(update=resolved)


def is_dex_configured(settings: DeploymentSettings) -> bool:
    if not settings.url:
        return False
    try:
        dex_config: Any = yaml.safe_load(settings.dex_config) if settings.dex_config else None
    except yaml.YAMLError:
        LOGGER.warning("invalid dex yaml config")
        return False
    return isinstance(dex_config, dict) and len(dex_config) > 0


def is_sso_configured(settings: DeploymentSettings) -> bool:
    return is_dex_configured(settings) or oidc_config(settings) is not None


def dex_oauth2_client_secret(settings: DeploymentSettings) -> str:
    """Predictable OAuth2 client secret shared with the Dex wrapper.

    Both sides derive it from the server signature so they agree without
    exchanging it.
    """

    digest = hashlib.sha256(settings.server_signature).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii")[:40]


def issuer_url(settings: DeploymentSettings) -> str:
    config = oidc_config(settings)
    if config is not None:
        return config.issuer
    if settings.dex_config:
        return settings.url + DEX_API_ENDPOINT
    return ""


def oauth2_client_id(settings: DeploymentSettings) -> str:
    config = oidc_config(settings)
    if config is not None:
        return config.client_id
    if settings.dex_config:
        return DEX_CLIENT_APP_ID
    return ""


def oauth2_client_secret(settings: DeploymentSettings) -> str:
    config = oidc_config(settings)
    if config is not None:
        return config.client_secret
    if settings.dex_config:
        return dex_oauth2_client_secret(settings)
    return ""


def redirect_url(settings: DeploymentSettings) -> str:
    return settings.url + CALLBACK_ENDPOINT


def tls_context(settings: DeploymentSettings) -> Optional[ssl.SSLContext]:
    """Client context trusting the server certificate; ``None`` when running without TLS.

    Raises :class:`~services.settings.errors.CertificateError` for unusable material.
    """

    return client_context(settings.certificate)


__all__ = [
    "CALLBACK_ENDPOINT",
    "DEX_API_ENDPOINT",
    "DEX_CLIENT_APP_ID",
    "dex_oauth2_client_secret",
    "is_dex_configured",
    "is_sso_configured",
    "issuer_url",
    "oauth2_client_id",
    "oauth2_client_secret",
    "oidc_config",
    "redirect_url",
    "resolve_secret_reference",
    "tls_context",
]
