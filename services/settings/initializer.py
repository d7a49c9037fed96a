"""First-run bootstrap of cryptographic material and legacy repository migration."""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Tuple

from services.settings import keys
from services.settings.assembler import AssemblyResult
from services.settings.cache import SettingsCache
from services.settings.config import ManagerConfig
from services.settings.errors import (
    CertificateError,
    IncompleteSettingsError,
    WriteConflictError,
)
from services.settings.models import DeploymentSettings, RepoCredential, SecretKeySelector
from services.settings.passwords import default_admin_password, hash_password
from services.settings.persister import Persister
from services.settings.tls import generate_self_signed
from shared.k8s import CredentialStore, decode_secret_data

LOGGER = logging.getLogger(__name__)

SERVER_SIGNATURE_LENGTH = 32

# A bad certificate is dropped (and regenerated in secure mode) instead of
# blocking startup.
_RECOVERABLE_ERRORS = (IncompleteSettingsError, CertificateError)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def make_signature(length: int = SERVER_SIGNATURE_LENGTH) -> bytes:
    return os.urandom(length)


def server_hosts(server_name: str, namespace: str) -> List[str]:
    """DNS names the generated server certificate is valid for."""

    return [
        "localhost",
        server_name,
        f"{server_name}.{namespace}",
        f"{server_name}.{namespace}.svc",
        f"{server_name}.{namespace}.svc.cluster.local",
    ]


def _legacy_selector(secret_name: str, data: dict, key: str) -> SecretKeySelector | None:
    if data.get(key):
        return SecretKeySelector(name=secret_name, key=key)
    return None


class Initializer:
    """Fills in missing settings material and persists it once."""

    def __init__(
        self,
        *,
        config: ManagerConfig,
        store: CredentialStore,
        cache: SettingsCache,
        persister: Persister,
        assemble_current: Callable[[], AssemblyResult],
        read_settings: Callable[[], DeploymentSettings],
    ) -> None:
        self._config = config
        self._store = store
        self._cache = cache
        self._persister = persister
        self._assemble_current = assemble_current
        self._read_settings = read_settings

    def _current_settings(self) -> DeploymentSettings:
        result = self._assemble_current()
        fatal = [error for error in result.errors if not isinstance(error, _RECOVERABLE_ERRORS)]
        if fatal:
            fatal[0].settings = result.settings
            fatal[0].errors = list(result.errors)
            raise fatal[0]
        for error in result.errors:
            if isinstance(error, CertificateError):
                LOGGER.warning("Discarding unusable TLS material: %s", error)
            else:
                LOGGER.debug("Bootstrapping incomplete settings: %s", error)
        return result.settings

    def initialize(self, secure_mode: bool) -> DeploymentSettings:
        settings = self._current_settings()

        if not settings.server_signature:
            settings = replace(settings, server_signature=make_signature())
            LOGGER.info("Initialized server signature")

        if not settings.admin_password_hash:
            settings = replace(
                settings,
                admin_password_hash=hash_password(default_admin_password()),
                admin_password_mtime=_utcnow(),
            )
            LOGGER.info("Initialized admin password")

        if settings.admin_password_mtime is None:
            settings = replace(settings, admin_password_mtime=_utcnow())
            LOGGER.info("Initialized admin mtime")

        if settings.certificate is None and secure_mode:
            certificate = generate_self_signed(
                server_hosts(self._config.server_name, self._config.namespace),
                organization=self._config.cert_organization,
                is_ca=True,
            )
            settings = replace(settings, certificate=certificate)
            LOGGER.info("Initialized TLS certificate")

        if not settings.repositories:
            settings = replace(settings, repositories=self.migrate_legacy_repositories())

        try:
            self._persister.save(settings)
        except WriteConflictError:
            LOGGER.warning(
                "Conflict when initializing settings; assuming updated by another replica"
            )
            self._cache.ensure_synced(force_resync=True)
        return self._read_settings()

    def migrate_legacy_repositories(self) -> Tuple[RepoCredential, ...]:
        """Convert per-repository Secrets into :class:`RepoCredential` records.

        Each located Secret is re-written in place before it is referenced.
        The result follows the listing order and is not deduplicated.
        """

        selector = {keys.SECRET_TYPE_LABEL_KEY: keys.SECRET_TYPE_REPOSITORY}
        credentials: List[RepoCredential] = []
        for secret in self._cache.list_secrets(selector):
            self._store.update_secret(secret)
            name = secret.metadata.name
            data = {
                key: value.decode("utf-8", errors="replace")
                for key, value in decode_secret_data(secret).items()
            }
            credentials.append(
                RepoCredential(
                    url=data.get(keys.LEGACY_REPOSITORY_URL_KEY, ""),
                    username_secret=_legacy_selector(name, data, keys.LEGACY_USERNAME_KEY),
                    password_secret=_legacy_selector(name, data, keys.LEGACY_PASSWORD_KEY),
                    ssh_private_key_secret=_legacy_selector(
                        name, data, keys.LEGACY_SSH_PRIVATE_KEY_KEY
                    ),
                )
            )
        if credentials:
            LOGGER.info("Migrated %d legacy repository secrets", len(credentials))
        return tuple(credentials)


__all__ = ["Initializer", "make_signature", "server_hosts"]
