"""Error types raised by the settings distribution layer."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from services.settings.models import DeploymentSettings


class SettingsError(RuntimeError):
    """Base error for settings failures.

    Errors raised out of snapshot assembly carry the best-effort snapshot in
    ``settings`` and every collected failure in ``errors`` so callers can keep
    using partially configured settings.
    """

    settings: Optional["DeploymentSettings"] = None
    errors: List["SettingsError"]

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.errors = [self]


class IncompleteSettingsError(SettingsError):
    """A snapshot was assembled but a required field is absent."""

    def __init__(self, key: str) -> None:
        super().__init__(f"{key} is missing")
        self.key = key


class SettingsDecodeError(SettingsError):
    """Structured content stored under ``key`` could not be decoded."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"unable to decode {key}: {message}")
        self.key = key


class CertificateError(SettingsDecodeError):
    """TLS material is malformed or only half present."""


class StoreUnavailableError(SettingsError):
    """The backing Kubernetes API could not serve the request."""


class ResourceNotFoundError(StoreUnavailableError):
    """The requested ConfigMap or Secret does not exist."""


class WriteConflictError(SettingsError):
    """An optimistic-concurrency check rejected a write."""


class SyncTimeoutError(SettingsError):
    """The watch caches did not complete their initial sync in time."""


__all__ = [
    "CertificateError",
    "IncompleteSettingsError",
    "ResourceNotFoundError",
    "SettingsDecodeError",
    "SettingsError",
    "StoreUnavailableError",
    "SyncTimeoutError",
    "WriteConflictError",
]
