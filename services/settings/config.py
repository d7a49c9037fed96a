"""Runtime configuration for the settings manager."""

from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    return float(raw)


class ManagerConfig(BaseModel):
    """Where the settings live and how long to wait for the watch caches."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    namespace: str = Field(
        default_factory=lambda: os.getenv("SETTINGS_NAMESPACE", "argocd"),
        alias="SETTINGS_NAMESPACE",
    )
    config_map_name: str = Field(
        default_factory=lambda: os.getenv("SETTINGS_CONFIGMAP_NAME", "argocd-cm"),
        alias="SETTINGS_CONFIGMAP_NAME",
    )
    secret_name: str = Field(
        default_factory=lambda: os.getenv("SETTINGS_SECRET_NAME", "argocd-secret"),
        alias="SETTINGS_SECRET_NAME",
    )
    server_name: str = Field(
        default_factory=lambda: os.getenv("SETTINGS_SERVER_NAME", "argocd-server"),
        alias="SETTINGS_SERVER_NAME",
    )
    cert_organization: str = Field(
        default_factory=lambda: os.getenv("SETTINGS_CERT_ORGANIZATION", "Argo CD"),
        alias="SETTINGS_CERT_ORGANIZATION",
    )
    resync_period_seconds: float = Field(
        default_factory=lambda: _env_float("SETTINGS_RESYNC_PERIOD_SECONDS", 180.0),
        alias="SETTINGS_RESYNC_PERIOD_SECONDS",
    )
    sync_timeout_seconds: float = Field(
        default_factory=lambda: _env_float("SETTINGS_SYNC_TIMEOUT_SECONDS", 30.0),
        alias="SETTINGS_SYNC_TIMEOUT_SECONDS",
    )

    @field_validator("namespace", "config_map_name", "secret_name", "server_name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("resource names must not be empty")
        return value

    @field_validator("resync_period_seconds", "sync_timeout_seconds")
    @classmethod
    def _require_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("durations must be positive")
        return value


def load_config() -> ManagerConfig:
    return ManagerConfig()


__all__ = ["ManagerConfig", "load_config"]
