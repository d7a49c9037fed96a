"""Typed settings snapshot and the records stored inside the settings ConfigMap."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    """Base for records serialised as camelCase YAML inside the ConfigMap."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude_defaults=True)


class SecretKeySelector(_WireModel):
    """Reference to ``key`` inside the Secret called ``name``."""

    name: str = ""
    key: str


class RepoCredential(_WireModel):
    url: str = ""
    username_secret: Optional[SecretKeySelector] = Field(default=None, alias="usernameSecret")
    password_secret: Optional[SecretKeySelector] = Field(default=None, alias="passwordSecret")
    ssh_private_key_secret: Optional[SecretKeySelector] = Field(
        default=None, alias="sshPrivateKeySecret"
    )
    insecure_ignore_host_key: bool = Field(default=False, alias="insecureIgnoreHostKey")


class HelmRepoCredential(_WireModel):
    url: str = ""
    name: str = ""
    username_secret: Optional[SecretKeySelector] = Field(default=None, alias="usernameSecret")
    password_secret: Optional[SecretKeySelector] = Field(default=None, alias="passwordSecret")
    ca_secret: Optional[SecretKeySelector] = Field(default=None, alias="caSecret")
    cert_secret: Optional[SecretKeySelector] = Field(default=None, alias="certSecret")
    key_secret: Optional[SecretKeySelector] = Field(default=None, alias="keySecret")


class FilteredResource(_WireModel):
    """Resource filter rule; an empty list matches everything."""

    api_groups: List[str] = Field(default_factory=list, alias="apiGroups")
    kinds: List[str] = Field(default_factory=list)
    clusters: List[str] = Field(default_factory=list)


class ResourceOverride(_WireModel):
    health_lua: str = Field(default="", alias="health.lua")
    actions: str = ""
    ignore_differences: str = Field(default="", alias="ignoreDifferences")


class PluginCommand(_WireModel):
    command: List[str] = Field(default_factory=list)
    args: List[str] = Field(default_factory=list)


class ConfigManagementPlugin(_WireModel):
    name: str
    init: Optional[PluginCommand] = None
    generate: PluginCommand = Field(default_factory=PluginCommand)


class ResourcesFilter(_WireModel):
    resource_exclusions: List[FilteredResource] = Field(
        default_factory=list, alias="resourceExclusions"
    )
    resource_inclusions: List[FilteredResource] = Field(
        default_factory=list, alias="resourceInclusions"
    )


class OIDCConfig(_WireModel):
    """OIDC provider parameters decoded from ``oidc.config``."""

    name: str = ""
    issuer: str = ""
    client_id: str = Field(default="", alias="clientID")
    client_secret: str = Field(default="", alias="clientSecret")
    cli_client_id: str = Field(default="", alias="cliClientID")
    requested_scopes: List[str] = Field(default_factory=list, alias="requestedScopes")


@dataclass(frozen=True)
class TLSCertificate:
    """PEM encoded certificate chain and private key, validated as a pair."""

    cert_pem: bytes
    key_pem: bytes

    @property
    def certificate(self) -> Any:
        from services.settings.tls import load_certificate

        return load_certificate(self.cert_pem)


@dataclass(frozen=True)
class DeploymentSettings:
    """In-memory settings snapshot.

    Instances are immutable; write paths derive a new snapshot with
    :func:`dataclasses.replace` and persist the whole copy.
    """

    url: str = ""
    admin_password_hash: str = ""
    admin_password_mtime: Optional[datetime] = None
    dex_config: str = ""
    oidc_config_raw: str = ""
    server_signature: bytes = b""
    certificate: Optional[TLSCertificate] = None
    webhook_github_secret: str = ""
    webhook_gitlab_secret: str = ""
    webhook_bitbucket_uuid: str = ""
    secrets: Mapping[str, str] = field(default_factory=dict)
    repositories: Tuple[RepoCredential, ...] = ()
    repository_credentials: Tuple[RepoCredential, ...] = ()
    helm_repositories: Tuple[HelmRepoCredential, ...] = ()
    resource_overrides: Mapping[str, ResourceOverride] = field(default_factory=dict)
    resource_exclusions: Tuple[FilteredResource, ...] = ()
    resource_inclusions: Tuple[FilteredResource, ...] = ()
    app_instance_label_key: str = ""
    config_management_plugins: Tuple[ConfigManagementPlugin, ...] = ()

    def __post_init__(self) -> None:
        # Snapshots are shared across readers; expose read-only copies.
        object.__setattr__(self, "secrets", MappingProxyType(dict(self.secrets)))
        object.__setattr__(
            self, "resource_overrides", MappingProxyType(dict(self.resource_overrides))
        )


__all__ = [
    "ConfigManagementPlugin",
    "DeploymentSettings",
    "FilteredResource",
    "HelmRepoCredential",
    "OIDCConfig",
    "PluginCommand",
    "RepoCredential",
    "ResourceOverride",
    "ResourcesFilter",
    "SecretKeySelector",
    "TLSCertificate",
]
