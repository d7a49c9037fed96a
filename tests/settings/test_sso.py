from __future__ import annotations

import logging
import ssl

from services.settings import sso
from services.settings.models import DeploymentSettings

OIDC_BLOB = """
name: Okta
issuer: https://example.okta.com
clientID: aaabbbccc
clientSecret: $oidc.okta.clientSecret
requestedScopes: ["openid", "profile"]
"""


def test_reference_resolves_against_secret_map():
    secrets = {"oidc.okta.clientSecret": "s3cr3t"}

    assert sso.resolve_secret_reference("$oidc.okta.clientSecret", secrets) == "s3cr3t"


def test_plain_values_are_returned_unchanged():
    assert sso.resolve_secret_reference("plain", {"plain": "nope"}) == "plain"
    assert sso.resolve_secret_reference("", {}) == ""


def test_unresolvable_reference_is_returned_unchanged_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="services.settings.sso"):
        value = sso.resolve_secret_reference("$missing", {})

    assert value == "$missing"
    assert "missing" in caplog.text


def test_oidc_config_resolves_references():
    settings = DeploymentSettings(
        url="https://cd.example.com",
        oidc_config_raw=OIDC_BLOB,
        secrets={"oidc.okta.clientSecret": "s3cr3t"},
    )

    config = sso.oidc_config(settings)

    assert config is not None
    assert config.client_id == "aaabbbccc"
    assert config.client_secret == "s3cr3t"
    assert config.requested_scopes == ["openid", "profile"]
    assert sso.issuer_url(settings) == "https://example.okta.com"
    assert sso.oauth2_client_secret(settings) == "s3cr3t"
    assert sso.is_sso_configured(settings)


def test_invalid_oidc_blob_disables_sso():
    settings = DeploymentSettings(oidc_config_raw="- not a mapping")

    assert sso.oidc_config(settings) is None
    assert not sso.is_sso_configured(settings)


def test_dex_parameters_derive_from_url_and_signature():
    settings = DeploymentSettings(
        url="https://cd.example.com",
        dex_config="connectors:\n- type: github\n",
        server_signature=b"signature",
    )

    assert sso.is_dex_configured(settings)
    assert sso.issuer_url(settings) == "https://cd.example.com/api/dex"
    assert sso.oauth2_client_id(settings) == "argo-cd"
    assert sso.redirect_url(settings) == "https://cd.example.com/auth/callback"
    secret = sso.oauth2_client_secret(settings)
    assert len(secret) == 40
    assert secret == sso.dex_oauth2_client_secret(settings)


def test_dex_requires_url():
    settings = DeploymentSettings(dex_config="connectors:\n- type: github\n")

    assert not sso.is_dex_configured(settings)


def test_tls_context_trusts_server_certificate(tls_pair):
    assert sso.tls_context(DeploymentSettings()) is None
    context = sso.tls_context(DeploymentSettings(certificate=tls_pair))

    assert isinstance(context, ssl.SSLContext)
