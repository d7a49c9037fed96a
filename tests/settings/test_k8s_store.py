from __future__ import annotations

import base64
from types import SimpleNamespace

import pytest
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from services.settings.errors import (
    ResourceNotFoundError,
    StoreUnavailableError,
    WriteConflictError,
)
from shared import k8s as k8s_module
from shared.k8s import (
    CredentialStore,
    build_core_v1_api,
    decode_secret_data,
    labels_match,
    selector_string,
    translate_api_errors,
)


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (404, ResourceNotFoundError),
        (409, WriteConflictError),
        (500, StoreUnavailableError),
    ],
)
def test_api_errors_are_translated(status, expected):
    with pytest.raises(expected):
        with translate_api_errors("Secret", "argocd-secret"):
            raise ApiException(status=status, reason="boom")


def test_transport_errors_are_store_unavailable():
    with pytest.raises(StoreUnavailableError):
        with translate_api_errors("ConfigMap", "argocd-cm"):
            raise HTTPError("connection refused")


def test_decode_secret_data_handles_missing_values():
    secret = SimpleNamespace(
        data={"a": base64.b64encode(b"value").decode(), "empty": None}
    )

    assert decode_secret_data(secret) == {"a": b"value", "empty": b""}
    assert decode_secret_data(SimpleNamespace(data=None)) == {}


def test_selector_helpers():
    obj = SimpleNamespace(metadata=SimpleNamespace(labels={"team": "cd", "tier": "web"}))

    assert selector_string({"tier": "web", "team": "cd"}) == "team=cd,tier=web"
    assert labels_match(obj, {"team": "cd"})
    assert not labels_match(obj, {"team": "ops"})


def test_store_round_trip_against_fake_api(fake_core):
    store = CredentialStore(fake_core, "argocd")
    store.create_secret("argocd-secret", {"server.secretkey": b"sig"})

    secret = store.get_secret("argocd-secret")
    store.update_secret(secret, {"server.secretkey": b"rotated"})

    assert fake_core.secret_data("argocd-secret") == {"server.secretkey": b"rotated"}


def test_stale_update_is_a_conflict(fake_core):
    store = CredentialStore(fake_core, "argocd")
    store.create_config_map("argocd-cm", {"url": "https://one.example.com"})
    stale = store.get_config_map("argocd-cm")
    store.update_config_map(stale, {"url": "https://two.example.com"})

    with pytest.raises(WriteConflictError):
        store.update_config_map(stale, {"url": "https://three.example.com"})

    assert fake_core.config_map_data("argocd-cm") == {"url": "https://two.example.com"}


def test_list_secrets_filters_by_label(fake_core):
    fake_core.seed_secret("repo", {"repository": b"x"}, labels={"kind": "repo"})
    fake_core.seed_secret("other", {"repository": b"y"})
    store = CredentialStore(fake_core, "argocd")

    assert [secret.metadata.name for secret in store.list_secrets({"kind": "repo"})] == ["repo"]


def test_missing_resource_is_not_found(fake_core):
    with pytest.raises(ResourceNotFoundError):
        CredentialStore(fake_core, "argocd").get_config_map("argocd-cm")


def test_client_prefers_in_cluster_configuration(monkeypatch):
    loaded = []
    monkeypatch.setattr(k8s_module.config, "load_incluster_config", lambda: loaded.append("pod"))
    monkeypatch.setattr(k8s_module.config, "load_kube_config", lambda: loaded.append("kubeconfig"))
    sentinel = object()
    monkeypatch.setattr(k8s_module.client, "CoreV1Api", lambda: sentinel)

    assert build_core_v1_api() is sentinel
    assert loaded == ["pod"]


def test_client_falls_back_to_kubeconfig(monkeypatch):
    loaded = []

    def _outside_cluster():
        raise ConfigException("Service host/port is not set.")

    monkeypatch.setattr(k8s_module.config, "load_incluster_config", _outside_cluster)
    monkeypatch.setattr(k8s_module.config, "load_kube_config", lambda: loaded.append("kubeconfig"))
    monkeypatch.setattr(k8s_module.client, "CoreV1Api", object)

    build_core_v1_api()

    assert loaded == ["kubeconfig"]
