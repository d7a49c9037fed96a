"""Kubernetes helpers for reading and writing the settings ConfigMap and Secret."""
from __future__ import annotations

import base64
import binascii
import copy
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from services.settings.errors import (
    ResourceNotFoundError,
    StoreUnavailableError,
    WriteConflictError,
)

LOGGER = logging.getLogger(__name__)


def load_kubernetes_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""

    try:
        config.load_incluster_config()
        LOGGER.info("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        config.load_kube_config()
        LOGGER.info("Loaded local Kubernetes configuration")


def build_core_v1_api() -> client.CoreV1Api:
    load_kubernetes_config()
    return client.CoreV1Api()


def decode_secret_data(secret: Any) -> Dict[str, bytes]:
    """Return the base64 decoded ``data`` of a ``V1Secret``."""

    data = getattr(secret, "data", None) or {}
    decoded: Dict[str, bytes] = {}
    for key, value in data.items():
        if value is None:
            decoded[str(key)] = b""
            continue
        try:
            decoded[str(key)] = base64.b64decode(value)
        except (ValueError, binascii.Error):
            LOGGER.warning("Secret key %s is not valid base64; using raw value", key)
            decoded[str(key)] = str(value).encode("utf-8")
    return decoded


def encode_secret_data(data: Mapping[str, bytes]) -> Dict[str, str]:
    return {key: base64.b64encode(value).decode("ascii") for key, value in data.items()}


def selector_string(labels: Mapping[str, str]) -> str:
    """Render an equality based label selector."""

    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def labels_match(obj: Any, labels: Mapping[str, str]) -> bool:
    metadata = getattr(obj, "metadata", None)
    actual = getattr(metadata, "labels", None) or {}
    return all(actual.get(key) == value for key, value in labels.items())


@contextmanager
def translate_api_errors(kind: str, name: str) -> Iterator[None]:
    """Translate Kubernetes client failures into settings errors."""

    try:
        yield
    except ApiException as exc:
        if exc.status == 404:
            raise ResourceNotFoundError(f"{kind} {name!r} not found") from exc
        if exc.status == 409:
            raise WriteConflictError(
                f"{kind} {name!r} was modified concurrently: {exc.reason}"
            ) from exc
        raise StoreUnavailableError(
            f"Kubernetes API request for {kind} {name!r} failed ({exc.status}): {exc.reason}"
        ) from exc
    except HTTPError as exc:
        raise StoreUnavailableError(
            f"Kubernetes API unreachable for {kind} {name!r}: {exc}"
        ) from exc


class CredentialStore:
    """Wrapper around ``CoreV1Api`` for the settings ConfigMap and Secrets."""

    def __init__(self, core_v1: Any, namespace: str) -> None:
        self._core_v1 = core_v1
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def core_v1(self) -> Any:
        return self._core_v1

    # ------------------------------------------------------------------
    # ConfigMaps
    # ------------------------------------------------------------------
    def get_config_map(self, name: str) -> Any:
        with translate_api_errors("ConfigMap", name):
            return self._core_v1.read_namespaced_config_map(name=name, namespace=self._namespace)

    def create_config_map(self, name: str, data: Mapping[str, str]) -> Any:
        body = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(name=name, namespace=self._namespace),
            data=dict(data),
        )
        with translate_api_errors("ConfigMap", name):
            return self._core_v1.create_namespaced_config_map(namespace=self._namespace, body=body)

    def update_config_map(self, config_map: Any, data: Mapping[str, str]) -> Any:
        """Replace a previously read ConfigMap, keeping its resourceVersion precondition."""

        body = copy.deepcopy(config_map)
        body.data = dict(data)
        name = body.metadata.name
        with translate_api_errors("ConfigMap", name):
            return self._core_v1.replace_namespaced_config_map(
                name=name, namespace=self._namespace, body=body
            )

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------
    def get_secret(self, name: str) -> Any:
        with translate_api_errors("Secret", name):
            return self._core_v1.read_namespaced_secret(name=name, namespace=self._namespace)

    def list_secrets(self, labels: Optional[Mapping[str, str]] = None) -> List[Any]:
        selector = selector_string(labels or {})
        with translate_api_errors("Secret", selector or "*"):
            response = self._core_v1.list_namespaced_secret(
                namespace=self._namespace, label_selector=selector
            )
        return list(getattr(response, "items", None) or [])

    def create_secret(self, name: str, data: Mapping[str, bytes]) -> Any:
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(name=name, namespace=self._namespace),
            data=encode_secret_data(data),
            type="Opaque",
        )
        with translate_api_errors("Secret", name):
            return self._core_v1.create_namespaced_secret(namespace=self._namespace, body=body)

    def update_secret(self, secret: Any, data: Optional[Mapping[str, bytes]] = None) -> Any:
        """Replace ``secret``; when ``data`` is given it becomes the full payload."""

        body = copy.deepcopy(secret)
        if data is not None:
            body.data = encode_secret_data(data)
        name = body.metadata.name
        with translate_api_errors("Secret", name):
            return self._core_v1.replace_namespaced_secret(
                name=name, namespace=self._namespace, body=body
            )


__all__ = [
    "CredentialStore",
    "build_core_v1_api",
    "decode_secret_data",
    "encode_secret_data",
    "labels_match",
    "load_kubernetes_config",
    "selector_string",
    "translate_api_errors",
]
