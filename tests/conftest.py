"""Shared pytest configuration for the settings test suite."""

from __future__ import annotations

import base64
import copy
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from services.settings.config import ManagerConfig
from services.settings.manager import SettingsManager


@dataclass
class _Event:
    resource_version: int
    kind: str
    type: str
    obj: Any


def _parse_selector(selector: Optional[str]) -> Dict[str, str]:
    if not selector:
        return {}
    pairs = (term.split("=", 1) for term in selector.split(",") if term)
    return {key: value for key, value in pairs}


class FakeCoreV1Api:
    """In-memory ``CoreV1Api`` keeping ConfigMaps and Secrets for one cluster.

    Every mutation bumps a cluster-wide resourceVersion and is recorded as a
    watch event so :class:`FakeWatch` streams observe it.
    """

    def __init__(self) -> None:
        self.cond = threading.Condition()
        self.events: List[_Event] = []
        self.replaced: List[str] = []
        self.fail_lists = False
        self._resource_version = 0
        self._objects: Dict[str, Dict[str, Any]] = {"ConfigMap": {}, "Secret": {}}

    # ------------------------------------------------------------------
    # Helpers for tests
    # ------------------------------------------------------------------
    def seed_config_map(
        self, name: str, data: Mapping[str, str], namespace: str = "argocd"
    ) -> Any:
        body = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace), data=dict(data)
        )
        return self.create_namespaced_config_map(namespace=namespace, body=body)

    def seed_secret(
        self,
        name: str,
        data: Mapping[str, bytes],
        *,
        labels: Optional[Mapping[str, str]] = None,
        namespace: str = "argocd",
    ) -> Any:
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=name, namespace=namespace, labels=dict(labels or {})
            ),
            data={key: base64.b64encode(value).decode("ascii") for key, value in data.items()},
        )
        return self.create_namespaced_secret(namespace=namespace, body=body)

    def patch_config_map(self, name: str, data: Mapping[str, str]) -> Any:
        with self.cond:
            current = copy.deepcopy(self._objects["ConfigMap"][name])
        current.data = {**(current.data or {}), **data}
        return self.replace_namespaced_config_map(name=name, namespace="argocd", body=current)

    def config_map_data(self, name: str) -> Dict[str, str]:
        with self.cond:
            return dict(self._objects["ConfigMap"][name].data or {})

    def secret_data(self, name: str) -> Dict[str, bytes]:
        with self.cond:
            data = self._objects["Secret"][name].data or {}
        return {key: base64.b64decode(value) for key, value in data.items()}

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    def _record(self, kind: str, event_type: str, obj: Any) -> None:
        self.events.append(_Event(self._resource_version, kind, event_type, copy.deepcopy(obj)))
        self.cond.notify_all()

    def _create(self, kind: str, body: Any) -> Any:
        name = body.metadata.name
        with self.cond:
            if name in self._objects[kind]:
                raise ApiException(status=409, reason="AlreadyExists")
            self._resource_version += 1
            stored = copy.deepcopy(body)
            stored.metadata.resource_version = str(self._resource_version)
            stored.metadata.creation_timestamp = datetime.now(timezone.utc)
            self._objects[kind][name] = stored
            self._record(kind, "ADDED", stored)
            return copy.deepcopy(stored)

    def _replace(self, kind: str, name: str, body: Any) -> Any:
        with self.cond:
            current = self._objects[kind].get(name)
            if current is None:
                raise ApiException(status=404, reason="NotFound")
            if body.metadata.resource_version != current.metadata.resource_version:
                raise ApiException(status=409, reason="Conflict")
            self._resource_version += 1
            stored = copy.deepcopy(body)
            stored.metadata.resource_version = str(self._resource_version)
            self._objects[kind][name] = stored
            self.replaced.append(name)
            self._record(kind, "MODIFIED", stored)
            return copy.deepcopy(stored)

    def _read(self, kind: str, name: str) -> Any:
        with self.cond:
            current = self._objects[kind].get(name)
            if current is None:
                raise ApiException(status=404, reason="NotFound")
            return copy.deepcopy(current)

    def _list(self, kind: str, label_selector: Optional[str], field_selector: Optional[str]) -> Any:
        if self.fail_lists:
            raise ApiException(status=503, reason="Service Unavailable")
        labels = _parse_selector(label_selector)
        fields = _parse_selector(field_selector)
        with self.cond:
            items = [
                copy.deepcopy(obj)
                for name, obj in sorted(self._objects[kind].items())
                if all((obj.metadata.labels or {}).get(k) == v for k, v in labels.items())
                and fields.get("metadata.name", name) == name
            ]
            list_meta = client.V1ListMeta(resource_version=str(self._resource_version))
        if kind == "ConfigMap":
            return client.V1ConfigMapList(items=items, metadata=list_meta)
        return client.V1SecretList(items=items, metadata=list_meta)

    # ------------------------------------------------------------------
    # CoreV1Api surface
    # ------------------------------------------------------------------
    def list_namespaced_config_map(
        self, namespace: str, label_selector=None, field_selector=None, **_: Any
    ) -> Any:
        return self._list("ConfigMap", label_selector, field_selector)

    def list_namespaced_secret(
        self, namespace: str, label_selector=None, field_selector=None, **_: Any
    ) -> Any:
        return self._list("Secret", label_selector, field_selector)

    def read_namespaced_config_map(self, name: str, namespace: str) -> Any:
        return self._read("ConfigMap", name)

    def read_namespaced_secret(self, name: str, namespace: str) -> Any:
        return self._read("Secret", name)

    def create_namespaced_config_map(self, namespace: str, body: Any) -> Any:
        return self._create("ConfigMap", body)

    def create_namespaced_secret(self, namespace: str, body: Any) -> Any:
        return self._create("Secret", body)

    def replace_namespaced_config_map(self, name: str, namespace: str, body: Any) -> Any:
        return self._replace("ConfigMap", name, body)

    def replace_namespaced_secret(self, name: str, namespace: str, body: Any) -> Any:
        return self._replace("Secret", name, body)


class FakeWatch:
    """Stand-in for ``kubernetes.watch.Watch`` streaming :class:`FakeCoreV1Api` events."""

    def __init__(self, api: FakeCoreV1Api) -> None:
        self._api = api
        self._stopped = threading.Event()

    def stop(self) -> None:
        self._stopped.set()
        with self._api.cond:
            self._api.cond.notify_all()

    def stream(
        self,
        func: Callable[..., Any],
        namespace: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        field_selector: Optional[str] = None,
        **_: Any,
    ) -> Iterator[Dict[str, Any]]:
        kind = "ConfigMap" if "config_map" in func.__name__ else "Secret"
        wanted_name = _parse_selector(field_selector).get("metadata.name")
        cursor = int(resource_version or 0)
        deadline = time.monotonic() + (timeout_seconds or 60)
        while not self._stopped.is_set():
            with self._api.cond:
                pending = [
                    event
                    for event in self._api.events
                    if event.resource_version > cursor and event.kind == kind
                ]
                if not pending:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return
                    self._api.cond.wait(min(remaining, 0.05))
                    continue
            for event in pending:
                cursor = event.resource_version
                if wanted_name and event.obj.metadata.name != wanted_name:
                    continue
                yield {"type": event.type, "object": copy.deepcopy(event.obj), "raw_object": {}}
                if self._stopped.is_set():
                    return


@pytest.fixture
def fake_core() -> FakeCoreV1Api:
    return FakeCoreV1Api()


@pytest.fixture
def manager_config() -> ManagerConfig:
    return ManagerConfig(
        namespace="argocd",
        config_map_name="argocd-cm",
        secret_name="argocd-secret",
        server_name="argocd-server",
        cert_organization="Argo CD",
        resync_period_seconds=30,
        sync_timeout_seconds=5,
    )


@pytest.fixture
def make_manager(fake_core: FakeCoreV1Api, manager_config: ManagerConfig):
    managers: List[SettingsManager] = []

    def _factory(config: Optional[ManagerConfig] = None) -> SettingsManager:
        manager = SettingsManager(
            fake_core,
            config or manager_config,
            watch_factory=lambda: FakeWatch(fake_core),
        )
        managers.append(manager)
        return manager

    yield _factory
    for manager in managers:
        manager.shutdown()


@pytest.fixture
def manager(make_manager) -> SettingsManager:
    return make_manager()
