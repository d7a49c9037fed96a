"""List-and-watch caches for the settings ConfigMap and Secrets."""

from __future__ import annotations

import functools
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from kubernetes import watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from shared.k8s import labels_match

LOGGER = logging.getLogger(__name__)

ChangeHandler = Callable[[str, str], None]
"""Called with ``(kind, name)`` when a tracked object changed."""

_INITIAL_BACKOFF_SECONDS = 0.5
_MAX_BACKOFF_SECONDS = 8.0


def _metadata(obj: Any) -> Any:
    return getattr(obj, "metadata", None)


def _name(obj: Any) -> str:
    return getattr(_metadata(obj), "name", "") or ""


def _resource_version(obj: Any) -> Optional[str]:
    return getattr(_metadata(obj), "resource_version", None)


def _created_after(obj: Any, moment: datetime) -> bool:
    created = getattr(_metadata(obj), "creation_timestamp", None)
    if not isinstance(created, datetime):
        return False
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created > moment


class ResourceWatch:
    """Keeps a local index of one resource kind current via list + watch.

    ``has_synced`` turns true after the first successful list. Change
    handlers fire only for objects named in ``tracked_names`` and only when
    the object's resourceVersion actually moved.
    """

    def __init__(
        self,
        kind: str,
        list_func: Callable[..., Any],
        namespace: str,
        *,
        tracked_names: Set[str],
        on_change: ChangeHandler,
        stop_event: threading.Event,
        resync_period: float,
        watch_factory: Callable[[], Any],
        field_selector: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self._list_func = list_func
        self._namespace = namespace
        self._tracked_names = set(tracked_names)
        self._on_change = on_change
        self._stop = stop_event
        self._resync_period = resync_period
        self._watch_factory = watch_factory
        self._field_selector = field_selector
        self._items: Dict[str, Any] = {}
        self._items_lock = threading.Lock()
        self._synced = threading.Event()
        self._started_at = datetime.now(timezone.utc)
        self._active_watch: Any = None
        self._active_response: Any = None
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name=f"settings-watch-{self.kind.lower()}", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        active = self._active_watch
        if active is not None:
            active.stop()
        # Watch.stop() is only checked between events; an idle stream stays
        # blocked on its socket until the response is torn down.
        self._close_response()

    @property
    def synced(self) -> threading.Event:
        return self._synced

    def has_synced(self) -> bool:
        return self._synced.is_set()

    # ------------------------------------------------------------------
    # Index reads
    # ------------------------------------------------------------------
    def get(self, name: str) -> Optional[Any]:
        with self._items_lock:
            return self._items.get(name)

    def list(self, labels: Optional[Mapping[str, str]] = None) -> List[Any]:
        with self._items_lock:
            items = [self._items[name] for name in sorted(self._items)]
        if not labels:
            return items
        return [item for item in items if labels_match(item, labels)]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _close_response(self) -> None:
        response = self._active_response
        self._active_response = None
        if response is None:
            return
        close = getattr(response, "shutdown", None) or getattr(response, "close", None)
        if close is None:
            return
        try:
            close()
        except (HTTPError, OSError) as exc:
            LOGGER.debug("%s watch connection close failed: %s", self.kind, exc)

    def _tracking_list_func(self) -> Callable[..., Any]:
        @functools.wraps(self._list_func)
        def _call(*args: Any, **kwargs: Any) -> Any:
            response = self._list_func(*args, **kwargs)
            self._active_response = response
            return response

        return _call

    def _selector_kwargs(self) -> Dict[str, Any]:
        if self._field_selector:
            return {"field_selector": self._field_selector}
        return {}

    def _run(self) -> None:
        backoff = _INITIAL_BACKOFF_SECONDS
        while not self._stop.is_set():
            try:
                resource_version = self._relist()
                backoff = _INITIAL_BACKOFF_SECONDS
                self._watch(resource_version)
            except ApiException as exc:
                if exc.status == 410:
                    LOGGER.info("%s watch expired; relisting", self.kind)
                    continue
                LOGGER.warning("%s watch failed (%s): %s", self.kind, exc.status, exc.reason)
            except (HTTPError, OSError) as exc:
                if self._stop.is_set():
                    break
                LOGGER.warning("%s watch connection failed: %s", self.kind, exc)
            if self._stop.wait(backoff):
                break
            backoff = min(backoff * 2, _MAX_BACKOFF_SECONDS)
        LOGGER.info("%s informer cancelled", self.kind)

    def _relist(self) -> Optional[str]:
        response = self._list_func(namespace=self._namespace, **self._selector_kwargs())
        listed = {_name(item): item for item in (getattr(response, "items", None) or [])}
        changed: List[str] = []
        with self._items_lock:
            first_sync = not self._synced.is_set()
            previous = self._items
            self._items = listed
        if not first_sync:
            for name, item in listed.items():
                old = previous.get(name)
                if old is None or _resource_version(old) != _resource_version(item):
                    changed.append(name)
            changed.extend(name for name in previous if name not in listed)
        self._synced.set()
        for name in changed:
            self._notify(name)
        return getattr(_metadata(response), "resource_version", None)

    def _watch(self, resource_version: Optional[str]) -> None:
        if self._stop.is_set():
            return
        stream = self._watch_factory()
        self._active_watch = stream
        try:
            for event in stream.stream(
                self._tracking_list_func(),
                namespace=self._namespace,
                resource_version=resource_version,
                timeout_seconds=max(int(self._resync_period), 1),
                **self._selector_kwargs(),
            ):
                if self._stop.is_set():
                    break
                event_type = event.get("type")
                if event_type == "ERROR":
                    raw = event.get("raw_object") or {}
                    code = raw.get("code") if isinstance(raw, dict) else None
                    LOGGER.info(
                        "%s watch returned error event (code=%s); relisting", self.kind, code
                    )
                    break
                self._apply(event_type, event.get("object"))
        finally:
            self._active_watch = None
            self._active_response = None
            stream.stop()

    def _apply(self, event_type: Optional[str], obj: Any) -> None:
        name = _name(obj)
        if not name:
            return
        with self._items_lock:
            old = self._items.get(name)
            if event_type == "DELETED":
                self._items.pop(name, None)
            else:
                self._items[name] = obj
        if event_type == "DELETED":
            changed = old is not None
        elif old is None:
            changed = _created_after(obj, self._started_at)
        else:
            changed = _resource_version(old) != _resource_version(obj)
        if changed:
            self._notify(name)

    def _notify(self, name: str) -> None:
        if name not in self._tracked_names:
            return
        try:
            self._on_change(self.kind, name)
        except Exception:  # pragma: no cover - handlers log their own failures
            LOGGER.exception("%s change handler failed for %s", self.kind, name)


class ChangeWatcher:
    """Watches the settings ConfigMap and the Secrets of the settings namespace."""

    def __init__(
        self,
        core_v1: Any,
        namespace: str,
        *,
        config_map_name: str,
        secret_name: str,
        resync_period: float = 180.0,
        watch_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self._stop = threading.Event()
        self._handlers: List[ChangeHandler] = []
        factory = watch_factory or watch.Watch
        self.config_maps = ResourceWatch(
            "ConfigMap",
            core_v1.list_namespaced_config_map,
            namespace,
            tracked_names={config_map_name},
            on_change=self._dispatch,
            stop_event=self._stop,
            resync_period=resync_period,
            watch_factory=factory,
            field_selector=f"metadata.name={config_map_name}",
        )
        self.secrets = ResourceWatch(
            "Secret",
            core_v1.list_namespaced_secret,
            namespace,
            tracked_names={secret_name},
            on_change=self._dispatch,
            stop_event=self._stop,
            resync_period=resync_period,
            watch_factory=factory,
        )

    def add_handler(self, handler: ChangeHandler) -> None:
        self._handlers.append(handler)

    def start(self) -> None:
        LOGGER.info("Starting configmap/secret informers")
        self.config_maps.start()
        self.secrets.start()

    def has_synced(self) -> bool:
        return self.config_maps.has_synced() and self.secrets.has_synced()

    def wait_for_sync(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        for resource in (self.config_maps, self.secrets):
            remaining = deadline - time.monotonic()
            if remaining <= 0 or not resource.synced.wait(remaining):
                return self.has_synced()
        return True

    def stop(self) -> None:
        self._stop.set()
        self.config_maps.stop()
        self.secrets.stop()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _dispatch(self, kind: str, name: str) -> None:
        if self._stop.is_set():
            return
        for handler in list(self._handlers):
            handler(kind, name)


__all__ = ["ChangeHandler", "ChangeWatcher", "ResourceWatch"]
