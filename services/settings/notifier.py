"""Fan-out of rebuilt settings snapshots to subscriber queues."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, List

from metrics import SETTINGS_NOTIFICATIONS_TOTAL
from services.settings.errors import SettingsError
from services.settings.models import DeploymentSettings

LOGGER = logging.getLogger(__name__)


class Notifier:
    """Registry of subscriber queues, compared by identity."""

    def __init__(
        self,
        lock: threading.Lock,
        build_settings: Callable[[], DeploymentSettings],
    ) -> None:
        self._lock = lock
        self._build_settings = build_settings
        self._subscribers: List[queue.Queue] = []

    def subscribe(self, channel: queue.Queue) -> None:
        with self._lock:
            self._subscribers.append(channel)
        LOGGER.info("%r subscribed to settings updates", channel)

    def unsubscribe(self, channel: queue.Queue) -> None:
        with self._lock:
            for index, candidate in enumerate(self._subscribers):
                if candidate is channel:
                    del self._subscribers[index]
                    LOGGER.info("%r unsubscribed from settings updates", channel)
                    return

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def on_change(self, kind: str, name: str) -> None:
        """Rebuild the snapshot after ``kind``/``name`` changed and fan it out."""

        try:
            settings = self._build_settings()
        except SettingsError as exc:
            SETTINGS_NOTIFICATIONS_TOTAL.labels(outcome="dropped").inc()
            LOGGER.warning(
                "Unable to parse updated settings after %s %s change: %s", kind, name, exc
            )
            return
        self.notify(settings)

    def notify(self, settings: DeploymentSettings) -> None:
        with self._lock:
            if not self._subscribers:
                return
            LOGGER.info("Notifying %d settings subscribers", len(self._subscribers))
            for channel in self._subscribers:
                try:
                    channel.put_nowait(settings)
                except queue.Full:
                    SETTINGS_NOTIFICATIONS_TOTAL.labels(outcome="skipped").inc()
                    LOGGER.warning("Settings subscriber %r is full; skipping update", channel)
                else:
                    SETTINGS_NOTIFICATIONS_TOTAL.labels(outcome="delivered").inc()


__all__ = ["Notifier"]
