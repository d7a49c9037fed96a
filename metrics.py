"""Prometheus metrics for the settings distribution layer."""

from __future__ import annotations

import logging
import os
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

_REGISTRY = CollectorRegistry()

_PROMETHEUS_EXPORTER_STARTED = False


SETTINGS_RESYNCS_TOTAL = Counter(
    "settings_informer_resyncs_total",
    "Number of times the settings watch caches were (re)established.",
    registry=_REGISTRY,
)

SETTINGS_SYNC_SECONDS = Histogram(
    "settings_informer_sync_seconds",
    "Time spent waiting for the settings watch caches to complete their initial sync.",
    registry=_REGISTRY,
)

SETTINGS_CACHE_STATE = Gauge(
    "settings_cache_state",
    "Settings cache state (0=uninitialized, 1=initializing, 2=synced).",
    registry=_REGISTRY,
)

SETTINGS_NOTIFICATIONS_TOTAL = Counter(
    "settings_notifications_total",
    "Settings change notifications by delivery outcome.",
    ["outcome"],
    registry=_REGISTRY,
)

SETTINGS_SAVES_TOTAL = Counter(
    "settings_saves_total",
    "Settings persistence attempts by result.",
    ["result"],
    registry=_REGISTRY,
)


def _exporter_port() -> Optional[int]:
    raw = os.getenv("PROMETHEUS_EXPORTER_PORT", "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring PROMETHEUS_EXPORTER_PORT=%r; expected an integer", raw)
        return None


def configure_prometheus_exporter_from_env() -> bool:
    """Serve the settings registry when ``PROMETHEUS_EXPORTER_PORT`` is set.

    Returns whether an exporter is running after the call. Repeated calls
    start at most one HTTP server per process.
    """

    global _PROMETHEUS_EXPORTER_STARTED
    if _PROMETHEUS_EXPORTER_STARTED:
        return True

    port = _exporter_port()
    if port is None:
        return False

    addr = os.getenv("PROMETHEUS_EXPORTER_ADDR", "0.0.0.0")
    try:
        start_http_server(port, addr=addr, registry=_REGISTRY)
    except OSError as exc:
        logger.warning("Settings metrics exporter failed to bind %s:%s: %s", addr, port, exc)
        return False

    _PROMETHEUS_EXPORTER_STARTED = True
    logger.info("Settings metrics exported on %s:%s", addr, port)
    return True


def get_registry() -> CollectorRegistry:
    return _REGISTRY


__all__ = [
    "SETTINGS_CACHE_STATE",
    "SETTINGS_NOTIFICATIONS_TOTAL",
    "SETTINGS_RESYNCS_TOTAL",
    "SETTINGS_SAVES_TOTAL",
    "SETTINGS_SYNC_SECONDS",
    "configure_prometheus_exporter_from_env",
    "get_registry",
]
