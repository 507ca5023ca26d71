import logging
from typing import Any

from prometheus_client import Counter, Gauge

import config

logger = logging.getLogger(__name__)


_PROM_COUNTERS: dict[str, Any] = {}
_PROM_GAUGES: dict[str, Any] = {}

_METRIC_NAME_MAP = {
    "publish.success": "incorporation_publish_success_total",
    "publish.upload": "incorporation_document_upload_total",
    "publish.orphaned_blobs": "incorporation_orphaned_blob_total",
    "approval.applied": "incorporation_approval_total",
    "publish.in_flight": "incorporation_publish_in_flight",
}


def _sanitize_metric_name(name: str) -> str:
    return _METRIC_NAME_MAP.get(name, "incorporation_" + name.replace(".", "_").replace("-", "_"))


def _enabled_backend() -> str | None:
    if not config.METRICS_ENABLED:
        return None
    backend = (config.METRICS_BACKEND or "noop").strip().lower()
    return backend if backend == "prometheus" else None


def inc(name: str, value: int = 1) -> None:
    if _enabled_backend() is None:
        return
    prom_name = _sanitize_metric_name(name)
    try:
        counter = _PROM_COUNTERS.get(prom_name)
        if counter is None:
            counter = Counter(prom_name, f"Counter for {name}")
            _PROM_COUNTERS[prom_name] = counter
        counter.inc(value)
    except Exception as exc:
        logger.warning("[METRICS] prometheus inc failed for %s: %s", name, exc)


def gauge(name: str, value: float) -> None:
    if _enabled_backend() is None:
        return
    gauge_name = _sanitize_metric_name(name)
    try:
        metric = _PROM_GAUGES.get(gauge_name)
        if metric is None:
            metric = Gauge(gauge_name, f"Gauge for {name}")
            _PROM_GAUGES[gauge_name] = metric
        metric.set(value)
    except Exception as exc:
        logger.warning("[METRICS] prometheus gauge failed for %s: %s", name, exc)
