"""Prometheus metrics for the codexmirror pipeline."""

import logging
from typing import Dict

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Custom registry so embedding applications can expose or ignore our metrics
codexmirror_registry = CollectorRegistry()

cache_events = Counter(
    'codexmirror_cache_events_total',
    'Cache lookups and writes by event type',
    ['event'],
    registry=codexmirror_registry
)

render_outcomes = Counter(
    'codexmirror_render_total',
    'Browser render attempts by outcome',
    ['outcome'],
    registry=codexmirror_registry
)

document_resolutions = Counter(
    'codexmirror_document_resolutions_total',
    'Resolved documents by source and status',
    ['source', 'status'],
    registry=codexmirror_registry
)

resolve_batch_duration = Histogram(
    'codexmirror_resolve_batch_duration_seconds',
    'Duration of a document resolution batch in seconds',
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=codexmirror_registry
)


def record_cache_event(event: str) -> None:
    """Count one cache event (hit, miss, stale, store, skip-store)."""
    cache_events.labels(event=event).inc()


def record_render_outcome(outcome: str) -> None:
    """Count one render outcome (success, retried, failed, unavailable)."""
    render_outcomes.labels(outcome=outcome).inc()


def record_document_resolution(source: str, ok: bool) -> None:
    """Count one resolved document."""
    document_resolutions.labels(source=source, status='ok' if ok else 'error').inc()


def get_metrics_summary() -> Dict[str, float]:
    """Summarize counters as ``name{labels}`` -> value."""
    summary: Dict[str, float] = {}
    for metric in codexmirror_registry.collect():
        for sample in metric.samples:
            if not sample.name.endswith('_total'):
                continue
            labels = ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
            summary[f"{sample.name}{{{labels}}}"] = sample.value
    return summary


def export_metrics() -> bytes:
    """Render all metrics in the Prometheus text exposition format."""
    return generate_latest(codexmirror_registry)
