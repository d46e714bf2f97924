"""Observability package for codexmirror."""

from .logging import setup_logging, get_logger, log_slow_call, JSONFormatter, ColoredFormatter
from .metrics import (
    codexmirror_registry,
    record_cache_event,
    record_render_outcome,
    record_document_resolution,
    resolve_batch_duration,
    get_metrics_summary,
    export_metrics
)

__all__ = [
    'setup_logging',
    'get_logger',
    'log_slow_call',
    'JSONFormatter',
    'ColoredFormatter',
    'codexmirror_registry',
    'record_cache_event',
    'record_render_outcome',
    'record_document_resolution',
    'resolve_batch_duration',
    'get_metrics_summary',
    'export_metrics'
]
