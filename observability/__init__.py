"""Observability package for MedFoundry."""

from .logging import (
    setup_logging,
    get_logger,
    get_structured_logger,
    StructuredLogger,
    JSONFormatter,
    ColoredFormatter,
    log_performance,
)
from .pipeline_metrics import (
    record_document,
    record_extraction_metrics,
    record_chunking_metrics,
    record_error,
    get_metrics_summary,
    export_metrics,
    medfoundry_registry,
)

__all__ = [
    'setup_logging',
    'get_logger',
    'get_structured_logger',
    'StructuredLogger',
    'JSONFormatter',
    'ColoredFormatter',
    'log_performance',
    'record_document',
    'record_extraction_metrics',
    'record_chunking_metrics',
    'record_error',
    'get_metrics_summary',
    'export_metrics',
    'medfoundry_registry',
]
