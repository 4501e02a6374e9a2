"""Prometheus metrics for the content pipeline.

Only the orchestrator records these; extraction and chunking stay free of
side effects.
"""

import logging
from typing import Any, Dict, Optional

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Custom registry for MedFoundry metrics
medfoundry_registry = CollectorRegistry()

documents_processed = Counter(
    'medfoundry_documents_total',
    'Documents seen by the pipeline',
    ['change_type', 'outcome'],
    registry=medfoundry_registry
)

chunks_emitted = Counter(
    'medfoundry_chunks_emitted_total',
    'Chunks emitted to the indexing sink',
    ['strategy'],
    registry=medfoundry_registry
)

chunks_rejected = Counter(
    'medfoundry_chunks_rejected_total',
    'Chunks rejected by validation',
    ['reason'],
    registry=medfoundry_registry
)

extraction_duration = Histogram(
    'medfoundry_extraction_duration_seconds',
    'Structure extraction duration in seconds',
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=medfoundry_registry
)

chunking_duration = Histogram(
    'medfoundry_chunking_duration_seconds',
    'Chunking duration in seconds',
    ['strategy'],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=medfoundry_registry
)

sections_extracted = Histogram(
    'medfoundry_sections_per_document',
    'Top level sections extracted per document',
    buckets=[0, 1, 2, 5, 10, 25, 50, 100],
    registry=medfoundry_registry
)

facts_extracted = Histogram(
    'medfoundry_facts_per_document',
    'Medical facts extracted per document',
    buckets=[0, 1, 5, 10, 25, 50, 100, 250],
    registry=medfoundry_registry
)

error_count = Counter(
    'medfoundry_errors_total',
    'Pipeline errors by type and stage',
    ['error_type', 'stage'],
    registry=medfoundry_registry
)


def record_document(change_type: str, outcome: str) -> None:
    documents_processed.labels(change_type=change_type, outcome=outcome).inc()


def record_extraction_metrics(duration: float, section_count: int, fact_count: int) -> None:
    extraction_duration.observe(duration)
    sections_extracted.observe(section_count)
    facts_extracted.observe(fact_count)


def record_chunking_metrics(strategy: str, duration: float, emitted: int,
                            rejected: Optional[Dict[str, int]] = None) -> None:
    """Record one chunking run; ``rejected`` maps reason to count."""
    chunking_duration.labels(strategy=strategy).observe(duration)
    chunks_emitted.labels(strategy=strategy).inc(emitted)
    for reason, count in (rejected or {}).items():
        chunks_rejected.labels(reason=reason).inc(count)


def record_error(error_type: str, stage: str) -> None:
    error_count.labels(error_type=error_type, stage=stage).inc()


def _total(metric_name: str) -> float:
    total = 0.0
    for metric in medfoundry_registry.collect():
        for sample in metric.samples:
            if sample.name == metric_name:
                total += sample.value
    return total


def get_metrics_summary() -> Dict[str, Any]:
    """Totals of the pipeline counters."""
    return {
        "documents_total": _total('medfoundry_documents_total'),
        "chunks_emitted_total": _total('medfoundry_chunks_emitted_total'),
        "chunks_rejected_total": _total('medfoundry_chunks_rejected_total'),
        "errors_total": _total('medfoundry_errors_total'),
    }


def export_metrics() -> bytes:
    """Text exposition of the MedFoundry registry."""
    return generate_latest(medfoundry_registry)
