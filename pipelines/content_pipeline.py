"""Content pipeline orchestrator.

Runs one fetched page through change detection, structure extraction and
chunking, hands the chunks to an indexing sink, and records the outcome
in the tracking store. Batches run documents in parallel, each through
its own extractor and chunker.
"""

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

from config.database import DatabaseConfig, create_session_factory
from config.loader import load_pipeline_settings
from config.settings import PipelineSettings
from observability.logging import get_structured_logger, setup_logging
from observability.pipeline_metrics import (
    record_chunking_metrics,
    record_document,
    record_error,
    record_extraction_metrics,
)
from services.shared.tracking import InMemoryTrackingStore, SQLTrackingStore, TrackingStore

from .change_detector import ChangeDetectionResult, ChangeDetector, ProcessingDecision
from .chunker import ContentChunk, IntelligentChunker
from .errors import ConsistencyError, PipelineError
from .structure_extractor import SemanticStructureExtractor

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class FetchedPage:
    """Input from the fetcher."""
    url: str
    html: str
    title: str = ""
    last_modified: Optional[datetime] = None
    previous_content: Optional[str] = None


@dataclass
class PipelineOutcome:
    url: str
    status: OutcomeStatus
    change_type: Optional[str] = None
    content_hash: Optional[str] = None
    chunks: List[ContentChunk] = field(default_factory=list)
    vector_ids: List[str] = field(default_factory=list)
    strategy: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    processing_time: float = 0.0


class ChunkSink(ABC):
    """Embedding/indexing collaborator that receives finished chunks."""

    @abstractmethod
    def index_chunks(self, url: str, chunks: List[ContentChunk]) -> List[str]:
        """Index ``chunks`` and return their vector ids."""


class ContentPipeline:
    """Per-document pipeline with a parallel batch runner."""

    def __init__(self, store: TrackingStore, sink: ChunkSink,
                 settings: Optional[PipelineSettings] = None):
        self.store = store
        self.sink = sink
        self.settings = settings or PipelineSettings()
        self.detector = ChangeDetector(
            store,
            options=self.settings.normalization,
            algorithm=self.settings.hash_algorithm,
            force_reprocess=self.settings.force_reprocess,
        )

    def process_document(self, page: FetchedPage) -> PipelineOutcome:
        """Run one page through the pipeline.

        Document level failures are recorded through the error count and
        returned as a failed outcome. A ConsistencyError is raised.
        """
        start = time.perf_counter()
        log = get_structured_logger(__name__, url=page.url)

        try:
            detection = self.detector.detect_changes(page.url, page.html, page.last_modified,
                                                     page.previous_content)
        except Exception as e:
            log.exception("Change detection failed")
            return self._fail(page.url, None, e, "detection", start)

        log = log.bind(change_type=detection.change_type.value)
        if detection.processing_decision == ProcessingDecision.SKIPPED:
            log.info("Skipping unchanged document")
            record_document(detection.change_type.value, OutcomeStatus.SKIPPED.value)
            return PipelineOutcome(
                url=page.url,
                status=OutcomeStatus.SKIPPED,
                change_type=detection.change_type.value,
                content_hash=detection.current_hash,
                processing_time=time.perf_counter() - start,
            )

        self._verify_hash(page, detection)

        try:
            return self._process(page, detection, log, start)
        except Exception as e:
            log.exception("Document processing failed")
            return self._fail(page.url, detection, e, "processing", start)

    def _verify_hash(self, page: FetchedPage, detection: ChangeDetectionResult) -> None:
        rederived = self.detector.compute_hash(page.html)
        if rederived != detection.current_hash:
            record_error(ConsistencyError.__name__, "detection")
            raise ConsistencyError(
                f"Hash for {page.url} changed between detection ({detection.current_hash}) "
                f"and processing ({rederived})"
            )

    def _process(self, page: FetchedPage, detection: ChangeDetectionResult, log,
                 start: float) -> PipelineOutcome:
        extractor = SemanticStructureExtractor(self.settings.extraction)
        extraction = extractor.extract_structured_content(page.html, page.url, page.title)
        warnings = list(extraction.warnings)
        if not extraction.success:
            raise PipelineError(f"Extraction failed: {extraction.error}")

        content = extraction.content
        record_extraction_metrics(extraction.metrics.processing_time, content.total_sections, content.total_facts)

        chunker = IntelligentChunker(self.settings.chunking, self.settings.strategy_thresholds)
        chunking = chunker.chunk_content(extractor.extract_text(page.html), page.url, page.title, content)
        warnings.extend(chunking.warnings)
        if not chunking.success:
            raise PipelineError(f"Chunking failed: {chunking.error}")

        strategy = chunking.strategy.value
        record_chunking_metrics(strategy, chunking.processing_time, len(chunking.chunks), chunking.rejected)

        vector_ids = self.sink.index_chunks(page.url, chunking.chunks) if chunking.chunks else []

        record = self.detector.build_processed_record(
            page.url,
            detection,
            chunk_count=len(chunking.chunks),
            vector_ids=vector_ids,
            metadata={
                'title': page.title,
                'strategy': strategy,
                'extraction_quality': content.metadata.quality_score,
            },
        )
        self.detector.update_content_record(page.url, record)
        self.detector.mark_content_processed(page.url, detection.current_hash)

        record_document(detection.change_type.value, OutcomeStatus.PROCESSED.value)
        log.info(f"Processed document into {len(chunking.chunks)} chunks", strategy=strategy)
        return PipelineOutcome(
            url=page.url,
            status=OutcomeStatus.PROCESSED,
            change_type=detection.change_type.value,
            content_hash=detection.current_hash,
            chunks=chunking.chunks,
            vector_ids=vector_ids,
            strategy=strategy,
            warnings=warnings,
            processing_time=time.perf_counter() - start,
        )

    def _fail(self, url: str, detection: Optional[ChangeDetectionResult], error: Exception,
              stage: str, start: float) -> PipelineOutcome:
        message = str(error) or type(error).__name__
        change_type = detection.change_type.value if detection else None
        record_error(type(error).__name__, stage)
        record_document(change_type or "unknown", OutcomeStatus.FAILED.value)

        try:
            self.detector.increment_error_count(url, message)
        except Exception:
            # Store outage must not abort the batch; the failure is already logged
            logger.exception(f"Could not record error for {url}")

        return PipelineOutcome(
            url=url,
            status=OutcomeStatus.FAILED,
            change_type=change_type,
            content_hash=detection.current_hash if detection else None,
            error=message,
            processing_time=time.perf_counter() - start,
        )

    def process_batch(self, pages: Sequence[FetchedPage],
                      max_workers: Optional[int] = None) -> List[PipelineOutcome]:
        """Process pages in parallel; outcomes follow input order."""
        workers = max_workers or self.settings.max_workers
        logger.info(f"Processing batch of {len(pages)} documents with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self.process_document, page) for page in pages]

        outcomes = []
        for page, future in zip(pages, futures):
            try:
                outcomes.append(future.result())
            except ConsistencyError as e:
                logger.critical(f"Consistency check failed for {page.url}: {e}")
                outcomes.append(PipelineOutcome(url=page.url, status=OutcomeStatus.FAILED, error=str(e)))

        summary = summarize_outcomes(outcomes)
        logger.info(f"Batch complete: {summary}")
        return outcomes


def summarize_outcomes(outcomes: Sequence[PipelineOutcome]) -> Dict[str, int]:
    summary = {status.value: 0 for status in OutcomeStatus}
    for outcome in outcomes:
        summary[outcome.status.value] += 1
    summary['chunks'] = sum(len(o.chunks) for o in outcomes)
    return summary


def create_pipeline(sink: ChunkSink,
                    settings: Optional[PipelineSettings] = None,
                    database_config: Optional[DatabaseConfig] = None,
                    configure_logging: bool = False) -> ContentPipeline:
    """Build a pipeline from settings.

    Args:
        sink: Receives finished chunks.
        settings: Pipeline settings; loaded from YAML and the environment
            when omitted.
        database_config: Tracking database. Without one the tracking state
            lives in memory for the life of the process.
        configure_logging: Set up root logging at ``settings.log_level``.
    """
    settings = settings or load_pipeline_settings()
    if configure_logging:
        setup_logging(level=settings.log_level)

    if database_config is None:
        store: TrackingStore = InMemoryTrackingStore(ttl_days=settings.record_ttl_days)
    else:
        store = SQLTrackingStore(create_session_factory(database_config), ttl_days=settings.record_ttl_days)

    logger.info(f"Created pipeline with {type(store).__name__} and {settings.chunking.strategy.value} chunking")
    return ContentPipeline(store, sink, settings)
