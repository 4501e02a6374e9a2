"""Pipelines package for MedFoundry.

Provides change detection, semantic structure extraction, and intelligent
chunking of crawled medical web content.
"""

from .errors import PipelineError, NormalizationError, ConsistencyError, ExtractionError
from .normalizer import normalize, hash_content, compute_content_hash, generate_url_hash, url_to_key
from .change_detector import (
    ChangeDetector,
    ChangeDetectionResult,
    ChangeType,
    ContentDiff,
    DiffRegion,
    ProcessingDecision,
)
from .medical_patterns import SemanticType, FactCategory, Level
from .structure_extractor import (
    SemanticStructureExtractor,
    SemanticSection,
    MedicalFact,
    StructuredContent,
    ContentMetadata,
    ExtractionResult,
    ExtractionMetrics,
    extract_structured_content,
)
from .strategy import ContentAnalysis, analyze_content, recommend_strategy, select_strategy, estimate_tokens
from .chunker import (
    IntelligentChunker,
    ContentChunk,
    ChunkingResult,
    ChunkingMetrics,
    StructuredChunk,
    chunk_content,
    create_structured_chunks,
)
from .content_pipeline import (
    ContentPipeline,
    ChunkSink,
    FetchedPage,
    PipelineOutcome,
    OutcomeStatus,
    create_pipeline,
    summarize_outcomes,
)

__all__ = [
    # Errors
    'PipelineError',
    'NormalizationError',
    'ConsistencyError',
    'ExtractionError',

    # Normalizer
    'normalize',
    'hash_content',
    'compute_content_hash',
    'generate_url_hash',
    'url_to_key',

    # Change detection
    'ChangeDetector',
    'ChangeDetectionResult',
    'ChangeType',
    'ContentDiff',
    'DiffRegion',
    'ProcessingDecision',

    # Extraction
    'SemanticType',
    'FactCategory',
    'Level',
    'SemanticStructureExtractor',
    'SemanticSection',
    'MedicalFact',
    'StructuredContent',
    'ContentMetadata',
    'ExtractionResult',
    'ExtractionMetrics',
    'extract_structured_content',

    # Strategy
    'ContentAnalysis',
    'analyze_content',
    'recommend_strategy',
    'select_strategy',
    'estimate_tokens',

    # Chunker
    'IntelligentChunker',
    'ContentChunk',
    'ChunkingResult',
    'ChunkingMetrics',
    'StructuredChunk',
    'chunk_content',
    'create_structured_chunks',

    # Orchestration
    'ContentPipeline',
    'ChunkSink',
    'FetchedPage',
    'PipelineOutcome',
    'OutcomeStatus',
    'create_pipeline',
    'summarize_outcomes',
]
