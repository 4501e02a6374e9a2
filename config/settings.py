"""Option models for the content pipeline stages.

Every stage receives its options explicitly; nothing here is mutated at
runtime. Presets are returned as fresh copies.
"""

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChunkingStrategy(str, Enum):
    """Segmentation strategies understood by the chunk builder."""
    SEMANTIC = "semantic"
    HIERARCHICAL = "hierarchical"
    FACTUAL = "factual"
    HYBRID = "hybrid"
    FIXED_SIZE = "fixed-size"
    SENTENCE = "sentence"
    PARAGRAPH = "paragraph"


SUPPORTED_HASH_ALGORITHMS = ("sha256", "sha512", "sha3_256", "blake2b")


class NormalizationOptions(BaseModel):
    """Independently togglable canonicalization steps applied before hashing."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    strip_html_tags: bool = Field(default=True, description="Remove markup tags, scripts and styles")
    strip_timestamps: bool = Field(default=True, description="Remove ISO-like and slash/dash dates and clock times")
    strip_ads: bool = Field(default=True, description="Remove advertisement and sponsor markers")
    normalize_urls: bool = Field(default=True, description="Drop query string and fragment from URLs")
    collapse_whitespace: bool = Field(default=True, description="Collapse whitespace runs and trim")
    lowercase: bool = Field(default=True, description="Lowercase the text")


class ExtractionOptions(BaseModel):
    """Options for the semantic structure extractor."""
    model_config = ConfigDict(extra="forbid")

    include_subsections: bool = True
    max_depth: int = Field(default=4, ge=1, le=6, description="Deepest section tree level to build")
    min_section_length: int = Field(default=50, ge=0, description="Sections with shorter content are dropped")
    min_block_length: int = Field(default=3, ge=0, description="Content nodes with shorter text are ignored")
    extract_medical_facts: bool = True
    calculate_readability: bool = False
    relevance_threshold: float = Field(default=0.3, ge=0.0, le=1.0,
                                       description="Sections scoring lower add no related topics")
    fact_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_key_terms: int = Field(default=20, ge=1)
    min_fact_length: int = Field(default=20, ge=1)
    max_fact_length: int = Field(default=300, ge=1)
    target_audience: List[str] = Field(default_factory=lambda: ["patients", "caregivers", "general-public"])

    @model_validator(mode="after")
    def _check_fact_band(self) -> "ExtractionOptions":
        if self.min_fact_length > self.max_fact_length:
            raise ValueError("min_fact_length must not exceed max_fact_length")
        return self


class ChunkingOptions(BaseModel):
    """Options for the chunk builder."""
    model_config = ConfigDict(extra="forbid")

    strategy: ChunkingStrategy = ChunkingStrategy.HYBRID
    target_token_count: int = Field(default=750, gt=0, description="Target tokens per chunk")
    max_token_count: int = Field(default=1000, gt=0, description="Maximum tokens per chunk")
    min_token_count: int = Field(default=200, ge=0, description="Minimum tokens per chunk")
    overlap_tokens: int = Field(default=50, ge=0, description="Context snippet budget between neighbours")
    preserve_context: bool = True
    preserve_sentences: bool = True
    preserve_paragraphs: bool = False
    medical_fact_grouping: bool = True
    semantic_coherence: bool = True
    quality_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_facts_per_chunk: int = Field(default=10, gt=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ChunkingOptions":
        if self.min_token_count > self.max_token_count:
            raise ValueError("min_token_count must not exceed max_token_count")
        if self.target_token_count > self.max_token_count:
            raise ValueError("target_token_count must not exceed max_token_count")
        return self

    @classmethod
    def preset(cls, name: str) -> "ChunkingOptions":
        """Return a fresh copy of a named preset."""
        try:
            return CHUNKING_PRESETS[name].model_copy(deep=True)
        except KeyError:
            raise ValueError(f"Unknown chunking preset: {name}") from None


class StrategyThresholds(BaseModel):
    """Decision thresholds for adaptive strategy selection."""
    model_config = ConfigDict(extra="forbid")

    factual_min_facts: int = 5
    factual_term_density: float = 0.4
    factual_facts_per_100_words: float = 2.0
    hierarchical_min_headings: int = 3
    hierarchical_complexity: float = 0.6
    semantic_complexity: float = 0.3


DEFAULT_CHUNKING_OPTIONS = ChunkingOptions()

EMBEDDING_OPTIMIZED_OPTIONS = ChunkingOptions(
    strategy=ChunkingStrategy.SEMANTIC,
    target_token_count=800,
    max_token_count=1200,
    min_token_count=300,
    overlap_tokens=75,
    preserve_paragraphs=True,
    quality_threshold=0.7,
)

MEDICAL_CONTENT_CHUNKING = ChunkingOptions(
    strategy=ChunkingStrategy.FACTUAL,
    target_token_count=600,
    max_token_count=900,
    min_token_count=250,
    overlap_tokens=100,
    preserve_paragraphs=True,
    quality_threshold=0.8,
)

CHUNKING_PRESETS: Dict[str, ChunkingOptions] = {
    "default": DEFAULT_CHUNKING_OPTIONS,
    "embedding_optimized": EMBEDDING_OPTIMIZED_OPTIONS,
    "medical_content": MEDICAL_CONTENT_CHUNKING,
}


class PipelineSettings(BaseModel):
    """Aggregate configuration for one pipeline instance."""
    model_config = ConfigDict(extra="forbid")

    normalization: NormalizationOptions = Field(default_factory=NormalizationOptions)
    extraction: ExtractionOptions = Field(default_factory=ExtractionOptions)
    chunking: ChunkingOptions = Field(default_factory=ChunkingOptions)
    strategy_thresholds: StrategyThresholds = Field(default_factory=StrategyThresholds)
    hash_algorithm: str = Field(default="sha256", description="Digest used for change detection")
    record_ttl_days: int = Field(default=90, gt=0, description="Tracking record expiry")
    max_workers: int = Field(default=4, gt=0, description="Parallel documents in a batch run")
    force_reprocess: bool = Field(default=False, description="Process unchanged documents too")
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_algorithm(self) -> "PipelineSettings":
        if self.hash_algorithm not in SUPPORTED_HASH_ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {self.hash_algorithm}")
        return self
