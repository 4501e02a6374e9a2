"""Configuration module for MedFoundry.

Provides option models for the pipeline stages, the YAML/environment
loader, and database configuration for the tracking store.
"""

from .settings import (
    ChunkingStrategy,
    NormalizationOptions,
    ExtractionOptions,
    ChunkingOptions,
    StrategyThresholds,
    PipelineSettings,
    DEFAULT_CHUNKING_OPTIONS,
    EMBEDDING_OPTIMIZED_OPTIONS,
    MEDICAL_CONTENT_CHUNKING,
    SUPPORTED_HASH_ALGORITHMS,
)
from .loader import load_pipeline_settings, deep_merge
from .database import (
    DatabaseConfig,
    DatabaseType,
    PostgresConfig,
    build_engine,
    create_session_factory,
)

__all__ = [
    # Pipeline options
    'ChunkingStrategy',
    'NormalizationOptions',
    'ExtractionOptions',
    'ChunkingOptions',
    'StrategyThresholds',
    'PipelineSettings',
    'DEFAULT_CHUNKING_OPTIONS',
    'EMBEDDING_OPTIMIZED_OPTIONS',
    'MEDICAL_CONTENT_CHUNKING',
    'SUPPORTED_HASH_ALGORITHMS',

    # Loading
    'load_pipeline_settings',
    'deep_merge',

    # Database
    'DatabaseConfig',
    'DatabaseType',
    'PostgresConfig',
    'build_engine',
    'create_session_factory',
]
