"""Configuration loader for pipeline settings."""

import os
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from .settings import PipelineSettings

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = 'MEDFOUNDRY_PIPELINE_CONFIG'
CONFIG_FILENAME = 'pipeline_config.yaml'


def _default_config() -> Dict[str, Any]:
    return PipelineSettings().model_dump(mode='json')


def get_config_path(config_path: Optional[str] = None) -> Optional[str]:
    """Resolve the configuration file path, or None if no file exists."""
    possible_paths = [
        config_path,
        os.environ.get(CONFIG_ENV_VAR),
        os.path.join(os.getcwd(), 'config', CONFIG_FILENAME),
        os.path.join(Path(__file__).parent, CONFIG_FILENAME),
    ]

    for path in possible_paths:
        if path and os.path.exists(path):
            return path

    if config_path:
        logger.warning(f"Pipeline config file not found at {config_path}, using defaults")
    return None


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries; values from override win."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    strategy = os.environ.get('MEDFOUNDRY_CHUNK_STRATEGY')
    if strategy:
        config['chunking']['strategy'] = strategy.lower()

    max_workers = os.environ.get('MEDFOUNDRY_MAX_WORKERS')
    if max_workers:
        config['max_workers'] = int(max_workers)

    log_level = os.environ.get('MEDFOUNDRY_LOG_LEVEL')
    if log_level:
        config['log_level'] = log_level.upper()

    return config


def load_pipeline_settings(config_path: Optional[str] = None) -> PipelineSettings:
    """Load pipeline settings from YAML and the environment.

    File values are deep-merged over the defaults, then environment
    overrides are applied. Invalid values raise ``ValueError``.
    """
    config = _default_config()

    path = get_config_path(config_path)
    if path:
        with open(path, 'r', encoding='utf-8') as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"Pipeline config at {path} must be a mapping")
        config = deep_merge(config, file_config)
        logger.info(f"Loaded pipeline config from {path}")

    config = _apply_env_overrides(config)

    try:
        return PipelineSettings.model_validate(config)
    except ValidationError as e:
        raise ValueError(f"Invalid pipeline configuration: {e}") from e
