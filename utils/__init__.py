# Quick Study utilities
from .exceptions import (
    QuickStudyError,
    ValidationError,
    NotFoundError,
    JobStateError,
    UpstreamError,
    SchemaError,
    GenerationError
)

from .model_config import (
    ModelConfig,
    ModelProvider,
    estimate_tokens,
    estimate_savings,
    MODEL_CONFIGS,
    DEFAULT_MODEL
)

from .config import Settings, get_settings

__all__ = [
    'QuickStudyError',
    'ValidationError',
    'NotFoundError',
    'JobStateError',
    'UpstreamError',
    'SchemaError',
    'GenerationError',
    'ModelConfig',
    'ModelProvider',
    'estimate_tokens',
    'estimate_savings',
    'MODEL_CONFIGS',
    'DEFAULT_MODEL',
    'Settings',
    'get_settings'
]
