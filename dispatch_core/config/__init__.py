"""
Configuration module for the dispatch core.

Provides dataclass-based configuration with:
- YAML file loading
- Environment variable interpolation
- Sensible defaults
"""

from dispatch_core.config.base_config import (
    BaseConfig,
    DispatcherConfig,
    ModerationConfig,
    VoiceCommandConfig,
    ApiConfig,
    DispatchCoreConfig,
    load_config,
)

__all__ = [
    "BaseConfig",
    "DispatcherConfig",
    "ModerationConfig",
    "VoiceCommandConfig",
    "ApiConfig",
    "DispatchCoreConfig",
    "load_config",
]
