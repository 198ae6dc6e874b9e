"""
Configuration system for the dispatch core.

Features:
- Dataclass-based configuration with type hints
- YAML file loading with environment variable interpolation
- DISPATCH_* environment overrides
"""

from __future__ import annotations

import logging
import os
import re
import typing
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseConfig")

_ENV_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?:(:-)([^}]*))?(?:(:\?)([^}]*))?\}")


def _interpolate_env_vars(value: Any) -> Any:
    """
    Recursively interpolate environment variables in config values.

    Supports formats:
    - ${VAR_NAME} - Required, raises if not set
    - ${VAR_NAME:-default} - Optional with default
    - ${VAR_NAME:?error message} - Required with custom error
    """
    if isinstance(value, str):

        def replace_var(match: re.Match) -> str:
            var_name = match.group(1)
            has_default = match.group(2) is not None
            default_value = match.group(3) or ""
            has_error = match.group(4) is not None
            error_msg = match.group(5) or f"Required environment variable {var_name} is not set"

            env_value = os.environ.get(var_name)

            if env_value is not None:
                return env_value
            if has_default:
                return default_value
            if has_error:
                raise ValueError(error_msg)
            if match.group(0) == value:
                raise ValueError(f"Environment variable {var_name} is not set")
            return match.group(0)

        result = _ENV_PATTERN.sub(replace_var, value)

        if result.startswith("~"):
            result = str(Path(result).expanduser())

        return result

    if isinstance(value, dict):
        return {k: _interpolate_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [_interpolate_env_vars(item) for item in value]

    return value


def _coerce_type(value: Any, target_type: Any) -> Any:
    """Coerce a value (often a string from YAML or env) to the target type."""
    if value is None:
        return None

    origin = typing.get_origin(target_type)
    args = typing.get_args(target_type)

    if origin is Union:
        non_none_types = [t for t in args if t is not type(None)]
        if len(non_none_types) == 1:
            return _coerce_type(value, non_none_types[0])
        return value

    if target_type is Path:
        return Path(value).expanduser() if value else None

    if origin in (list, List):
        item_type = args[0] if args else str
        if isinstance(value, str):
            value = [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple)):
            return [_coerce_type(item, item_type) for item in value]
        return [_coerce_type(value, item_type)]

    # bool("false") is True
    if target_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "on")
        return bool(value)

    if target_type is int:
        return int(float(value)) if value != "" else 0
    if target_type is float:
        return float(value) if value != "" else 0.0
    if target_type is str:
        return str(value)

    return value


@dataclass
class BaseConfig:
    """
    Base configuration class with YAML loading and env var interpolation.
    """

    @classmethod
    def _field_types(cls) -> Dict[str, Any]:
        hints = typing.get_type_hints(cls)
        return {f.name: hints.get(f.name, Any) for f in fields(cls)}

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        """Create config from dictionary with env var interpolation.

        Unknown keys are ignored with a warning.
        """
        interpolated = _interpolate_env_vars(data or {})
        field_types = cls._field_types()

        filtered = {}
        for key, value in interpolated.items():
            if key in field_types:
                filtered[key] = _coerce_type(value, field_types[key])
            else:
                logger.warning(f"Ignoring unknown {cls.__name__} key: {key}")

        return cls(**filtered)

    @classmethod
    def from_yaml(cls: Type[T], path: Union[str, Path]) -> T:
        """Load config from YAML file with env var interpolation."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_env(cls: Type[T], prefix: str = "DISPATCH_") -> T:
        """Create config from ``{prefix}{FIELD_NAME}`` environment variables."""
        data = {}

        for field_info in fields(cls):
            env_key = f"{prefix}{field_info.name}".upper()
            env_value = os.environ.get(env_key)

            if env_value is not None:
                data[field_info.name] = env_value

        return cls.from_dict(data) if data else cls()

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for key, value in asdict(self).items():
            if isinstance(value, Path):
                result[key] = str(value)
            elif isinstance(value, datetime):
                result[key] = value.isoformat()
            else:
                result[key] = value
        return result

    def merge(self: T, other: Dict[str, Any]) -> T:
        """Create new config with overrides merged in."""
        current = self.to_dict()
        current.update(_interpolate_env_vars(other))
        return self.__class__.from_dict(current)


@dataclass
class DispatcherConfig(BaseConfig):
    """Queue, cache, selection and timeout settings for the dispatcher."""

    # Workers
    worker_count: int = field(
        default_factory=lambda: int(os.getenv("DISPATCH_WORKER_COUNT", "1"))
    )
    poll_interval_seconds: float = 0.1

    # Cache
    cache_max_size: int = field(
        default_factory=lambda: int(os.getenv("DISPATCH_CACHE_MAX_SIZE", "1000"))
    )
    cache_ttl_seconds: float = 0.0

    # Selection
    min_success_rate: float = 0.8

    # Per-capability invocation timeouts
    generation_timeout_seconds: float = 30.0
    moderation_timeout_seconds: float = 5.0
    voice_recognition_timeout_seconds: float = 10.0

    # Moderation results are cross-checked with a second backend when available
    combine_moderation: bool = True

    # Prompt decoration for image/video generation
    enhance_prompts: bool = True

    # Persist terminal results as JSON lines
    results_path: Optional[Path] = field(
        default_factory=lambda: Path(os.environ["DISPATCH_RESULTS_PATH"])
        if os.getenv("DISPATCH_RESULTS_PATH") else None
    )

    def timeout_for(self, capability: str) -> float:
        """Invocation timeout for a capability value such as ``"content_moderation"``."""
        if capability == "content_moderation":
            return self.moderation_timeout_seconds
        if capability == "voice_recognition":
            return self.voice_recognition_timeout_seconds
        return self.generation_timeout_seconds

    def validate(self) -> None:
        if self.worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        if self.poll_interval_seconds <= 0 or self.poll_interval_seconds > 0.1:
            raise ValueError("poll_interval_seconds must be within (0, 0.1]")
        if self.cache_max_size < 1:
            raise ValueError("cache_max_size must be positive")
        for name in (
            "generation_timeout_seconds",
            "moderation_timeout_seconds",
            "voice_recognition_timeout_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


@dataclass
class ModerationConfig(BaseConfig):
    """Content moderation service settings."""

    nsfw_threshold: float = 0.75
    batch_max_concurrent: int = 5
    default_strictness: str = "medium"


@dataclass
class VoiceCommandConfig(BaseConfig):
    """Voice command service settings."""

    language: str = "en"
    noise_cancellation: bool = True
    adaptive_filtering: bool = True
    vad_enabled: bool = True
    vad_threshold: float = 0.05
    confidence_threshold: float = 0.75
    context_awareness: bool = True
    learning_mode: bool = True
    nsfw_commands: bool = True
    nsfw_sensitivity: float = 0.85
    feedback: bool = True


@dataclass
class ApiConfig(BaseConfig):
    """HTTP facade settings."""

    host: str = field(default_factory=lambda: os.getenv("DISPATCH_API_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("DISPATCH_API_PORT", "8080")))
    register_default_backends: bool = True


@dataclass
class DispatchCoreConfig(BaseConfig):
    """
    Master configuration combining all components.
    """

    dispatcher: DispatcherConfig = field(default_factory=DispatcherConfig)
    moderation: ModerationConfig = field(default_factory=ModerationConfig)
    voice: VoiceCommandConfig = field(default_factory=VoiceCommandConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    log_level: str = field(default_factory=lambda: os.getenv("DISPATCH_LOG_LEVEL", "INFO"))
    log_format: str = field(default_factory=lambda: os.getenv("DISPATCH_LOG_FORMAT", "rich"))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DispatchCoreConfig":
        data = dict(data or {})
        sections = {
            "dispatcher": DispatcherConfig.from_dict(data.pop("dispatcher", None) or {}),
            "moderation": ModerationConfig.from_dict(data.pop("moderation", None) or {}),
            "voice": VoiceCommandConfig.from_dict(data.pop("voice", None) or {}),
            "api": ApiConfig.from_dict(data.pop("api", None) or {}),
        }

        global_settings = _interpolate_env_vars(data)
        unknown = sorted(set(global_settings) - {"log_level", "log_format"})
        for key in unknown:
            logger.warning(f"Ignoring unknown config key: {key}")
            global_settings.pop(key)

        return cls(**sections, **global_settings)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "DispatchCoreConfig":
        """Load full config from YAML file."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)


def load_config(path: Optional[Union[str, Path]] = None) -> DispatchCoreConfig:
    """
    Build a configuration.

    Args:
        path: YAML file. If None, defaults with DISPATCH_* env overrides.

    Returns:
        A new DispatchCoreConfig; nothing is cached at module level.
    """
    if path is None:
        config = DispatchCoreConfig()
    else:
        config = DispatchCoreConfig.from_yaml(path)

    config.dispatcher.validate()
    logger.info(
        f"Configuration loaded: workers={config.dispatcher.worker_count}, "
        f"cache_max_size={config.dispatcher.cache_max_size}"
    )
    return config


__all__ = [
    "BaseConfig",
    "DispatcherConfig",
    "ModerationConfig",
    "VoiceCommandConfig",
    "ApiConfig",
    "DispatchCoreConfig",
    "load_config",
]
