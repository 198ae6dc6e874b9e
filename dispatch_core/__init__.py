"""
Dispatch Core - Request orchestration for AI generation and moderation backends

Provides:
- Typed requests for image/video generation, voice synthesis, face cloning,
  content moderation and voice recognition
- Backend registry with per-capability parameter records
- Deterministic, performance-aware backend selection
- FIFO dispatcher with per-job futures, cancellation, timeouts and one fallback
- LRU result cache and per-backend performance tracking
- Moderation result merging with risk classification
- Voice/AR session history and voice command extraction
- Optional REST API (FastAPI)
"""

__version__ = "1.0.0"

# Errors
from dispatch_core.serving.errors import (
    DispatchError,
    ValidationError,
    NotFoundError,
    DuplicateBackendError,
    NoBackendAvailableError,
    SessionEndedError,
    BackendInvocationError,
    InvocationTimeoutError,
)

# Configuration
from dispatch_core.config import (
    DispatchCoreConfig,
    DispatcherConfig,
    ModerationConfig,
    VoiceCommandConfig,
    ApiConfig,
    load_config,
)

# Core serving
from dispatch_core.serving import (
    Capability,
    RequestPriority,
    JobState,
    RiskLevel,
    BackendConfig,
    build_parameters,
    payload_from_dict,
    ImageGenerationPayload,
    VideoGenerationPayload,
    VoiceSynthesisPayload,
    FaceCloningPayload,
    ContentModerationPayload,
    VoiceRecognitionPayload,
    LoraSpec,
    Request,
    Result,
    ModerationVerdict,
    BackendPerformance,
    RawResult,
    BackendInvoker,
    CallableInvoker,
    HttpInvoker,
    BackendRegistry,
    ResultCache,
    PerformanceTracker,
    SessionManager,
    ModelSelector,
    ResultCombiner,
    Dispatcher,
    ContentModerationService,
    VoiceCommandService,
)

# Utilities
from dispatch_core.utils import setup_logging, LoggingConfig, LogContext

__all__ = [
    "__version__",
    # Errors
    "DispatchError",
    "ValidationError",
    "NotFoundError",
    "DuplicateBackendError",
    "NoBackendAvailableError",
    "SessionEndedError",
    "BackendInvocationError",
    "InvocationTimeoutError",
    # Configuration
    "DispatchCoreConfig",
    "DispatcherConfig",
    "ModerationConfig",
    "VoiceCommandConfig",
    "ApiConfig",
    "load_config",
    # Core serving
    "Capability",
    "RequestPriority",
    "JobState",
    "RiskLevel",
    "BackendConfig",
    "build_parameters",
    "payload_from_dict",
    "ImageGenerationPayload",
    "VideoGenerationPayload",
    "VoiceSynthesisPayload",
    "FaceCloningPayload",
    "ContentModerationPayload",
    "VoiceRecognitionPayload",
    "LoraSpec",
    "Request",
    "Result",
    "ModerationVerdict",
    "BackendPerformance",
    "RawResult",
    "BackendInvoker",
    "CallableInvoker",
    "HttpInvoker",
    "BackendRegistry",
    "ResultCache",
    "PerformanceTracker",
    "SessionManager",
    "ModelSelector",
    "ResultCombiner",
    "Dispatcher",
    "ContentModerationService",
    "VoiceCommandService",
    # Utilities
    "setup_logging",
    "LoggingConfig",
    "LogContext",
]
