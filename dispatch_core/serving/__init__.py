"""
Request Serving Module - Dispatch Core
======================================

Queueing, backend selection and result handling for heterogeneous AI
generation and moderation requests.

Components:
- Dispatcher: FIFO job queue with worker pool, timeouts and fallback
- BackendRegistry: Named backend configurations per capability
- ModelSelector: Deterministic, performance-aware backend choice
- ResultCache: LRU cache of successful results
- PerformanceTracker: Rolling per-backend statistics
- ResultCombiner: Confidence normalization and moderation merging
- SessionManager: Voice/AR session history
- ContentModerationService / VoiceCommandService: higher-level flows
"""

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

from dispatch_core.serving.models import (
    # Enums
    Capability,
    RequestPriority,
    JobState,
    RiskLevel,
    # Backend parameters
    ImageGenParameters,
    VideoGenParameters,
    VoiceSynthParameters,
    FaceCloneParameters,
    ModerationParameters,
    VoiceRecognitionParameters,
    BackendParameters,
    build_parameters,
    BackendConfig,
    # Payloads
    LoraSpec,
    ImageGenerationPayload,
    VideoGenerationPayload,
    VoiceSynthesisPayload,
    FaceCloningPayload,
    ContentModerationPayload,
    VoiceRecognitionPayload,
    Payload,
    PAYLOAD_TYPES,
    payload_from_dict,
    # Request / result
    Request,
    Result,
    ModerationVerdict,
    BackendPerformance,
    PendingJob,
)

from dispatch_core.serving.backends import (
    RawResult,
    BackendInvoker,
    CallableInvoker,
    HttpInvoker,
)

from dispatch_core.serving.registry import BackendRegistry, default_backends
from dispatch_core.serving.cache import ResultCache
from dispatch_core.serving.performance import PerformanceTracker
from dispatch_core.serving.sessions import Session, SessionStats, SessionManager
from dispatch_core.serving.selector import ModelSelector

from dispatch_core.serving.combiner import (
    ResultCombiner,
    calculate_risk_level,
    normalize_confidence,
)

from dispatch_core.serving.prompts import (
    enhance_image_prompt,
    enhance_video_prompt,
    estimate_audio_duration,
)

from dispatch_core.serving.store import (
    ResultStore,
    InMemoryResultStore,
    JsonlResultStore,
)

from dispatch_core.serving.dispatcher import Dispatcher
from dispatch_core.serving.moderation import ContentModerationService

from dispatch_core.serving.voice import (
    VoiceCommand,
    VoiceCommandResult,
    VoiceCommandService,
)

__all__ = [
    # Errors
    "DispatchError",
    "ValidationError",
    "NotFoundError",
    "DuplicateBackendError",
    "NoBackendAvailableError",
    "SessionEndedError",
    "BackendInvocationError",
    "InvocationTimeoutError",
    # Enums
    "Capability",
    "RequestPriority",
    "JobState",
    "RiskLevel",
    # Backend parameters
    "ImageGenParameters",
    "VideoGenParameters",
    "VoiceSynthParameters",
    "FaceCloneParameters",
    "ModerationParameters",
    "VoiceRecognitionParameters",
    "BackendParameters",
    "build_parameters",
    "BackendConfig",
    # Payloads
    "LoraSpec",
    "ImageGenerationPayload",
    "VideoGenerationPayload",
    "VoiceSynthesisPayload",
    "FaceCloningPayload",
    "ContentModerationPayload",
    "VoiceRecognitionPayload",
    "Payload",
    "PAYLOAD_TYPES",
    "payload_from_dict",
    # Request / result
    "Request",
    "Result",
    "ModerationVerdict",
    "BackendPerformance",
    "PendingJob",
    # Invocation
    "RawResult",
    "BackendInvoker",
    "CallableInvoker",
    "HttpInvoker",
    # Components
    "BackendRegistry",
    "default_backends",
    "ResultCache",
    "PerformanceTracker",
    "Session",
    "SessionStats",
    "SessionManager",
    "ModelSelector",
    "ResultCombiner",
    "calculate_risk_level",
    "normalize_confidence",
    "enhance_image_prompt",
    "enhance_video_prompt",
    "estimate_audio_duration",
    "ResultStore",
    "InMemoryResultStore",
    "JsonlResultStore",
    "Dispatcher",
    "ContentModerationService",
    "VoiceCommand",
    "VoiceCommandResult",
    "VoiceCommandService",
]
