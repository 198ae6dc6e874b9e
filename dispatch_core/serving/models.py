"""
Data model for the dispatch core.

Requests are a tagged union over capability: the payload type decides which
capability a request targets. Backend parameters are likewise a closed,
per-capability record validated when the backend is registered.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import math
import uuid
from dataclasses import dataclass, field, fields, is_dataclass, replace
from datetime import datetime
from enum import Enum
from typing import (
    Any,
    ClassVar,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Type,
    Union,
)

import numpy as np

from dispatch_core.serving.errors import ValidationError


# =============================================================================
# ENUMS
# =============================================================================

class Capability(Enum):
    """Category of AI operation a backend can perform."""
    IMAGE_GENERATION = "image_generation"
    VIDEO_GENERATION = "video_generation"
    VOICE_SYNTHESIS = "voice_synthesis"
    FACE_CLONING = "face_cloning"
    CONTENT_MODERATION = "content_moderation"
    VOICE_RECOGNITION = "voice_recognition"

    @property
    def is_generation(self) -> bool:
        return self in (
            Capability.IMAGE_GENERATION,
            Capability.VIDEO_GENERATION,
            Capability.VOICE_SYNTHESIS,
            Capability.FACE_CLONING,
        )


class RequestPriority(Enum):
    """Caller-supplied priority. The dispatcher is FIFO and does not reorder."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class JobState(Enum):
    """Dispatch state machine for a single job."""
    QUEUED = "queued"
    SELECTING = "selecting"
    INVOKING = "invoking"
    COMBINING = "combining"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


class RiskLevel(Enum):
    """Derived moderation risk classification."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ValidationError(message)


def _require_choice(value: str, choices: Sequence[str], name: str) -> None:
    _require(value in choices, f"{name} must be one of {', '.join(choices)}; got {value!r}")


# =============================================================================
# BACKEND PARAMETERS - one closed record per capability
# =============================================================================

@dataclass(frozen=True)
class ImageGenParameters:
    CAPABILITY: ClassVar[Capability] = Capability.IMAGE_GENERATION

    resolution: str = "1024x1024"
    steps: int = 30
    guidance: float = 7.5
    sampler: Optional[str] = None
    scheduler: Optional[str] = None
    quality: str = "high"
    style: Optional[str] = None

    def validate(self) -> None:
        _require(self.steps > 0, "steps must be positive")
        _require(self.guidance > 0, "guidance must be positive")


@dataclass(frozen=True)
class VideoGenParameters:
    CAPABILITY: ClassVar[Capability] = Capability.VIDEO_GENERATION

    fps: int = 30
    resolution: str = "720p"
    quality: str = "high"

    def validate(self) -> None:
        _require(self.fps > 0, "fps must be positive")


@dataclass(frozen=True)
class VoiceSynthParameters:
    CAPABILITY: ClassVar[Capability] = Capability.VOICE_SYNTHESIS

    sample_rate: int = 44100
    channels: int = 1
    audio_format: str = "mp3"
    voice_cloning: bool = False
    emotion_support: bool = False

    def validate(self) -> None:
        _require(self.sample_rate > 0, "sample_rate must be positive")
        _require(self.channels in (1, 2), "channels must be 1 or 2")
        _require_choice(self.audio_format, ("mp3", "wav"), "audio_format")


@dataclass(frozen=True)
class FaceCloneParameters:
    CAPABILITY: ClassVar[Capability] = Capability.FACE_CLONING

    accuracy: float = 0.9
    processing_mode: str = "balanced"
    resolution: str = "1024x1024"
    quality: str = "high"

    def validate(self) -> None:
        _require(0.0 <= self.accuracy <= 1.0, "accuracy must be within [0, 1]")
        _require_choice(
            self.processing_mode, ("fast", "balanced", "quality"), "processing_mode"
        )


@dataclass(frozen=True)
class ModerationParameters:
    CAPABILITY: ClassVar[Capability] = Capability.CONTENT_MODERATION

    categories: Sequence[str] = ("explicit", "suggestive", "violent", "hate", "other")
    edge_case_detection: bool = False
    context_awareness: bool = False
    multi_language: bool = False

    def validate(self) -> None:
        _require(len(self.categories) > 0, "categories must not be empty")


@dataclass(frozen=True)
class VoiceRecognitionParameters:
    CAPABILITY: ClassVar[Capability] = Capability.VOICE_RECOGNITION

    noise_cancellation: bool = False
    ambient_noise_reduction: float = 0.0
    voice_activity_detection: bool = False
    language: str = "multilingual"
    temperature: float = 0.0

    def validate(self) -> None:
        _require(
            0.0 <= self.ambient_noise_reduction <= 1.0,
            "ambient_noise_reduction must be within [0, 1]",
        )
        _require(self.temperature >= 0.0, "temperature must not be negative")


BackendParameters = Union[
    ImageGenParameters,
    VideoGenParameters,
    VoiceSynthParameters,
    FaceCloneParameters,
    ModerationParameters,
    VoiceRecognitionParameters,
]

PARAMETER_TYPES: Dict[Capability, Type[Any]] = {
    cls.CAPABILITY: cls
    for cls in (
        ImageGenParameters,
        VideoGenParameters,
        VoiceSynthParameters,
        FaceCloneParameters,
        ModerationParameters,
        VoiceRecognitionParameters,
    )
}


def build_parameters(
    capability: Capability,
    values: Optional[Mapping[str, Any]] = None,
    base: Optional[BackendParameters] = None,
) -> BackendParameters:
    """Build (or merge into ``base``) the parameter record for a capability."""
    param_cls = PARAMETER_TYPES[capability]
    known = {f.name for f in fields(param_cls)}
    values = dict(values or {})

    unknown = sorted(set(values) - known)
    if unknown:
        raise ValidationError(
            f"Unknown {capability.value} parameters: {', '.join(unknown)}"
        )

    try:
        params = replace(base, **values) if base is not None else param_cls(**values)
    except TypeError as e:
        raise ValidationError(str(e)) from e

    params.validate()
    return params


@dataclass(frozen=True)
class BackendConfig:
    """Configuration for one named backend. Immutable once registered."""
    name: str
    capability: Capability
    model: str = ""
    parameters: Optional[BackendParameters] = None
    enabled: bool = True
    priority: int = 1
    endpoint: Optional[str] = None

    def __post_init__(self) -> None:
        if self.parameters is None:
            object.__setattr__(
                self, "parameters", PARAMETER_TYPES[self.capability]()
            )

    def validate(self) -> None:
        _require(bool(self.name and self.name.strip()), "backend name must not be empty")
        _require(isinstance(self.capability, Capability), "capability must be a Capability")
        expected = PARAMETER_TYPES[self.capability]
        _require(
            isinstance(self.parameters, expected),
            f"{self.name}: {self.capability.value} backends take "
            f"{expected.__name__}, got {type(self.parameters).__name__}",
        )
        self.parameters.validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "capability": self.capability.value,
            "model": self.model,
            "enabled": self.enabled,
            "priority": self.priority,
            "endpoint": self.endpoint,
            "parameters": to_jsonable(self.parameters),
        }


# =============================================================================
# REQUEST PAYLOADS - one per capability
# =============================================================================

@dataclass(frozen=True)
class LoraSpec:
    """LoRA adapter applied to an image prompt."""
    name: str
    weight: float = 1.0
    trigger_words: Sequence[str] = ()


@dataclass(frozen=True)
class ImageGenerationPayload:
    CAPABILITY: ClassVar[Capability] = Capability.IMAGE_GENERATION

    prompt: str
    width: int = 1024
    height: int = 1024
    negative_prompt: Optional[str] = None
    steps: Optional[int] = None
    guidance: Optional[float] = None
    seed: Optional[int] = None
    style: Optional[str] = None
    is_nsfw: bool = False
    loras: Sequence[LoraSpec] = ()
    face_image: Optional[str] = None

    def validate(self) -> None:
        _require(bool(self.prompt and self.prompt.strip()), "prompt must not be empty")
        _require(self.width > 0 and self.height > 0, "width and height must be positive")
        _require(self.steps is None or self.steps > 0, "steps must be positive")
        _require(self.guidance is None or self.guidance > 0, "guidance must be positive")
        for lora in self.loras:
            _require(bool(lora.name), "lora name must not be empty")


@dataclass(frozen=True)
class VideoGenerationPayload:
    CAPABILITY: ClassVar[Capability] = Capability.VIDEO_GENERATION

    STYLES: ClassVar[Sequence[str]] = ("cinematic", "slow_motion", "dynamic", "artistic")
    TRANSITIONS: ClassVar[Sequence[str]] = ("smooth", "fade", "slide", "zoom")

    prompt: str
    duration_seconds: float = 5.0
    fps: Optional[int] = None
    style: str = "cinematic"
    transition: str = "smooth"
    voice_integration: bool = False
    voice_script: Optional[str] = None
    voice_type: Optional[str] = None
    background_music: Optional[str] = None
    is_nsfw: bool = False
    face_video: Optional[str] = None

    def validate(self) -> None:
        _require(bool(self.prompt and self.prompt.strip()), "prompt must not be empty")
        _require(self.duration_seconds > 0, "duration_seconds must be positive")
        _require(self.fps is None or self.fps > 0, "fps must be positive")
        _require_choice(self.style, self.STYLES, "style")
        _require_choice(self.transition, self.TRANSITIONS, "transition")


@dataclass(frozen=True)
class VoiceSynthesisPayload:
    CAPABILITY: ClassVar[Capability] = Capability.VOICE_SYNTHESIS

    text: str
    voice: str = "default"
    language: str = "en"
    pitch: float = 1.0
    speed: float = 1.0
    volume: float = 1.0
    emotion: Optional[str] = None
    audio_format: str = "mp3"

    def validate(self) -> None:
        _require(bool(self.text and self.text.strip()), "text must not be empty")
        _require(self.speed > 0, "speed must be positive")
        _require(self.pitch > 0, "pitch must be positive")
        _require_choice(self.audio_format, ("mp3", "wav"), "audio_format")


@dataclass(frozen=True)
class FaceCloningPayload:
    CAPABILITY: ClassVar[Capability] = Capability.FACE_CLONING

    source_image: str
    target_image: Optional[str] = None
    video_input: Optional[str] = None
    accuracy: float = 0.9
    style: str = "photorealistic"

    def validate(self) -> None:
        _require(bool(self.source_image), "source_image must not be empty")
        _require(0.0 <= self.accuracy <= 1.0, "accuracy must be within [0, 1]")
        _require_choice(self.style, ("photorealistic", "artistic", "enhanced"), "style")


@dataclass(frozen=True)
class ContentModerationPayload:
    CAPABILITY: ClassVar[Capability] = Capability.CONTENT_MODERATION

    content: str
    content_type: str = "text"
    strictness: str = "medium"
    enable_edge_case_detection: bool = True

    def validate(self) -> None:
        _require(bool(self.content and self.content.strip()), "content must not be empty")
        _require_choice(self.content_type, ("text", "image", "video", "audio"), "content_type")
        _require_choice(self.strictness, ("low", "medium", "high", "strict"), "strictness")


@dataclass(frozen=True)
class VoiceRecognitionPayload:
    CAPABILITY: ClassVar[Capability] = Capability.VOICE_RECOGNITION

    audio: Sequence[float] = field(compare=False, metadata={"digest": True})
    language: str = "en"
    enable_noise_cancellation: bool = True
    expected_commands: Sequence[str] = ()

    def validate(self) -> None:
        _require(self.audio is not None and len(self.audio) > 0, "audio must not be empty")


Payload = Union[
    ImageGenerationPayload,
    VideoGenerationPayload,
    VoiceSynthesisPayload,
    FaceCloningPayload,
    ContentModerationPayload,
    VoiceRecognitionPayload,
]

PAYLOAD_TYPES: Dict[Capability, Type[Any]] = {
    cls.CAPABILITY: cls
    for cls in (
        ImageGenerationPayload,
        VideoGenerationPayload,
        VoiceSynthesisPayload,
        FaceCloningPayload,
        ContentModerationPayload,
        VoiceRecognitionPayload,
    )
}


def payload_from_dict(capability: Capability, data: Mapping[str, Any]) -> Payload:
    """Build a typed payload from a plain mapping (e.g. decoded JSON)."""
    payload_cls = PAYLOAD_TYPES[capability]
    values = dict(data)
    try:
        if payload_cls is ImageGenerationPayload and "loras" in values:
            values["loras"] = tuple(
                lora if isinstance(lora, LoraSpec) else LoraSpec(**lora)
                for lora in values["loras"]
            )
        return payload_cls(**values)
    except TypeError as e:
        raise ValidationError(f"Invalid {capability.value} payload: {e}") from e


# =============================================================================
# NORMALIZATION
# =============================================================================

def _normalize(value: Any) -> Any:
    """Normalize request content so equivalent requests share a cache key."""
    if isinstance(value, str):
        return " ".join(value.split())
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, float):
        return round(value, 6)
    if isinstance(value, np.ndarray):
        return _audio_digest(value)
    if is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: (
                _audio_digest(getattr(value, f.name))
                if f.metadata.get("digest")
                else _normalize(getattr(value, f.name))
            )
            for f in fields(value)
        }
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def _audio_digest(samples: Sequence[float]) -> str:
    buffer = np.asarray(samples, dtype=np.float32)
    return "audio:" + hashlib.sha256(buffer.tobytes()).hexdigest()


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, enums and arrays into JSON-compatible values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, float) and math.isnan(value):
        return None
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


# =============================================================================
# REQUEST / RESULT
# =============================================================================

@dataclass
class Request:
    """A typed request for one capability, consumed once by the dispatcher."""
    payload: Payload
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:12])
    priority: RequestPriority = RequestPriority.MEDIUM
    context: Optional[str] = None
    session_id: Optional[str] = None
    quality_hint: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def capability(self) -> Capability:
        return self.payload.CAPABILITY

    def validate(self) -> None:
        """Raise ValidationError if the request is malformed."""
        if not isinstance(self.payload, tuple(PAYLOAD_TYPES.values())):
            raise ValidationError(
                f"Unsupported payload type: {type(self.payload).__name__}"
            )
        if not isinstance(self.priority, RequestPriority):
            raise ValidationError(f"Invalid priority: {self.priority!r}")
        if not self.id:
            raise ValidationError("request id must not be empty")
        self.payload.validate()

    def cache_key(self) -> str:
        """Content-derived key; ignores id, priority, session and timestamps."""
        content = json.dumps(
            {
                "capability": self.capability.value,
                "payload": _normalize(self.payload),
                "context": _normalize(self.context),
                "quality_hint": _normalize(self.quality_hint),
            },
            sort_keys=True,
        )
        return hashlib.sha256(content.encode()).hexdigest()[:32]


@dataclass(frozen=True)
class ModerationVerdict:
    """Normalized moderation output."""
    is_nsfw: bool
    confidence: float
    categories: Dict[str, float]
    risk_level: RiskLevel
    edge_cases: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)


@dataclass(frozen=True)
class Result:
    """Terminal outcome of a job. Immutable once produced."""
    success: bool
    payload: Any = None
    confidence: float = 0.0
    model_used: str = ""
    processing_time_ms: int = 0
    error: Optional[str] = None
    job_id: str = ""
    cached: bool = False
    cancelled: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(
        cls,
        job_id: str,
        error: str,
        model_used: str = "",
        processing_time_ms: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "Result":
        return cls(
            success=False,
            error=error,
            job_id=job_id,
            model_used=model_used,
            processing_time_ms=processing_time_ms,
            metadata=metadata or {},
        )

    @classmethod
    def cancelled_for(cls, job_id: str) -> "Result":
        return cls(success=False, error="cancelled", job_id=job_id, cancelled=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "success": self.success,
            "payload": to_jsonable(self.payload),
            "confidence": round(self.confidence, 4),
            "model_used": self.model_used,
            "processing_time_ms": self.processing_time_ms,
            "error": self.error,
            "cached": self.cached,
            "cancelled": self.cancelled,
            "metadata": to_jsonable(self.metadata),
        }


@dataclass(frozen=True)
class BackendPerformance:
    """Rolling statistics for one backend."""
    backend_name: str
    usage_count: int = 0
    average_latency_ms: float = 0.0
    success_rate: float = 1.0
    last_used: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend_name": self.backend_name,
            "usage_count": self.usage_count,
            "average_latency_ms": round(self.average_latency_ms, 2),
            "success_rate": round(self.success_rate, 4),
            "last_used": self.last_used.isoformat() if self.last_used else None,
        }


@dataclass
class PendingJob:
    """A request owned by the dispatcher queue until it reaches a terminal state."""
    request: Request
    future: "asyncio.Future[Result]"
    created_at: datetime = field(default_factory=datetime.now)
    state: JobState = JobState.QUEUED
    backend_name: Optional[str] = None
    cancel_requested: bool = False

    @property
    def id(self) -> str:
        return self.request.id

    @property
    def session_id(self) -> Optional[str]:
        return self.request.session_id


__all__ = [
    "Capability",
    "RequestPriority",
    "JobState",
    "RiskLevel",
    "ImageGenParameters",
    "VideoGenParameters",
    "VoiceSynthParameters",
    "FaceCloneParameters",
    "ModerationParameters",
    "VoiceRecognitionParameters",
    "BackendParameters",
    "PARAMETER_TYPES",
    "build_parameters",
    "BackendConfig",
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
    "to_jsonable",
    "Request",
    "ModerationVerdict",
    "Result",
    "BackendPerformance",
    "PendingJob",
]
