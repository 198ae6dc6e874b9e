"""
Voice command service.

Audio is cleaned up and checked for voice activity locally with numpy;
only buffers that contain speech are sent to a voice-recognition backend
through the dispatcher. Commands are then extracted from the transcript
with regex pattern sets and scored against the session history.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Deque, Dict, List, Mapping, Optional, Pattern, Sequence

import numpy as np

from dispatch_core.config import VoiceCommandConfig
from dispatch_core.serving.dispatcher import Dispatcher
from dispatch_core.serving.models import Request, Result, VoiceRecognitionPayload
from dispatch_core.serving.performance import running_average
from dispatch_core.serving.sessions import Session

logger = logging.getLogger(__name__)


# =============================================================================
# AUDIO ANALYSIS
# =============================================================================

@dataclass(frozen=True)
class NoiseProfile:
    environment: str
    noise_level: float
    frequency_profile: Sequence[float]
    adaptation_rate: float
    reduction_factor: float


NOISE_PROFILES: Dict[str, NoiseProfile] = {
    "quiet": NoiseProfile("quiet", 0.1, (0.1, 0.05, 0.02, 0.01), 0.9, 0.1),
    "office": NoiseProfile("office", 0.3, (0.3, 0.2, 0.1, 0.05), 0.7, 0.3),
    "street": NoiseProfile("street", 0.6, (0.6, 0.4, 0.3, 0.2), 0.5, 0.6),
    "crowd": NoiseProfile("crowd", 0.8, (0.8, 0.6, 0.5, 0.4), 0.3, 0.8),
    "transport": NoiseProfile("transport", 0.9, (0.9, 0.8, 0.7, 0.6), 0.2, 0.9),
}

ZCR_THRESHOLD = 0.1


@dataclass(frozen=True)
class AudioAnalysis:
    has_voice: bool
    noise_level: float
    clarity: float


def estimate_noise_profile(samples: np.ndarray) -> NoiseProfile:
    """Pick a noise profile by RMS level; its noise_level is the measured RMS."""
    rms = float(np.sqrt(np.mean(np.square(samples)))) if samples.size else 0.0

    if rms > 0.8:
        environment = "transport"
    elif rms > 0.6:
        environment = "crowd"
    elif rms > 0.3:
        environment = "street"
    elif rms > 0.1:
        environment = "office"
    else:
        environment = "quiet"

    return replace(NOISE_PROFILES[environment], noise_level=rms)


def reduce_noise(
    samples: np.ndarray,
    profile: NoiseProfile,
    adaptive: bool = True,
) -> np.ndarray:
    """Attenuate samples in proportion to how noise-like they are."""
    reduction = profile.reduction_factor * profile.adaptation_rate

    if adaptive:
        strength = np.abs(samples)
        threshold = profile.noise_level * 1.5
        # Quiet samples are probably noise, loud ones probably signal
        adaptive_factor = np.where(
            strength < threshold, 0.9, np.where(strength < threshold * 2, 0.6, 0.2)
        )
        filtered = samples * (1 - reduction * adaptive_factor)
    else:
        filtered = samples * (1 - reduction)

    average_response = float(np.mean(profile.frequency_profile))
    return (filtered * (1 - average_response * 0.5)).astype(np.float32)


def detect_voice_activity(samples: np.ndarray, threshold: float) -> AudioAnalysis:
    """Energy plus zero-crossing-rate voice activity detection."""
    if samples.size < 2:
        return AudioAnalysis(has_voice=False, noise_level=1.0, clarity=0.0)

    average_energy = float(np.sum(np.abs(samples[1:]))) / samples.size
    crossings = np.count_nonzero((samples[1:] >= 0) != (samples[:-1] >= 0))
    zcr = crossings / samples.size

    has_voice = average_energy > threshold and zcr > ZCR_THRESHOLD
    clarity = min(average_energy / (threshold + 0.01), 1.0)
    return AudioAnalysis(has_voice=has_voice, noise_level=1.0 - clarity, clarity=clarity)


# =============================================================================
# COMMAND PATTERNS
# =============================================================================

_VALUE = r"(\w+(?:\s+\w+)*)"
_ADULT = r"(?:nsfw|adult)"

COMMAND_PATTERNS: Dict[str, List[Pattern[str]]] = {
    "standard": [
        re.compile(p, re.IGNORECASE)
        for p in (
            rf"change hair to {_VALUE}",
            rf"set clothing to {_VALUE}",
            rf"adjust lighting to {_VALUE}",
            rf"change background to {_VALUE}",
            r"generate (?:image|video|content)",
            r"save (?:settings|configuration)",
            r"load (?:settings|configuration)",
            r"start (?:recording|capture)",
            r"stop (?:recording|capture)",
            rf"enable {_ADULT} mode",
            rf"disable {_ADULT} mode",
        )
    ],
    "nsfw": [
        re.compile(p, re.IGNORECASE)
        for p in (
            rf"make hair {_VALUE} for {_ADULT}",
            rf"set clothing to {_VALUE} for {_ADULT}",
            rf"adjust pose to {_VALUE} for {_ADULT}",
            rf"enhance (?:style|look) for {_ADULT}",
            rf"change lighting to {_VALUE} for {_ADULT}",
            rf"set mood to {_VALUE} for {_ADULT}",
            rf"increase (?:intensity|strength) for {_ADULT}",
            rf"decrease (?:intensity|strength) for {_ADULT}",
        )
    ],
    "creative": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"create (?:artistic|creative) content",
            rf"apply (?:filter|effect) {_VALUE}",
            rf"change style to {_VALUE}",
            rf"add (?:music|sound) {_VALUE}",
            rf"set (?:tempo|rhythm) to {_VALUE}",
            rf"mix (?:colors|textures) {_VALUE}",
        )
    ],
}

ACTIONS = frozenset({
    "change", "set", "adjust", "generate", "create", "save", "load", "start",
    "stop", "enable", "disable", "make", "enhance", "increase", "decrease",
    "apply", "add", "mix",
})


def _action_of(command: str) -> str:
    first_word = command.lower().split(" ")[0]
    return first_word if first_word in ACTIONS else "unknown"


def _category_of(command: str) -> str:
    if any(word in command for word in ("hair", "clothing", "pose")):
        return "customization"
    if "generate" in command or "create" in command:
        return "generation"
    if "save" in command or "load" in command:
        return "settings"
    if "nsfw" in command or "adult" in command:
        return "nsfw"
    return "general"


def _mentions_adult(text: str) -> bool:
    lowered = text.lower()
    return "nsfw" in lowered or "adult" in lowered


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class VoiceCommand:
    command: str
    action: str
    parameters: Dict[str, Any]
    confidence: float
    is_nsfw: bool
    category: str
    id: str = field(default_factory=lambda: f"cmd_{uuid.uuid4().hex[:12]}")


@dataclass(frozen=True)
class Feedback:
    message: str
    type: str  # success, error, warning, info


@dataclass
class VoiceCommandResult:
    transcript: str
    confidence: float
    commands: List[VoiceCommand]
    noise_level: float
    clarity: float
    processing_time_ms: int
    model_used: str
    context: str
    feedback: Optional[Feedback] = None
    id: str = field(default_factory=lambda: f"voice_cmd_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class CommandLearning:
    usage: int = 0
    success_rate: float = 0.0
    average_confidence: float = 0.0
    contexts: Deque[str] = field(default_factory=lambda: deque(maxlen=10))


# =============================================================================
# SERVICE
# =============================================================================

class VoiceCommandService:
    """Turns raw audio into recognized commands within a session."""

    def __init__(self, dispatcher: Dispatcher, config: Optional[VoiceCommandConfig] = None):
        self.dispatcher = dispatcher
        self.config = config or VoiceCommandConfig()
        self._learning: Dict[str, CommandLearning] = {}

    @property
    def sessions(self):
        return self.dispatcher.sessions

    def create_session(self, context: str = "general", language: Optional[str] = None) -> Session:
        return self.sessions.create_session(context=context, language=language or self.config.language)

    def end_session(self, session_id: str) -> Session:
        return self.sessions.end_session(session_id)

    def get_session(self, session_id: str) -> Session:
        return self.sessions.get(session_id)

    async def process_command(
        self,
        audio: Sequence[float],
        session_id: str,
    ) -> VoiceCommandResult:
        """
        Recognize commands in ``audio``.

        Raises:
            NotFoundError: unknown session
            SessionEndedError: session already ended
        """
        session = self.sessions.require_active(session_id)
        started = time.perf_counter()

        samples = np.asarray(audio, dtype=np.float32)
        if self.config.noise_cancellation:
            profile = estimate_noise_profile(samples)
            samples = reduce_noise(samples, profile, adaptive=self.config.adaptive_filtering)

        if self.config.vad_enabled:
            analysis = detect_voice_activity(samples, self.config.vad_threshold)
        else:
            analysis = AudioAnalysis(has_voice=samples.size > 0, noise_level=0.0, clarity=1.0)

        if not analysis.has_voice:
            return VoiceCommandResult(
                transcript="",
                confidence=0.0,
                commands=[],
                noise_level=analysis.noise_level,
                clarity=analysis.clarity,
                processing_time_ms=_elapsed_ms(started),
                model_used="no_activity",
                context=session.context,
                feedback=Feedback("No voice activity detected", "info"),
            )

        request = Request(
            payload=VoiceRecognitionPayload(
                audio=samples,
                language=session.language,
                enable_noise_cancellation=self.config.noise_cancellation,
            ),
            context=session.context,
            session_id=session_id,
        )
        result = await self.dispatcher.submit(request)

        if not result.success:
            logger.warning(f"Voice recognition failed in {session_id}: {result.error}")
            return VoiceCommandResult(
                transcript="",
                confidence=0.0,
                commands=[],
                noise_level=analysis.noise_level,
                clarity=analysis.clarity,
                processing_time_ms=_elapsed_ms(started),
                model_used=result.model_used or "error_fallback",
                context=session.context,
                feedback=Feedback("Voice command processing failed", "error"),
            )

        transcript = _transcript_of(result)
        history = [r for r in session.history if r.job_id != result.job_id]
        commands = self.extract_commands(transcript, session, result.confidence, history)

        if self.config.learning_mode:
            self._update_learning(commands, transcript)

        return VoiceCommandResult(
            transcript=transcript,
            confidence=result.confidence,
            commands=commands,
            noise_level=analysis.noise_level,
            clarity=analysis.clarity,
            processing_time_ms=_elapsed_ms(started),
            model_used=result.model_used,
            context=session.context,
            feedback=self._feedback(commands, result.confidence),
        )

    def extract_commands(
        self,
        transcript: str,
        session: Session,
        base_confidence: float,
        history: Optional[List[Result]] = None,
    ) -> List[VoiceCommand]:
        """Match the transcript against the pattern sets and score each hit."""
        history = session.history if history is None else history
        nsfw_context = _mentions_adult(transcript) or "nsfw" in session.context.lower()

        pattern_sets = ["standard"]
        if nsfw_context and self.config.nsfw_commands:
            pattern_sets.append("nsfw")
        pattern_sets.append("creative")

        commands: List[VoiceCommand] = []
        for set_name in pattern_sets:
            for pattern in COMMAND_PATTERNS[set_name]:
                match = pattern.search(transcript)
                if not match:
                    continue

                text = match.group(0)
                parameters: Dict[str, Any] = {}
                if match.groups():
                    parameters["value"] = match.group(1)
                is_nsfw = nsfw_context or set_name == "nsfw"
                if is_nsfw or _mentions_adult(text):
                    parameters["context"] = "nsfw"

                confidence = self._command_confidence(text, base_confidence, history)
                if confidence < self.config.confidence_threshold:
                    continue

                # Accepted NSFW commands get a further boost
                if is_nsfw and self.config.nsfw_commands:
                    confidence = min(confidence + 0.1, 1.0)

                commands.append(
                    VoiceCommand(
                        command=text,
                        action=_action_of(text),
                        parameters=parameters,
                        confidence=confidence,
                        is_nsfw=is_nsfw,
                        category=_category_of(text),
                    )
                )

        return commands

    def _command_confidence(
        self, command: str, base_confidence: float, history: List[Result]
    ) -> float:
        confidence = base_confidence

        if self.config.context_awareness:
            confidence += self._context_score(command, history)
        if self.config.learning_mode:
            confidence += self._learning_score(command)
        if self.config.nsfw_commands and _mentions_adult(command):
            confidence += self.config.nsfw_sensitivity * 0.1

        return min(confidence, 1.0)

    @staticmethod
    def _context_score(command: str, history: List[Result]) -> float:
        first_word = command.lower().split(" ")[0]
        score = sum(
            0.1 for past in history[-5:] if first_word in _transcript_of(past).lower()
        )
        return min(score, 0.3)

    def _learning_score(self, command: str) -> float:
        learning = self._learning.get(command.lower())
        return learning.success_rate * 0.2 if learning else 0.0

    def _update_learning(self, commands: List[VoiceCommand], transcript: str) -> None:
        for command in commands:
            learning = self._learning.setdefault(command.command.lower(), CommandLearning())
            learning.usage += 1
            learning.success_rate = running_average(
                learning.success_rate,
                1.0 if command.confidence > 0.75 else 0.0,
                learning.usage,
            )
            learning.average_confidence = running_average(
                learning.average_confidence, command.confidence, learning.usage
            )
            learning.contexts.append(transcript)

    def _feedback(self, commands: List[VoiceCommand], confidence: float) -> Optional[Feedback]:
        if not self.config.feedback:
            return None
        if not commands:
            return Feedback("No commands recognized", "warning")
        if confidence < self.config.confidence_threshold:
            return Feedback("Low confidence, please speak clearly", "warning")
        if any(command.is_nsfw for command in commands):
            return Feedback(f"NSFW commands detected: {len(commands)} command(s)", "success")
        return Feedback(f"{len(commands)} command(s) recognized", "success")

    def get_learning_data(self) -> Dict[str, Dict[str, Any]]:
        return {
            key: {
                "usage": data.usage,
                "success_rate": data.success_rate,
                "average_confidence": data.average_confidence,
                "contexts": list(data.contexts),
            }
            for key, data in self._learning.items()
        }

    def clear_learning_data(self) -> None:
        self._learning.clear()
        logger.info("Voice command learning data cleared")


def _transcript_of(result: Result) -> str:
    payload = result.payload
    if isinstance(payload, str):
        return payload
    if isinstance(payload, Mapping):
        return str(payload.get("transcript", ""))
    return ""


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


__all__ = [
    "NoiseProfile",
    "NOISE_PROFILES",
    "AudioAnalysis",
    "estimate_noise_profile",
    "reduce_noise",
    "detect_voice_activity",
    "COMMAND_PATTERNS",
    "VoiceCommand",
    "VoiceCommandResult",
    "Feedback",
    "VoiceCommandService",
]
