"""
Backend registry: named backend configurations, in registration order.
"""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

from dispatch_core.serving.errors import (
    DuplicateBackendError,
    NotFoundError,
    ValidationError,
)
from dispatch_core.serving.models import (
    BackendConfig,
    Capability,
    FaceCloneParameters,
    ImageGenParameters,
    ModerationParameters,
    VideoGenParameters,
    VoiceRecognitionParameters,
    VoiceSynthParameters,
    build_parameters,
)

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {f.name for f in fields(BackendConfig)} - {"name", "capability"}


class BackendRegistry:
    """
    In-memory registry of backend configurations.

    Dicts preserve insertion order, so listing order is registration order.
    """

    def __init__(self, configs: Optional[Iterable[BackendConfig]] = None):
        self._backends: Dict[str, BackendConfig] = {}
        for config in configs or ():
            self.register(config)

    def register(self, config: BackendConfig) -> BackendConfig:
        """Register a backend. Fails if the name is taken or the config is invalid."""
        if config.name in self._backends:
            raise DuplicateBackendError(config.name)

        config.validate()
        self._backends[config.name] = config
        logger.info(f"Backend registered: {config.name} ({config.capability.value})")
        return config

    def unregister(self, name: str) -> BackendConfig:
        config = self.get(name)
        del self._backends[name]
        logger.info(f"Backend unregistered: {name}")
        return config

    def get(self, name: str) -> BackendConfig:
        try:
            return self._backends[name]
        except KeyError:
            raise NotFoundError("backend", name) from None

    def list(self, capability: Optional[Capability] = None) -> List[BackendConfig]:
        """Enabled backends, optionally filtered by capability."""
        return [
            config
            for config in self._backends.values()
            if config.enabled and (capability is None or config.capability == capability)
        ]

    def all(self) -> List[BackendConfig]:
        """Every registered backend, including disabled ones."""
        return list(self._backends.values())

    def names(self) -> List[str]:
        return list(self._backends)

    def position(self, name: str) -> int:
        """Registration index, used as the final ranking tie-breaker."""
        for index, registered in enumerate(self._backends):
            if registered == name:
                return index
        raise NotFoundError("backend", name)

    def update(self, name: str, **changes: Any) -> BackendConfig:
        """
        Merge ``changes`` into a registered backend.

        A mapping passed as ``parameters`` is merged field by field into the
        existing parameter record; a parameter record replaces it.
        """
        current = self.get(name)

        unknown = sorted(set(changes) - _UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update backend fields: {', '.join(unknown)}")

        params = changes.get("parameters")
        if isinstance(params, Mapping):
            changes["parameters"] = build_parameters(
                current.capability, params, base=current.parameters
            )

        updated = replace(current, **changes)
        updated.validate()
        self._backends[name] = updated
        logger.info(f"Backend updated: {name} ({', '.join(sorted(changes))})")
        return updated

    def __contains__(self, name: object) -> bool:
        return name in self._backends

    def __len__(self) -> int:
        return len(self._backends)

    def register_defaults(self) -> None:
        """Install the standard backend catalogue."""
        for config in default_backends():
            if config.name not in self._backends:
                self.register(config)

    def get_stats(self) -> Dict[str, Any]:
        by_capability: Dict[str, int] = {}
        for config in self._backends.values():
            if config.enabled:
                key = config.capability.value
                by_capability[key] = by_capability.get(key, 0) + 1
        return {
            "total": len(self._backends),
            "enabled": sum(1 for c in self._backends.values() if c.enabled),
            "enabled_by_capability": by_capability,
        }


def default_backends() -> List[BackendConfig]:
    """Standard catalogue: two or more backends per capability."""
    return [
        # Image generation
        BackendConfig(
            name="EDN_LoRA_Photorealistic",
            capability=Capability.IMAGE_GENERATION,
            model="lora-photorealistic-v2",
            parameters=ImageGenParameters(
                resolution="4k", quality="ultra", style="photorealistic"
            ),
            priority=1,
        ),
        BackendConfig(
            name="Stable_Diffusion_XL_Pro",
            capability=Capability.IMAGE_GENERATION,
            model="stable-diffusion-xl-pro",
            parameters=ImageGenParameters(
                steps=40,
                guidance=7.5,
                sampler="DPM++ 2M Karras",
                scheduler="Karras",
                quality="ultra",
            ),
            priority=1,
        ),
        BackendConfig(
            name="Stable_Diffusion_XL_Turbo",
            capability=Capability.IMAGE_GENERATION,
            model="stable-diffusion-xl-turbo",
            parameters=ImageGenParameters(
                resolution="512x512",
                steps=20,
                guidance=7.0,
                sampler="Euler a",
                scheduler="Normal",
                quality="standard",
            ),
            priority=2,
        ),
        BackendConfig(
            name="Stable_Diffusion_XL_Refiner",
            capability=Capability.IMAGE_GENERATION,
            model="stable-diffusion-xl-refiner",
            parameters=ImageGenParameters(
                steps=25, guidance=6.0, sampler="DPM++ 2M Karras", scheduler="Karras"
            ),
            priority=2,
        ),
        BackendConfig(
            name="DALL_E_3",
            capability=Capability.IMAGE_GENERATION,
            model="dall-e-3",
            parameters=ImageGenParameters(quality="hd", style="natural"),
            priority=4,
        ),
        # Video generation
        BackendConfig(
            name="EDN_Video_Gen_Pro",
            capability=Capability.VIDEO_GENERATION,
            model="video-gen-pro-v1",
            parameters=VideoGenParameters(fps=60, resolution="1080p", quality="high"),
            priority=1,
        ),
        BackendConfig(
            name="Runway_Gen_2",
            capability=Capability.VIDEO_GENERATION,
            model="runway-gen-2",
            parameters=VideoGenParameters(fps=30, resolution="720p"),
            priority=2,
        ),
        # Voice synthesis
        BackendConfig(
            name="MiniMax_Speech_02_HD",
            capability=Capability.VOICE_SYNTHESIS,
            model="minimax-speech-02-hd",
            parameters=VoiceSynthParameters(sample_rate=48000, channels=2, audio_format="wav"),
            priority=1,
        ),
        BackendConfig(
            name="ElevenLabs_Multilingual",
            capability=Capability.VOICE_SYNTHESIS,
            model="elevenlabs-multilingual-v2",
            parameters=VoiceSynthParameters(voice_cloning=True, emotion_support=True),
            priority=2,
        ),
        # Face cloning
        BackendConfig(
            name="EDN_Face_Clone_Pro",
            capability=Capability.FACE_CLONING,
            model="face-clone-pro-v2",
            parameters=FaceCloneParameters(
                accuracy=0.95, processing_mode="fast", quality="ultra"
            ),
            priority=1,
        ),
        BackendConfig(
            name="DeepFace_Lab",
            capability=Capability.FACE_CLONING,
            model="deepface-lab-enhanced",
            parameters=FaceCloneParameters(accuracy=0.90, processing_mode="quality"),
            priority=2,
        ),
        # Content moderation
        BackendConfig(
            name="EDN_Content_Moderator_Pro",
            capability=Capability.CONTENT_MODERATION,
            model="content-moderator-pro-v3",
            parameters=ModerationParameters(
                edge_case_detection=True, context_awareness=True, multi_language=True
            ),
            priority=1,
        ),
        BackendConfig(
            name="OpenAI_Moderation",
            capability=Capability.CONTENT_MODERATION,
            model="openai-moderation-latest",
            parameters=ModerationParameters(
                categories=("hate", "sexual", "violence", "self-harm")
            ),
            priority=2,
        ),
        # Voice recognition
        BackendConfig(
            name="EDN_Voice_Command_Pro",
            capability=Capability.VOICE_RECOGNITION,
            model="voice-command-pro-v2",
            parameters=VoiceRecognitionParameters(
                noise_cancellation=True,
                ambient_noise_reduction=0.8,
                voice_activity_detection=True,
            ),
            priority=1,
        ),
        BackendConfig(
            name="Whisper_Large_V3",
            capability=Capability.VOICE_RECOGNITION,
            model="whisper-large-v3",
            parameters=VoiceRecognitionParameters(language="multilingual", temperature=0.0),
            priority=2,
        ),
    ]


__all__ = ["BackendRegistry", "default_backends"]
