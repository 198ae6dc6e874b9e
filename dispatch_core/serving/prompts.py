"""
Prompt decoration applied to generation payloads before invocation.

The cache key is computed from the caller's payload, so enhancement never
changes which requests deduplicate.
"""

from __future__ import annotations

from dataclasses import replace
from typing import List

from dispatch_core.serving.models import (
    ImageGenerationPayload,
    Payload,
    VideoGenerationPayload,
)

IMAGE_QUALITY_SUFFIX = "4k, ultra detailed, photorealistic, high quality"
MULTI_LORA_SUFFIX = "masterpiece, best quality, ultra detailed"
WORDS_PER_MINUTE = 150


def _format_weight(weight: float) -> str:
    # 1 -> "1.0", 0.75 -> "0.75"
    return repr(float(weight))


def enhance_image_prompt(payload: ImageGenerationPayload) -> ImageGenerationPayload:
    """Add LoRA tags, trigger words, style and quality modifiers to the prompt."""
    prompt = payload.prompt.strip()

    for lora in payload.loras:
        prompt = f"<lora:{lora.name}:{_format_weight(lora.weight)}> {prompt}"

    trigger_words: List[str] = []
    for lora in payload.loras:
        for word in lora.trigger_words:
            if word not in trigger_words:
                trigger_words.append(word)
    if trigger_words:
        prompt += ", " + ", ".join(trigger_words)

    if payload.style:
        prompt += f", {payload.style} style"

    if len(payload.loras) > 1:
        prompt += f", {MULTI_LORA_SUFFIX}"
    prompt += f", {IMAGE_QUALITY_SUFFIX}"

    return replace(payload, prompt=prompt)


def enhance_video_prompt(payload: VideoGenerationPayload) -> VideoGenerationPayload:
    duration = f"{payload.duration_seconds:g}"
    prompt = (
        f"{payload.prompt.strip()}, {payload.style} video style, "
        f"{payload.transition} transitions, {duration} seconds duration"
    )
    return replace(payload, prompt=prompt)


def enhance_payload(payload: Payload) -> Payload:
    """Return the payload actually sent to the backend."""
    if isinstance(payload, ImageGenerationPayload):
        return enhance_image_prompt(payload)
    if isinstance(payload, VideoGenerationPayload):
        return enhance_video_prompt(payload)
    return payload


def estimate_audio_duration(text: str, speed: float = 1.0) -> float:
    """Estimated speech duration in seconds at 150 words per minute."""
    if speed <= 0:
        raise ValueError("speed must be positive")
    words = len(text.split())
    return (words / WORDS_PER_MINUTE) * 60.0 / speed


__all__ = [
    "enhance_image_prompt",
    "enhance_video_prompt",
    "enhance_payload",
    "estimate_audio_duration",
]
