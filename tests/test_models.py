"""Tests for request, payload and parameter records."""

import numpy as np
import pytest

from dispatch_core.serving import (
    Capability,
    ContentModerationPayload,
    ImageGenerationPayload,
    LoraSpec,
    ModerationVerdict,
    Request,
    RequestPriority,
    Result,
    RiskLevel,
    ValidationError,
    VoiceRecognitionPayload,
    build_parameters,
    payload_from_dict,
)


class TestPayloads:

    def test_payload_from_dict_builds_loras(self):
        payload = payload_from_dict(
            Capability.IMAGE_GENERATION,
            {"prompt": "x", "loras": [{"name": "film", "weight": 0.5, "trigger_words": ["grain"]}]},
        )

        assert payload.loras == (LoraSpec("film", 0.5, ["grain"]),)

    @pytest.mark.parametrize(
        "loras",
        [
            [{"name": "film", "strength": 0.5}],
            ["film"],
            [{"weight": 0.5}],
            7,
        ],
    )
    def test_payload_from_dict_rejects_malformed_loras(self, loras):
        with pytest.raises(ValidationError):
            payload_from_dict(Capability.IMAGE_GENERATION, {"prompt": "x", "loras": loras})

    def test_payload_from_dict_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            payload_from_dict(Capability.CONTENT_MODERATION, {"content": "x", "tone": "dry"})

    @pytest.mark.parametrize(
        "payload",
        [
            ContentModerationPayload(content="x", content_type="hologram"),
            ContentModerationPayload(content="x", strictness="extreme"),
            ImageGenerationPayload(prompt="x", width=0),
            VoiceRecognitionPayload(audio=[]),
        ],
    )
    def test_invalid_payloads(self, payload):
        with pytest.raises(ValidationError):
            Request(payload=payload).validate()

    def test_capability_follows_payload(self):
        request = Request(payload=ContentModerationPayload(content="x"))
        assert request.capability == Capability.CONTENT_MODERATION


class TestCacheKey:

    def test_ignores_identity_and_priority(self):
        first = Request(payload=ImageGenerationPayload(prompt="a fox"))
        second = Request(
            payload=ImageGenerationPayload(prompt="a   fox "),
            priority=RequestPriority.URGENT,
            session_id="voice_session_1",
        )

        assert first.id != second.id
        assert first.cache_key() == second.cache_key()

    def test_content_changes_key(self):
        first = Request(payload=ImageGenerationPayload(prompt="a fox"))
        styled = Request(payload=ImageGenerationPayload(prompt="a fox", style="anime"))
        hinted = Request(payload=ImageGenerationPayload(prompt="a fox"), quality_hint="hd")

        assert len({first.cache_key(), styled.cache_key(), hinted.cache_key()}) == 3

    def test_audio_keyed_by_content(self):
        audio = np.linspace(-1, 1, 64, dtype=np.float32)
        first = Request(payload=VoiceRecognitionPayload(audio=audio))
        same = Request(payload=VoiceRecognitionPayload(audio=audio.copy()))
        other = Request(payload=VoiceRecognitionPayload(audio=audio[::-1].copy()))

        assert first.cache_key() == same.cache_key()
        assert first.cache_key() != other.cache_key()


class TestParameters:

    def test_build_parameters_merges_base(self):
        base = build_parameters(Capability.FACE_CLONING, {"accuracy": 0.95})

        merged = build_parameters(
            Capability.FACE_CLONING, {"processing_mode": "fast"}, base=base
        )

        assert merged.accuracy == 0.95
        assert merged.processing_mode == "fast"

    def test_build_parameters_rejects_foreign_fields(self):
        with pytest.raises(ValidationError):
            build_parameters(Capability.VOICE_SYNTHESIS, {"steps": 10})


class TestResults:

    def test_result_to_dict_serializes_verdict(self):
        verdict = ModerationVerdict(
            is_nsfw=False,
            confidence=0.4,
            categories={"explicit": 0.1},
            risk_level=RiskLevel.LOW,
        )
        result = Result(success=True, payload=verdict, confidence=0.4, job_id="j")

        data = result.to_dict()

        assert data["payload"]["risk_level"] == "low"
        assert data["job_id"] == "j"

    def test_cancelled_result(self):
        result = Result.cancelled_for("j")

        assert result.cancelled
        assert not result.success
        assert result.job_id == "j"
