"""Tests for deterministic backend selection."""

import pytest

from dispatch_core.serving import (
    BackendConfig,
    BackendRegistry,
    Capability,
    ContentModerationPayload,
    FaceCloneParameters,
    FaceCloningPayload,
    ImageGenerationPayload,
    ModelSelector,
    NoBackendAvailableError,
    PerformanceTracker,
    Request,
    Result,
    SessionManager,
    VideoGenerationPayload,
    VoiceRecognitionPayload,
)


def record_history(tracker, name, calls, failures, latency_ms):
    for index in range(calls):
        tracker.record(name, latency_ms, succeeded=index >= failures)


def make_selector(*configs, sessions=None):
    registry = BackendRegistry(configs)
    tracker = PerformanceTracker()
    return ModelSelector(registry, tracker, sessions=sessions), tracker


def backend(name, capability=Capability.IMAGE_GENERATION, **kwargs):
    return BackendConfig(name=name, capability=capability, **kwargs)


class TestRanking:

    def test_success_rate_beats_latency(self):
        selector, tracker = make_selector(
            backend("A", Capability.CONTENT_MODERATION),
            backend("B", Capability.CONTENT_MODERATION),
        )
        record_history(tracker, "A", calls=20, failures=1, latency_ms=100.0)
        record_history(tracker, "B", calls=10, failures=1, latency_ms=50.0)

        chosen = selector.select(Request(payload=ContentModerationPayload(content="hi")))

        assert chosen.name == "A"

    def test_latency_breaks_success_tie(self):
        selector, tracker = make_selector(backend("A"), backend("B"))
        tracker.record("A", 200.0, succeeded=True)
        tracker.record("B", 50.0, succeeded=True)

        chosen = selector.select(Request(payload=ImageGenerationPayload(prompt="x")))

        assert chosen.name == "B"

    def test_registration_order_breaks_full_tie(self):
        selector, _ = make_selector(backend("Second"), backend("First"))

        chosen = selector.select(Request(payload=ImageGenerationPayload(prompt="x")))

        assert chosen.name == "Second"

    def test_unreliable_backends_are_gated(self):
        selector, tracker = make_selector(backend("A"), backend("B"))
        record_history(tracker, "A", calls=2, failures=1, latency_ms=10.0)

        chosen = selector.select(Request(payload=ImageGenerationPayload(prompt="x")))

        assert chosen.name == "B"

    def test_gate_dropped_when_nothing_passes(self):
        selector, tracker = make_selector(backend("A"), backend("B"))
        record_history(tracker, "A", calls=2, failures=2, latency_ms=10.0)
        record_history(tracker, "B", calls=2, failures=1, latency_ms=10.0)

        chosen = selector.select(Request(payload=ImageGenerationPayload(prompt="x")))

        assert chosen.name == "B"

    def test_exclusion_and_exhaustion(self):
        selector, _ = make_selector(backend("A"), backend("B"))
        request = Request(payload=ImageGenerationPayload(prompt="x"))

        assert selector.select(request, exclude=["A"]).name == "B"
        with pytest.raises(NoBackendAvailableError):
            selector.select(request, exclude=["A", "B"])

    def test_disabled_backends_are_skipped(self):
        selector, _ = make_selector(backend("A", enabled=False), backend("B"))

        chosen = selector.select(Request(payload=ImageGenerationPayload(prompt="x")))

        assert chosen.name == "B"

    def test_selection_is_pure(self):
        selector, tracker = make_selector(backend("A"), backend("B"))
        tracker.record("A", 30.0, succeeded=True)
        before = tracker.get_stats()
        request = Request(payload=ImageGenerationPayload(prompt="x"))

        first = selector.select(request)
        second = selector.select(request)

        assert first is second
        assert tracker.get_stats() == before


class TestCapabilityHooks:

    def test_quality_hint_matches_name_or_model(self):
        selector, _ = make_selector(
            backend("Image_A", model="fast-model"),
            backend("Image_B", model="hd-model"),
        )

        chosen = selector.select(
            Request(payload=ImageGenerationPayload(prompt="x"), quality_hint="HD")
        )

        assert chosen.name == "Image_B"

    def test_unmatched_quality_hint_is_ignored(self):
        selector, _ = make_selector(backend("Image_A"), backend("Image_B"))

        chosen = selector.select(
            Request(payload=ImageGenerationPayload(prompt="x"), quality_hint="nothing")
        )

        assert chosen.name == "Image_A"

    def test_nsfw_image_prefers_marked_backends(self):
        selector, _ = make_selector(backend("Plain"), backend("Image_NSFW"))

        nsfw = selector.select(
            Request(payload=ImageGenerationPayload(prompt="x", is_nsfw=True))
        )
        sfw = selector.select(Request(payload=ImageGenerationPayload(prompt="x")))

        assert nsfw.name == "Image_NSFW"
        assert sfw.name == "Plain"

    def test_nsfw_video_prefers_pro_backends(self):
        selector, _ = make_selector(
            backend("Runway", Capability.VIDEO_GENERATION),
            backend("Video_Pro", Capability.VIDEO_GENERATION),
        )

        chosen = selector.select(
            Request(payload=VideoGenerationPayload(prompt="x", is_nsfw=True))
        )

        assert chosen.name == "Video_Pro"

    def test_face_cloning_requires_accuracy(self):
        selector, _ = make_selector(
            backend(
                "Loose",
                Capability.FACE_CLONING,
                parameters=FaceCloneParameters(accuracy=0.85),
            ),
            backend(
                "Precise",
                Capability.FACE_CLONING,
                parameters=FaceCloneParameters(accuracy=0.95),
            ),
        )

        chosen = selector.select(
            Request(payload=FaceCloningPayload(source_image="face.png", accuracy=0.9))
        )

        assert chosen.name == "Precise"

    def test_face_cloning_video_prefers_fast_mode(self):
        selector, _ = make_selector(
            backend(
                "Quality",
                Capability.FACE_CLONING,
                parameters=FaceCloneParameters(accuracy=0.95, processing_mode="quality"),
            ),
            backend(
                "Fast",
                Capability.FACE_CLONING,
                parameters=FaceCloneParameters(accuracy=0.95, processing_mode="fast"),
            ),
        )

        still = selector.select(
            Request(payload=FaceCloningPayload(source_image="face.png"))
        )
        video = selector.select(
            Request(payload=FaceCloningPayload(source_image="face.png", video_input="clip.mp4"))
        )

        assert still.name == "Quality"
        assert video.name == "Fast"

    def test_session_affinity_for_voice_recognition(self):
        sessions = SessionManager()
        session = sessions.create_session()
        sessions.append_result(
            session.id, Result(success=True, confidence=0.9, model_used="Voice_B")
        )
        selector, _ = make_selector(
            backend("Voice_A", Capability.VOICE_RECOGNITION),
            backend("Voice_B", Capability.VOICE_RECOGNITION),
            sessions=sessions,
        )

        with_session = selector.select(
            Request(payload=VoiceRecognitionPayload(audio=[0.1, 0.2]), session_id=session.id)
        )
        without = selector.select(Request(payload=VoiceRecognitionPayload(audio=[0.1, 0.2])))

        assert with_session.name == "Voice_B"
        assert without.name == "Voice_A"
