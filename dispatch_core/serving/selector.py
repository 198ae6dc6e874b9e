"""
Model selector: deterministic backend choice.

Selection runs in three steps:
1. Candidates are the enabled backends for the request capability, minus
   exclusions, gated on success rate (the gate is dropped if nothing passes).
2. Capability hooks narrow the candidate set. A hook that would leave no
   candidates is skipped.
3. The remainder is ranked by success rate, then latency, then
   registration order.
"""

from __future__ import annotations

import logging
from typing import Callable, Collection, List, Optional

from dispatch_core.serving.errors import NoBackendAvailableError
from dispatch_core.serving.models import (
    BackendConfig,
    Capability,
    FaceCloningPayload,
    ImageGenerationPayload,
    Request,
    VideoGenerationPayload,
)
from dispatch_core.serving.performance import PerformanceTracker
from dispatch_core.serving.registry import BackendRegistry
from dispatch_core.serving.sessions import SessionManager

logger = logging.getLogger(__name__)

DEFAULT_MIN_SUCCESS_RATE = 0.8
NSFW_NAME_MARKERS = ("NSFW", "Pro")

Hook = Callable[[Request, List[BackendConfig]], List[BackendConfig]]


class ModelSelector:
    """Chooses a backend for a request from registry and performance snapshots."""

    def __init__(
        self,
        registry: BackendRegistry,
        tracker: PerformanceTracker,
        sessions: Optional[SessionManager] = None,
        min_success_rate: float = DEFAULT_MIN_SUCCESS_RATE,
    ):
        self.registry = registry
        self.tracker = tracker
        self.sessions = sessions
        self.min_success_rate = min_success_rate

        self._hooks: List[Hook] = [
            self._prefer_quality_hint,
            self._prefer_nsfw_capable,
            self._require_face_accuracy,
            self._prefer_session_affinity,
        ]

    def candidates(
        self, capability: Capability, exclude: Collection[str] = ()
    ) -> List[BackendConfig]:
        return [c for c in self.registry.list(capability) if c.name not in exclude]

    def select(self, request: Request, exclude: Collection[str] = ()) -> BackendConfig:
        """
        Pick the best backend for ``request``.

        Raises:
            NoBackendAvailableError: no enabled backend serves the capability
                once ``exclude`` is applied
        """
        candidates = self.candidates(request.capability, exclude)
        if not candidates:
            raise NoBackendAvailableError(request.capability.value, list(exclude))

        gated = [
            c
            for c in candidates
            if self.tracker.performance_for(c.name).success_rate > self.min_success_rate
        ]
        if gated:
            candidates = gated

        for hook in self._hooks:
            narrowed = hook(request, candidates)
            if narrowed:
                candidates = narrowed

        chosen = min(candidates, key=self._rank_key)
        logger.debug(
            f"Selected {chosen.name} for {request.capability.value} "
            f"from {len(candidates)} candidate(s)"
        )
        return chosen

    def _rank_key(self, config: BackendConfig):
        perf = self.tracker.performance_for(config.name)
        return (
            -perf.success_rate,
            perf.average_latency_ms,
            self.registry.position(config.name),
        )

    # -------------------------------------------------------------------------
    # Capability hooks
    # -------------------------------------------------------------------------

    @staticmethod
    def _prefer_quality_hint(
        request: Request, candidates: List[BackendConfig]
    ) -> List[BackendConfig]:
        hint = (request.quality_hint or "").strip().lower()
        if not hint:
            return candidates
        return [
            c for c in candidates if hint in c.name.lower() or hint in c.model.lower()
        ]

    @staticmethod
    def _prefer_nsfw_capable(
        request: Request, candidates: List[BackendConfig]
    ) -> List[BackendConfig]:
        payload = request.payload
        if not isinstance(payload, (ImageGenerationPayload, VideoGenerationPayload)):
            return candidates
        if not payload.is_nsfw:
            return candidates
        return [c for c in candidates if any(m in c.name for m in NSFW_NAME_MARKERS)]

    @staticmethod
    def _require_face_accuracy(
        request: Request, candidates: List[BackendConfig]
    ) -> List[BackendConfig]:
        payload = request.payload
        if not isinstance(payload, FaceCloningPayload):
            return candidates

        accurate = [c for c in candidates if c.parameters.accuracy >= payload.accuracy]
        if payload.video_input:
            fast = [c for c in accurate if c.parameters.processing_mode == "fast"]
            if fast:
                return fast
        return accurate

    def _prefer_session_affinity(
        self, request: Request, candidates: List[BackendConfig]
    ) -> List[BackendConfig]:
        if (
            request.capability != Capability.VOICE_RECOGNITION
            or not request.session_id
            or self.sessions is None
        ):
            return candidates

        preferred = set(self.sessions.preferred_backends(request.session_id))
        return [c for c in candidates if c.name in preferred]


__all__ = ["ModelSelector", "DEFAULT_MIN_SUCCESS_RATE"]
