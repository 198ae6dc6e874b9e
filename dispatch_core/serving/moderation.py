"""
Content moderation service built on the dispatcher.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from dispatch_core.config import ModerationConfig
from dispatch_core.serving.combiner import DEFAULT_CATEGORIES
from dispatch_core.serving.dispatcher import Dispatcher
from dispatch_core.serving.errors import DispatchError
from dispatch_core.serving.models import (
    Capability,
    ContentModerationPayload,
    ModerationVerdict,
    Request,
    RequestPriority,
    Result,
    RiskLevel,
    payload_from_dict,
)
from dispatch_core.serving.performance import running_average
from dispatch_core.utils.async_helpers import gather_with_concurrency
from dispatch_core.utils.logging_config import log_duration

logger = logging.getLogger(__name__)

BatchItem = Union[ContentModerationPayload, Mapping[str, Any]]


def _batch_error_result(error: str, metadata: Optional[Dict[str, Any]] = None) -> Result:
    verdict = ModerationVerdict(
        is_nsfw=False,
        confidence=0.0,
        categories={name: 0.0 for name in DEFAULT_CATEGORIES},
        risk_level=RiskLevel.LOW,
        edge_cases=["batch_processing_error"],
        recommendations=["Manual review required"],
    )
    return Result(
        success=False,
        payload=verdict,
        model_used="batch_error",
        error=error,
        metadata=metadata or {},
    )


class ContentModerationService:
    """
    Moderates text and media references through the dispatcher and keeps
    aggregate statistics over the verdicts it has seen.
    """

    def __init__(self, dispatcher: Dispatcher, config: Optional[ModerationConfig] = None):
        self.dispatcher = dispatcher
        self.config = config or ModerationConfig()

        self._total_processed = 0
        self._nsfw_count = 0
        self._average_processing_time_ms = 0.0
        self._category_distribution: Dict[str, int] = {name: 0 for name in DEFAULT_CATEGORIES}
        self._risk_distribution: Dict[str, int] = {level.value: 0 for level in RiskLevel}

    async def moderate(
        self,
        payload: Union[ContentModerationPayload, str],
        priority: RequestPriority = RequestPriority.MEDIUM,
        context: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Result:
        """
        Moderate one piece of content.

        Raises the dispatcher's usage errors (ValidationError, ...) unchanged.
        """
        if isinstance(payload, str):
            payload = ContentModerationPayload(
                content=payload, strictness=self.config.default_strictness
            )

        request = Request(
            payload=payload,
            priority=priority,
            context=context,
            session_id=session_id,
        )
        result = await self.dispatcher.submit(request)

        if result.success and isinstance(result.payload, ModerationVerdict):
            self._update_statistics(result)
        return result

    @log_duration(logger, message="Batch moderation")
    async def moderate_batch(
        self,
        items: Sequence[BatchItem],
        max_concurrent: Optional[int] = None,
    ) -> List[Result]:
        """
        Moderate several items. A failing item yields a failed Result tagged
        ``batch_processing_error`` instead of aborting the batch.
        """
        limit = max_concurrent or self.config.batch_max_concurrent
        return await gather_with_concurrency(
            [self._moderate_item(item) for item in items],
            max_concurrent=limit,
        )

    async def _moderate_item(self, item: BatchItem) -> Result:
        metadata: Dict[str, Any] = {}
        item_id = None
        try:
            if isinstance(item, ContentModerationPayload):
                payload = item
            else:
                data = dict(item)
                item_id = data.pop("id", None)
                metadata = dict(data.pop("metadata", None) or {})
                data.setdefault("strictness", self.config.default_strictness)
                payload = payload_from_dict(Capability.CONTENT_MODERATION, data)

            result = await self.moderate(payload)
        except DispatchError as e:
            logger.error(f"Batch moderation failed for item {item_id or '?'}: {e}")
            return _batch_error_result(str(e), metadata)

        if metadata:
            result = replace(result, metadata={**result.metadata, **metadata})
        return result

    def _update_statistics(self, result: Result) -> None:
        verdict: ModerationVerdict = result.payload
        self._total_processed += 1
        self._average_processing_time_ms = running_average(
            self._average_processing_time_ms,
            result.processing_time_ms,
            self._total_processed,
        )

        for category, score in verdict.categories.items():
            if score > 0.5:
                self._category_distribution[category] = (
                    self._category_distribution.get(category, 0) + 1
                )

        self._risk_distribution[verdict.risk_level.value] += 1
        if verdict.is_nsfw:
            self._nsfw_count += 1

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "total_processed": self._total_processed,
            "nsfw_detected": self._nsfw_count,
            "average_processing_time_ms": round(self._average_processing_time_ms, 2),
            "category_distribution": dict(self._category_distribution),
            "risk_distribution": dict(self._risk_distribution),
        }


__all__ = ["ContentModerationService"]
