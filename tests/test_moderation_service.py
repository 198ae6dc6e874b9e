"""Tests for the content moderation service."""

import pytest

from dispatch_core.config import ModerationConfig
from dispatch_core.serving import (
    ContentModerationPayload,
    ContentModerationService,
    ModerationVerdict,
    RiskLevel,
)


@pytest.fixture
def scored_invoker(invoker):
    invoker.responses = {
        "Mod_A": {"categories": {"explicit": 0.875}, "confidence": 0.875},
        "Mod_B": {"categories": {"explicit": 0.625}, "confidence": 0.625},
    }
    return invoker


class TestModerate:

    @pytest.mark.asyncio
    async def test_moderate_text(self, dispatcher, scored_invoker):
        service = ContentModerationService(dispatcher)

        async with dispatcher:
            result = await service.moderate("is this acceptable?")

        assert result.success
        assert isinstance(result.payload, ModerationVerdict)
        assert result.payload.risk_level == RiskLevel.HIGH

        stats = service.get_statistics()
        assert stats["total_processed"] == 1
        assert stats["nsfw_detected"] == 0
        assert stats["category_distribution"]["explicit"] == 1
        assert stats["risk_distribution"]["high"] == 1

    @pytest.mark.asyncio
    async def test_string_input_uses_configured_strictness(self, dispatcher, scored_invoker):
        service = ContentModerationService(dispatcher, ModerationConfig(default_strictness="strict"))

        async with dispatcher:
            await service.moderate("check me")

        assert scored_invoker.payloads[0].strictness == "strict"


class TestModerateBatch:

    @pytest.mark.asyncio
    async def test_batch_keeps_order_and_isolates_failures(self, dispatcher, scored_invoker):
        service = ContentModerationService(dispatcher)
        items = [
            {"id": "first", "content": "first text", "metadata": {"source": "chat"}},
            {"id": "broken", "content": ""},
            ContentModerationPayload(content="third text", content_type="text"),
        ]

        async with dispatcher:
            results = await service.moderate_batch(items, max_concurrent=2)

        assert len(results) == 3
        first, broken, third = results

        assert first.success
        assert first.metadata["source"] == "chat"

        assert not broken.success
        assert broken.model_used == "batch_error"
        assert broken.payload.edge_cases == ["batch_processing_error"]
        assert broken.payload.recommendations == ["Manual review required"]

        assert third.success
        assert service.get_statistics()["total_processed"] == 2

    @pytest.mark.asyncio
    async def test_unknown_fields_become_batch_errors(self, dispatcher, scored_invoker):
        service = ContentModerationService(dispatcher)

        async with dispatcher:
            results = await service.moderate_batch([{"content": "x", "colour": "red"}])

        assert results[0].model_used == "batch_error"
