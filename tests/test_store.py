"""Tests for result persistence."""

import pytest

from dispatch_core.serving import InMemoryResultStore, JsonlResultStore


class TestInMemoryResultStore:

    @pytest.mark.asyncio
    async def test_save_and_find(self):
        store = InMemoryResultStore()
        await store.save({"job_id": "a", "success": True})
        await store.save({"job_id": "b", "success": False})

        assert len(store) == 2
        assert await store.find({"success": False}) == [{"job_id": "b", "success": False}]
        assert len(await store.find()) == 2


class TestJsonlResultStore:

    @pytest.mark.asyncio
    async def test_round_trip_through_file(self, tmp_path):
        path = tmp_path / "nested" / "results.jsonl"
        store = JsonlResultStore(path)

        await store.save({"job_id": "a", "capability": "image_generation"})
        await store.save({"job_id": "b", "capability": "content_moderation"})

        assert path.exists()
        found = await store.find({"capability": "content_moderation"})
        assert [r["job_id"] for r in found] == ["b"]

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        store = JsonlResultStore(tmp_path / "none.jsonl")
        assert await store.find() == []

    @pytest.mark.asyncio
    async def test_malformed_lines_are_skipped(self, tmp_path):
        path = tmp_path / "results.jsonl"
        path.write_text('{"job_id": "a"}\nnot json\n\n{"job_id": "b"}\n')

        records = await JsonlResultStore(path).find()

        assert [r["job_id"] for r in records] == ["a", "b"]
