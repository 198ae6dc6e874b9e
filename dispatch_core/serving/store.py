"""
Persistence collaborator for terminal results.

The dispatch core only needs ``save(record)`` and ``find(query)``; records
are plain JSON-compatible dicts and no schema is imposed.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import aiofiles

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


def _matches(record: Mapping[str, Any], query: Optional[Mapping[str, Any]]) -> bool:
    if not query:
        return True
    return all(record.get(key) == value for key, value in query.items())


class ResultStore(ABC):
    """Record store interface."""

    @abstractmethod
    async def save(self, record: Record) -> None:
        pass

    @abstractmethod
    async def find(self, query: Optional[Mapping[str, Any]] = None) -> List[Record]:
        """Records whose top-level fields equal every item of ``query``."""
        pass


class InMemoryResultStore(ResultStore):
    def __init__(self):
        self._records: List[Record] = []

    async def save(self, record: Record) -> None:
        self._records.append(dict(record))

    async def find(self, query: Optional[Mapping[str, Any]] = None) -> List[Record]:
        return [dict(r) for r in self._records if _matches(r, query)]

    def __len__(self) -> int:
        return len(self._records)


class JsonlResultStore(ResultStore):
    """Append-only JSON Lines file, one record per line."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def save(self, record: Record) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, default=str)
        async with aiofiles.open(self.path, "a") as f:
            await f.write(line + "\n")

    async def find(self, query: Optional[Mapping[str, Any]] = None) -> List[Record]:
        if not self.path.exists():
            return []

        records: List[Record] = []
        async with aiofiles.open(self.path, "r") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue

                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed record in {self.path}")
                    continue

                if _matches(record, query):
                    records.append(record)

        return records


__all__ = [
    "Record",
    "ResultStore",
    "InMemoryResultStore",
    "JsonlResultStore",
]
