"""Optional persistence of finished interpretations.

The pipeline only needs `save()`. Storage failures are the caller's concern
to log; they never change a run's outcome.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

from somni.core.types import InterpretationResult

logger = logging.getLogger(__name__)

ResultKey = tuple[str, str, int]


def result_key(result: InterpretationResult) -> ResultKey:
    return (result.dream_id, result.persona, result.version)


@runtime_checkable
class InterpretationStore(Protocol):
    async def save(self, result: InterpretationResult) -> None: ...


class InMemoryInterpretationStore:
    """Keeps one result per (dream_id, persona, version); later saves replace earlier ones."""

    def __init__(self, max_size: int = 1000) -> None:
        self._items: dict[ResultKey, InterpretationResult] = {}
        self._max_size = max_size
        self._lock = asyncio.Lock()

    async def save(self, result: InterpretationResult) -> None:
        key = result_key(result)
        async with self._lock:
            if key not in self._items and len(self._items) >= self._max_size:
                # Evict oldest entry (dicts keep insertion order)
                oldest = next(iter(self._items))
                del self._items[oldest]
            self._items.pop(key, None)
            self._items[key] = result
        logger.debug("Stored interpretation %s for %s", result.result_id, key)

    async def get(self, dream_id: str, persona: str, version: int = 1) -> InterpretationResult | None:
        return self._items.get((dream_id, persona, version))

    def __len__(self) -> int:
        return len(self._items)


__all__ = ["InterpretationStore", "InMemoryInterpretationStore", "result_key", "ResultKey"]
