from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from research_engine.config import settings

T = TypeVar("T")

SEARCH = "search"
VECTOR = "vector"
LLM = "llm"


class BackendLimiter:
    """Bounds concurrent calls per backend and applies a timeout to each call.

    One limiter is shared by every request served by an orchestrator, so the
    caps hold across requests. A timeout raises ``TimeoutError`` for that call
    only.
    """

    def __init__(self, limits: dict[str, int], timeouts: dict[str, float]):
        self._semaphores = {name: asyncio.Semaphore(max(int(n), 1)) for name, n in limits.items()}
        self._timeouts = dict(timeouts)

    @classmethod
    def from_settings(cls) -> "BackendLimiter":
        return cls(
            limits={
                SEARCH: settings.max_parallel_search,
                VECTOR: settings.max_parallel_vector,
                LLM: settings.max_parallel_llm,
            },
            timeouts={
                SEARCH: settings.search_timeout_seconds,
                VECTOR: settings.vector_timeout_seconds,
                LLM: settings.llm_timeout_seconds,
            },
        )

    async def run(self, backend: str, call: Callable[[], Awaitable[T]]) -> T:
        semaphore = self._semaphores.get(backend)
        if semaphore is None:
            raise KeyError(f"Unknown backend: {backend}")
        timeout = self._timeouts.get(backend)
        async with semaphore:
            return await asyncio.wait_for(call(), timeout=timeout)
