from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Settled(Generic[T]):
    """Outcome of one unit under settle-all semantics: a value or the exception it raised."""

    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BoundedExecutor:
    """
    Run async units with at most ``limit`` of them in flight at once.

    One executor instance is shared by every unit of a stage invocation. ``run_all`` waits for
    every unit (successes and failures alike) and never cancels siblings when one fails.
    """

    def __init__(self, limit: int) -> None:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValueError(f"Concurrency limit must be a positive int, got {limit!r}")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self.in_flight = 0
        self.peak_in_flight = 0

    async def submit(self, factory: Callable[[], Awaitable[T]]) -> T:
        async with self._semaphore:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                return await factory()
            finally:
                self.in_flight -= 1

    async def _settle(self, factory: Callable[[], Awaitable[T]]) -> Settled[T]:
        try:
            value = await self.submit(factory)
        except Exception as exc:  # noqa: BLE001
            return Settled(error=exc)
        return Settled(value=value)

    async def run_all(self, factories: Iterable[Callable[[], Awaitable[T]]]) -> list[Settled[T]]:
        """Settle every unit; outcomes are returned in submission order."""
        return list(await asyncio.gather(*(self._settle(factory) for factory in factories)))
