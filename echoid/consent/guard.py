# echoid/consent/guard.py
"""
EchoID Consent: Single-Flight Guard

At most one in-flight mutating operation per key (e.g. per consent). A
second attempt while the first is still awaiting its receipt fails fast
with OperationInFlight instead of queueing a duplicate transaction.

Usage:
    guard = SingleFlight()
    async with guard.hold(f"unlock:{consent.id}"):
        await machine.request_unlock(consent)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Set, TypeVar

from ..errors import OperationInFlight


T = TypeVar("T")


class SingleFlight:
    """Keyed in-flight marker for one event loop."""

    def __init__(self):
        self._inflight: Set[str] = set()

    def is_busy(self, key: str) -> bool:
        return key in self._inflight

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Raises:
            OperationInFlight: `key` already held
        """
        if key in self._inflight:
            raise OperationInFlight(key)
        self._inflight.add(key)
        try:
            yield
        finally:
            self._inflight.discard(key)

    async def run(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        async with self.hold(key):
            return await operation()
