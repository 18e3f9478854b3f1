# tests/test_guard.py
"""Single-flight guard."""

import asyncio

import pytest

from echoid.consent.guard import SingleFlight
from echoid.errors import OperationInFlight


def test_second_holder_rejected():
    guard = SingleFlight()

    async def run():
        async with guard.hold("unlock:1"):
            assert guard.is_busy("unlock:1")
            with pytest.raises(OperationInFlight):
                async with guard.hold("unlock:1"):
                    pass
            async with guard.hold("unlock:2"):
                pass
        assert not guard.is_busy("unlock:1")

    asyncio.run(run())


def test_released_after_failure():
    guard = SingleFlight()

    async def boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(guard.run("k", boom))
    assert not guard.is_busy("k")


def test_concurrent_runs():
    guard = SingleFlight()

    async def slow():
        await asyncio.sleep(0.01)
        return "done"

    async def run():
        return await asyncio.gather(guard.run("k", slow), guard.run("k", slow), return_exceptions=True)

    first, second = asyncio.run(run())
    assert first == "done"
    assert isinstance(second, OperationInFlight)
