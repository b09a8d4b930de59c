"""Tests for cancellable gateway calls."""
import asyncio

import pytest

from ragdemo.cancellation import CancellationToken, run_cancellable
from ragdemo.errors import Cancelled


async def _value(result, delay=0.0):
    await asyncio.sleep(delay)
    return result


def test_returns_result_without_token_or_deadline():
    assert asyncio.run(run_cancellable(_value(42))) == 42


def test_returns_result_before_deadline():
    async def scenario():
        return await run_cancellable(_value("done"), CancellationToken(), timeout=1.0)

    assert asyncio.run(scenario()) == "done"


def test_precancelled_token_never_starts_call():
    started = []

    async def call():
        started.append(True)

    async def scenario():
        token = CancellationToken()
        token.cancel()
        await run_cancellable(call(), token)

    with pytest.raises(Cancelled):
        asyncio.run(scenario())

    assert started == []


def test_deadline_raises_cancelled():
    with pytest.raises(Cancelled, match="deadline"):
        asyncio.run(run_cancellable(_value(1, delay=5), timeout=0.05))


def test_errors_from_the_call_propagate():
    async def broken():
        raise ValueError("bad payload")

    with pytest.raises(ValueError):
        asyncio.run(run_cancellable(broken(), timeout=1.0))
