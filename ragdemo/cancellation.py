"""Caller-driven cancellation for blocking gateway calls."""
import asyncio
from typing import Awaitable, Optional, TypeVar

import structlog

from ragdemo.errors import Cancelled

logger = structlog.get_logger()

T = TypeVar("T")


class CancellationToken:
    """A one-shot flag the caller sets to abort in-flight work."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(
    coro: Awaitable[T],
    token: Optional[CancellationToken] = None,
    timeout: Optional[float] = None,
    operation: str = "gateway_call",
) -> T:
    """Await ``coro`` unless the token fires or the deadline passes first.

    Args:
        coro: Coroutine performing the gateway call
        token: Optional cancellation token set by the caller
        timeout: Optional deadline in seconds
        operation: Name used in log events and the error message

    Returns:
        The coroutine's result

    Raises:
        Cancelled: If the token fired or the timeout elapsed; the in-flight
            call is cancelled before this is raised
    """
    if token is None and timeout is None:
        return await coro

    if token is not None and token.cancelled:
        if asyncio.iscoroutine(coro):
            coro.close()
        logger.info("operation_cancelled", operation=operation, reason="token")
        raise Cancelled(f"{operation} cancelled before start")

    task = asyncio.ensure_future(coro)
    waiters = {task}
    token_waiter = None
    if token is not None:
        token_waiter = asyncio.ensure_future(token.wait())
        waiters.add(token_waiter)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if token_waiter is not None:
            token_waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    reason = "token" if token is not None and token.cancelled else "deadline"
    logger.info(
        "operation_cancelled",
        operation=operation,
        reason=reason,
        timeout=timeout,
    )
    if reason == "deadline":
        raise Cancelled(f"{operation} exceeded deadline of {timeout}s")
    raise Cancelled(f"{operation} cancelled by caller")
