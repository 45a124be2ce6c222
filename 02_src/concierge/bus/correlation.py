"""Request/response correlation table for cross-agent round trips."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class PendingRequest:
    """One outstanding request awaiting its reply."""

    future: asyncio.Future
    timer: asyncio.TimerHandle
    start_time: float


class PendingRequests:
    """trace_id -> pending reply, resolved at most once by reply or timeout."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingRequest] = {}

    def __contains__(self, trace_id: object) -> bool:
        return trace_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def register(self, trace_id: str, timeout: float) -> asyncio.Future:
        """Open a slot for ``trace_id``; it resolves to None after ``timeout`` seconds."""
        loop = asyncio.get_running_loop()
        if trace_id in self._pending:
            # A newer request on the same ticket supersedes the old one
            self.resolve(trace_id, None)

        future = loop.create_future()
        timer = loop.call_later(timeout, self._expire, trace_id, future)
        self._pending[trace_id] = PendingRequest(future, timer, loop.time())
        return future

    def resolve(self, trace_id: str, value: Any) -> bool:
        """Deliver a reply. Returns False if nothing was waiting (late or unknown)."""
        pending = self._pending.pop(trace_id, None)
        if pending is None:
            return False

        pending.timer.cancel()
        if not pending.future.done():
            pending.future.set_result(value)
        return True

    def discard(self, trace_id: str, future: asyncio.Future) -> None:
        """Drop the slot owned by ``future`` if it is still registered."""
        pending = self._pending.get(trace_id)
        if pending is None or pending.future is not future:
            return
        del self._pending[trace_id]
        pending.timer.cancel()
        if not future.done():
            future.cancel()

    async def request(
        self,
        trace_id: str,
        send: Callable[[], Awaitable[Any]],
        timeout: float,
    ) -> Any:
        """Register, send, and wait for the reply (None on timeout)."""
        future = self.register(trace_id, timeout)
        try:
            await send()
            return await future
        finally:
            self.discard(trace_id, future)

    def cancel_all(self) -> None:
        """Resolve every outstanding request with None."""
        for trace_id in list(self._pending):
            self.resolve(trace_id, None)

    def _expire(self, trace_id: str, future: asyncio.Future) -> None:
        pending = self._pending.get(trace_id)
        if pending is None or pending.future is not future:
            return

        del self._pending[trace_id]
        elapsed = asyncio.get_running_loop().time() - pending.start_time
        logger.warning("Request %s timed out after %.2fs", trace_id, elapsed)
        if not future.done():
            future.set_result(None)
