"""Base class for agents that pull work from the task bus."""

import asyncio
from typing import Awaitable, Protocol

from ..bus import ITaskBus, TaskEntry
from ..logging_config import get_logger

logger = get_logger(__name__)


DEFAULT_POLL_INTERVAL = 0.1


class IAgent(Protocol):
    """A bus participant with a lifecycle."""

    @property
    def name(self) -> str:
        """Bus address."""
        ...

    async def start(self) -> None:
        """Subscribe and begin polling."""
        ...

    async def stop(self) -> None:
        """Stop polling and wait for in-flight work."""
        ...


class PollingAgent:
    """Polls its mailbox every ``poll_interval`` seconds.

    Each claimed task runs in its own asyncio task, so one slow task never
    holds up the mailbox. A task whose handler raises is reported with
    ``bus.fail`` (bounded retry), otherwise it is completed.
    """

    name = ""

    def __init__(
        self,
        bus: ITaskBus,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        batch_size: int = 10,
    ):
        self._bus = bus
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._tasks: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, poll: bool = True) -> None:
        """Subscribe to bus topics; with ``poll`` also launch the mailbox loop."""
        if self._running:
            return
        logger.info("Starting agent %s", self.name)
        self._running = True
        self._subscribe()
        if poll:
            self._loop_task = asyncio.create_task(self._poll_loop())

    def _subscribe(self) -> None:
        """Topic subscriptions made on start."""

    def _unsubscribe(self) -> None:
        """Undo ``_subscribe``."""

    async def stop(self) -> None:
        logger.info("Stopping agent %s", self.name)
        self._running = False
        self._unsubscribe()
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self.drain()

    async def tick(self) -> int:
        """Claim and dispatch pending tasks once. Returns how many were claimed."""
        claimed = 0
        for entry in self._bus.peek(self.name, self._batch_size):
            task = self._bus.claim(entry.id, self.name)
            if task is None:
                continue
            self._spawn(self._run_task(task))
            claimed += 1
        return claimed

    async def drain(self) -> None:
        """Wait until every in-flight task (including ones they spawn) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def handle_task(self, entry: TaskEntry) -> None:
        raise NotImplementedError

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _detach(self, coro: Awaitable, description: str) -> asyncio.Task:
        """Fire-and-forget side effect; failures are logged only."""

        async def runner() -> None:
            try:
                await coro
            except Exception:
                logger.exception("Background %s failed in agent %s", description, self.name)

        return self._spawn(runner())

    async def _run_task(self, entry: TaskEntry) -> None:
        token = entry.claim_token
        keeper = self._keep_lease(entry.id, token)
        try:
            await self.handle_task(entry)
        except Exception:
            logger.exception(
                "Agent %s failed on task %s (%s)",
                self.name,
                entry.id,
                entry.envelope.action,
                extra={"context": {"trace_id": entry.envelope.trace_id}},
            )
            self._bus.fail(entry.id, token)
        else:
            self._bus.complete(entry.id, token)
        finally:
            if keeper is not None:
                keeper.cancel()

    def _keep_lease(self, task_id: str, token: str | None) -> asyncio.Task | None:
        """Renew the claim while the handler is alive; only a dead holder loses it."""
        lease = self._bus.claim_lease
        if lease is None or token is None:
            return None

        async def renew() -> None:
            while self._bus.renew(task_id, token):
                await asyncio.sleep(lease / 3)

        return asyncio.create_task(renew())

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
                await asyncio.sleep(self._poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Poll loop error in agent {self.name}: {e}", exc_info=True)
