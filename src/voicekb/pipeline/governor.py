"""Admission control for expensive operations.

At most ``max_concurrent`` operations run at once; later callers wait in a
FIFO queue. Every admitted operation races its timeout budget. Once
``shutdown`` starts, new and queued admissions are rejected and the
governor waits for active operations to drain.

Operations admitted from inside an already admitted operation (a resolver
stage issued by a running ``resolve``) run inside the parent's slot. They
still get their own timeout but never wait in the queue behind their parent.
After shutdown starts they are rejected like any other admission, so an
in-flight ``resolve`` stops issuing new stages.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple, TypeVar

from .errors import OperationTimeout, QueueFullError, ShuttingDownError

log = logging.getLogger(__name__)

T = TypeVar("T")

_slot_owner: contextvars.ContextVar[Optional["RequestGovernor"]] = contextvars.ContextVar(
    "voicekb_governor_slot", default=None
)


def _discard(task: "asyncio.Future[Any]") -> None:
    # Timed-out work may still finish later; its result is dropped here.
    if not task.cancelled():
        task.exception()


class RequestGovernor:
    def __init__(
        self,
        max_concurrent: int = 4,
        max_queue: Optional[int] = 64,
        default_timeout: float = 30.0,
        shutdown_timeout: float = 10.0,
    ) -> None:
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        self.max_concurrent = max_concurrent
        self.max_queue = max_queue or 0
        self.default_timeout = default_timeout
        self.shutdown_timeout = shutdown_timeout
        self._active = 0
        self._waiters: Deque[Tuple[str, "asyncio.Future[None]"]] = deque()
        self._shutting_down = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return sum(1 for _, waiter in self._waiters if not waiter.done())

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    async def admit(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str,
        timeout: Optional[float] = None,
    ) -> T:
        budget = self.default_timeout if timeout is None else timeout
        if budget <= 0:
            raise ValueError("timeout budget must be positive")

        if self._shutting_down:
            log.warning("rejected %s: shutting down", name)
            raise ShuttingDownError(name)

        if _slot_owner.get() is self:
            return await self._run(operation, name, budget)

        await self._acquire(name)
        token = _slot_owner.set(self)
        try:
            return await self._run(operation, name, budget)
        finally:
            _slot_owner.reset(token)
            self._release()

    async def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Reject queued callers and wait for active operations.

        Returns False when the drain deadline elapses with work still active;
        the caller is expected to terminate the process in that case.
        """
        deadline = self.shutdown_timeout if timeout is None else timeout
        if not self._shutting_down:
            self._shutting_down = True
            log.info("governor shutting down: %d active, %d queued", self._active, self.queued)
            while self._waiters:
                name, waiter = self._waiters.popleft()
                if not waiter.done():
                    waiter.set_exception(ShuttingDownError(name))

        if self._active == 0:
            return True
        try:
            await asyncio.wait_for(self._idle.wait(), deadline)
        except asyncio.TimeoutError:
            log.error("drain deadline of %.1fs elapsed with %d operations active", deadline, self._active)
            return False
        log.info("governor drained")
        return True

    async def _acquire(self, name: str) -> None:
        if self._active < self.max_concurrent and not self._waiters:
            self._active += 1
            self._idle.clear()
            return

        depth = self.queued
        if self.max_queue and depth >= self.max_queue:
            log.warning("rejected %s: queue full", name)
            raise QueueFullError(name, depth)

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((name, waiter))
        log.debug("queued %s (%d waiting)", name, len(self._waiters))
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                # slot was handed over right before the caller went away
                self._release()
            elif (name, waiter) in self._waiters:
                self._waiters.remove((name, waiter))
            raise

    def _release(self) -> None:
        while self._waiters:
            _, waiter = self._waiters.popleft()
            if not waiter.done():
                # hand the slot straight to the next caller
                waiter.set_result(None)
                return
        self._active -= 1
        if self._active == 0:
            self._idle.set()

    async def _run(self, operation: Callable[[], Awaitable[T]], name: str, budget: float) -> T:
        task = asyncio.ensure_future(operation())
        try:
            done, _ = await asyncio.wait({task}, timeout=budget)
        except asyncio.CancelledError:
            task.cancel()
            task.add_done_callback(_discard)
            raise
        if task in done:
            return task.result()

        # Cancels cooperative work; work already running in a thread finishes on its own.
        task.cancel()
        task.add_done_callback(_discard)
        log.warning("%s timed out after %.2fs", name, budget)
        raise OperationTimeout(name, budget)
