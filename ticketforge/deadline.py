"""Cancellation context: one deadline + cancel signal threaded through every I/O call.

A ``Deadline`` may spawn children; a child expires at the earlier of its own
timeout and its parent's expiry, and is cancelled whenever its parent is.
Global, per-attempt, first-chunk and stall timers are all expressed this way,
so whichever fires first terminates the operation.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ticketforge.errors import DeadlineExceeded

T = TypeVar("T")


class Deadline:
    def __init__(
        self,
        timeout: float | None = None,
        *,
        parent: Deadline | None = None,
        clock: Callable[[], float] = time.monotonic,
        label: str = "deadline",
    ):
        self._clock = parent._clock if parent is not None else clock
        self._parent = parent
        self.label = label
        expires_at = self._clock() + timeout if timeout is not None else None
        if parent is not None and parent.expires_at is not None:
            expires_at = parent.expires_at if expires_at is None else min(expires_at, parent.expires_at)
        self.expires_at = expires_at
        self._cancelled = asyncio.Event()
        self._cancel_reason: str | None = None
        self._children: list[Deadline] = []
        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent._cancel_reason or "parent cancelled")

    def child(self, timeout: float | None = None, label: str | None = None) -> Deadline:
        """Derive a deadline bounded by both ``timeout`` and this one."""
        return Deadline(timeout, parent=self, label=label or self.label)

    def remaining(self) -> float | None:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and self._clock() >= self.expires_at

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def cancel(self, reason: str = "cancelled") -> None:
        if self._cancelled.is_set():
            return
        self._cancel_reason = reason
        self._cancelled.set()
        for child in self._children:
            child.cancel(reason)

    def check(self) -> None:
        """Raise ``DeadlineExceeded`` if expired or cancelled."""
        if self.cancelled:
            raise DeadlineExceeded(f"{self.label}: {self._cancel_reason}")
        if self.expired:
            raise DeadlineExceeded(f"{self.label} expired")

    async def run(self, awaitable: Awaitable[T], timeout: float | None = None) -> T:
        """Await ``awaitable`` bounded by this deadline (and an optional tighter timeout).

        On expiry or cancellation the inner task is cancelled and awaited
        before ``DeadlineExceeded`` is raised, so nothing is left running.
        """
        scope = self.child(timeout) if timeout is not None else self
        try:
            scope.check()
        except DeadlineExceeded:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            if scope is not self:
                self._children.remove(scope)
            raise
        task = asyncio.ensure_future(awaitable)
        cancel_wait = asyncio.ensure_future(scope._cancelled.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancel_wait},
                timeout=scope.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
            if task in done:
                return task.result()
        finally:
            cancel_wait.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
            if scope is not self:
                self._children.remove(scope)
        scope.check()
        raise DeadlineExceeded(f"{scope.label} expired")

    async def sleep(self, seconds: float) -> None:
        """Sleep, but wake up with ``DeadlineExceeded`` if the deadline hits first."""
        self.check()
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            await self.run(asyncio.sleep(seconds))
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        self.check()
