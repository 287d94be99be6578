# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Single-shot, cancelable timers for the session owner.

The controller never sleeps or spawns threads itself. It asks a scheduler to
call it back later, and every callback runs on the same owner as the rest of
its events:

- AsyncioScheduler: the owner is an asyncio event loop.
- ThreadTimerScheduler: the owner is a worker thread draining a queue; timer
  expiries are posted back onto that queue.
- ManualScheduler: a virtual clock advanced explicitly (tests, replays).
"""

import asyncio
import heapq
import itertools
import logging
import threading
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """Handle returned by Scheduler.call_later."""

    def cancel(self) -> None:
        """Prevent the callback from running. Safe to call more than once."""


class Scheduler(Protocol):
    """Anything that can run a callback on the owner after a delay."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Schedule `callback` to run once after `delay` seconds."""


class SingleShotTimer:
    """
    A named timer slot that holds at most one pending callback.

    Scheduling a new callback cancels the pending one, so timers never stack.
    """

    def __init__(self, scheduler: Scheduler, name: str = "timer") -> None:
        self._scheduler = scheduler
        self._handle: TimerHandle | None = None
        self.name = name

    @property
    def is_pending(self) -> bool:
        """Whether a callback is scheduled and has not yet fired."""
        return self._handle is not None

    def schedule(self, delay: float, callback: Callable[[], None]) -> None:
        """Replace any pending callback with `callback` after `delay` seconds."""
        self.cancel()

        def fire() -> None:
            self._handle = None
            callback()

        self._handle = self._scheduler.call_later(delay, fire)
        logger.debug("%s scheduled in %.2fs", self.name, delay)

    def cancel(self) -> None:
        """Cancel the pending callback, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            logger.debug("%s cancelled", self.name)


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Schedule on the loop (the running loop if none was given)."""
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class _ManualHandle:
    """Handle for ManualScheduler entries."""

    def __init__(self) -> None:
        self.cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """
    Scheduler driven by a virtual clock.

    Nothing runs until advance() is called; callbacks then fire in due-time
    order, including ones scheduled by earlier callbacks within the window.
    """

    def __init__(self) -> None:
        self.now: float = 0.0
        self._queue: list[tuple[float, int, _ManualHandle, Callable[[], None]]] = []
        self._counter = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Queue `callback` at now + delay."""
        handle = _ManualHandle()
        heapq.heappush(
            self._queue, (self.now + max(0.0, delay), next(self._counter), handle, callback))
        return handle

    @property
    def pending_count(self) -> int:
        """Number of callbacks still waiting to fire."""
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward, firing every callback that falls due.

        Returns:
            Number of callbacks run
        """
        target: float = self.now + seconds
        fired: int = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = due
            callback()
            fired += 1
        self.now = target
        return fired

    def run_all(self) -> int:
        """Fire everything pending, however far in the future."""
        fired: int = 0
        while self.pending_count:
            due: float = min(d for d, _, h, _ in self._queue if not h.cancelled)
            fired += self.advance(due - self.now)
        return fired


class _ThreadTimerHandle:
    """Handle for ThreadTimerScheduler entries."""

    def __init__(self) -> None:
        self.cancelled = threading.Event()
        self.timer: threading.Timer | None = None

    def cancel(self) -> None:
        self.cancelled.set()
        if self.timer is not None:
            self.timer.cancel()


class ThreadTimerScheduler:
    """
    Scheduler for a worker thread that owns its state.

    Timer threads never run the callback themselves: they hand it to `post`,
    which must enqueue it for the owner thread. A callback cancelled after
    being posted is skipped when the owner gets to it.
    """

    def __init__(self, post: Callable[[Callable[[], None]], None]) -> None:
        self._post = post

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Start a daemon timer that posts `callback` to the owner."""
        handle = _ThreadTimerHandle()

        def run_on_owner() -> None:
            if not handle.cancelled.is_set():
                callback()

        def expire() -> None:
            if not handle.cancelled.is_set():
                self._post(run_on_owner)

        timer = threading.Timer(max(0.0, delay), expire)
        timer.daemon = True
        handle.timer = timer
        timer.start()
        return handle
