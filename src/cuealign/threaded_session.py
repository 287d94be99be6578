# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Threaded wrapper for SessionController.

Speech engines usually deliver results on their own threads. This module
moves the controller onto a single worker thread: UI commands, engine
callbacks and timer expiries are all queued and applied there in order, so
the controller's generation checks and monotonic cursor never race.
"""

import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .dictation import DictationSegmentManager
from .engine import EngineFailure, PartialResult, RecognitionEngine
from .scheduler import ThreadTimerScheduler
from .session import SessionController, SessionSnapshot

logger = logging.getLogger(__name__)


@dataclass
class ControlCommand:
    """A call to make on the controller from the worker thread."""
    command: str  # Controller method name, or 'shutdown'
    args: tuple[Any, ...] = ()


@dataclass
class TimerExpiry:
    """A scheduler callback posted back to the worker thread."""
    callback: Callable[[], None]


class ThreadedSession:
    """
    Thread-safe front for a SessionController.

    Features:
    - Every method returns immediately; work happens on the worker thread
    - Engine callbacks may be called from any thread
    - Timers fire on the worker thread, never on the timer's own thread
    - The latest SessionSnapshot is cached for polling

    Usage:
        session = ThreadedSession(engine)
        session.start(script_text)

        # From the engine's thread
        session.on_partial_result(text, generation_id)

        snapshot = session.get_latest_snapshot(timeout=0.5)
    """

    # Controller methods that may be queued
    COMMANDS: frozenset[str] = frozenset([
        'start', 'start_dictation', 'stop', 'jump_to', 'resume',
        'on_partial_result', 'on_session_error', 'on_caret_moved', 'handle_event',
    ])

    def __init__(
        self,
        engine: RecognitionEngine,
        controller_factory: Callable[[RecognitionEngine, ThreadTimerScheduler],
                                     SessionController] | None = None
    ) -> None:
        """
        Initialize and start the worker thread.

        Args:
            engine: Recognition engine to drive
            controller_factory: Builds the controller on the worker thread
                (default: SessionController with default settings)
        """
        self.engine = engine
        self._factory = controller_factory or (lambda e, s: SessionController(e, s))

        self.request_queue: queue.Queue[ControlCommand | TimerExpiry] = queue.Queue()
        self.result_queue: queue.Queue[SessionSnapshot] = queue.Queue()

        self.scheduler = ThreadTimerScheduler(self._post_timer)
        self.worker_thread: threading.Thread | None = None
        self.shutdown_flag = threading.Event()
        self.started = threading.Event()

        self.state_lock = threading.Lock()
        self.latest_snapshot: SessionSnapshot | None = None
        self._controller: SessionController | None = None

        self._start_worker()

        self.started.wait(timeout=5.0)
        if not self.started.is_set():
            raise RuntimeError("Worker thread failed to start")

    def _post_timer(self, callback: Callable[[], None]) -> None:
        self.request_queue.put(TimerExpiry(callback))

    def _start_worker(self) -> None:
        """Start the worker thread."""
        self.worker_thread = threading.Thread(
            target=self._worker_loop,
            name="SessionWorker",
            daemon=True
        )
        self.worker_thread.start()

    def _worker_loop(self) -> None:
        """Main loop for the worker thread."""
        try:
            controller: SessionController = self._factory(self.engine, self.scheduler)
            controller.add_listener(self._publish)
            self._controller = controller

            logger.info("ThreadedSession worker started")
            self.started.set()

            while not self.shutdown_flag.is_set():
                try:
                    item = self.request_queue.get(timeout=0.1)
                except queue.Empty:
                    continue

                try:
                    if isinstance(item, TimerExpiry):
                        item.callback()
                    elif item.command == 'shutdown':
                        controller.stop()
                        self.shutdown_flag.set()
                    else:
                        getattr(controller, item.command)(*item.args)
                except Exception as e:
                    logger.error("Error in worker loop: %s", e, exc_info=True)

        finally:
            logger.info("ThreadedSession worker stopped")

    def _publish(self, snapshot: SessionSnapshot) -> None:
        """Cache and queue a snapshot (runs on the worker thread)."""
        with self.state_lock:
            self.latest_snapshot = snapshot
        self.result_queue.put_nowait(snapshot)

    def _submit(self, command: str, *args: Any) -> None:
        if command not in self.COMMANDS:
            raise ValueError(f"Unknown session command: {command}")
        if self.shutdown_flag.is_set():
            logger.warning("Dropping %s: session is shut down", command)
            return
        self.request_queue.put_nowait(ControlCommand(command, args))

    # UI commands

    def start(self, script: str) -> None:
        """Queue SessionController.start."""
        self._submit('start', script)

    def start_dictation(self, manager: DictationSegmentManager) -> None:
        """
        Queue SessionController.start_dictation.

        The manager is used on the worker thread from then on; build it with
        this session's scheduler so its highlight timer fires there too.
        """
        self._submit('start_dictation', manager)

    def stop(self) -> None:
        """Queue SessionController.stop."""
        self._submit('stop')

    def jump_to(self, offset: int) -> None:
        """Queue SessionController.jump_to."""
        self._submit('jump_to', offset)

    def resume(self) -> None:
        """Queue SessionController.resume."""
        self._submit('resume')

    # Engine and editor callbacks (any thread)

    def on_partial_result(self, text: str, generation_id: int) -> None:
        """Queue a partial result."""
        self._submit('on_partial_result', text, generation_id)

    def on_session_error(self, generation_id: int, message: str | None = None) -> None:
        """Queue an engine failure."""
        self._submit('on_session_error', generation_id, message)

    def on_caret_moved(self, position: int) -> None:
        """Queue an editor caret notification."""
        self._submit('on_caret_moved', position)

    def handle_event(self, event: PartialResult | EngineFailure) -> None:
        """Queue a typed engine event."""
        self._submit('handle_event', event)

    # Results

    def get_latest_snapshot(self, timeout: float = 0) -> SessionSnapshot | None:
        """
        Take the next published snapshot from the queue.

        Args:
            timeout: How long to wait for a snapshot (0 = don't wait)

        Returns:
            Next snapshot or None if none is available
        """
        try:
            if timeout > 0:
                return self.result_queue.get(timeout=timeout)
            return self.result_queue.get_nowait()
        except queue.Empty:
            return None

    def get_cached_snapshot(self) -> SessionSnapshot | None:
        """Most recent snapshot, without consuming from the queue."""
        with self.state_lock:
            return self.latest_snapshot

    def wait_until(
        self,
        predicate: Callable[[SessionSnapshot], bool],
        timeout: float = 2.0
    ) -> SessionSnapshot | None:
        """
        Consume snapshots until one satisfies `predicate`.

        Returns:
            The matching snapshot, or None on timeout
        """
        deadline: float = time.monotonic() + timeout
        while True:
            remaining: float = deadline - time.monotonic()
            if remaining <= 0:
                return None
            snapshot = self.get_latest_snapshot(timeout=min(remaining, 0.05))
            if snapshot is not None and predicate(snapshot):
                return snapshot

    def shutdown(self) -> None:
        """Stop the session and the worker thread."""
        if not self.shutdown_flag.is_set():
            self.request_queue.put(ControlCommand('shutdown'))

        if self.worker_thread and self.worker_thread.is_alive():
            self.worker_thread.join(timeout=2.0)
        self.shutdown_flag.set()

    def __del__(self) -> None:
        """Cleanup on deletion."""
        self.shutdown()
