# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Session controller: owns one speech recognition session at a time.

Every recognition session is a "generation" with its own id and its own
cumulative transcript. Engine callbacks carry the id they were started with;
anything tagged with a stale id is dropped, so results still in flight from
a cancelled session can never move the cursor or touch the document.

The controller is not thread-safe. All calls, engine callbacks and timer
expiries must happen on one owner (an event loop, or the worker thread of
ThreadedSession).

States:

    IDLE ──start──▶ LISTENING ──error──▶ RESTARTING ──timer──▶ LISTENING
                      │  ▲                    │
                      │  └──────resume────────┤
                      ▼                       ▼
                   STOPPED ◀──stop / retries exhausted
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from . import debug_log
from .config import Config, get_dictation_settings, get_matching_settings, get_session_settings
from .dictation import DictationDocument, DictationSegmentManager
from .engine import EngineFailure, EngineUnavailableError, PartialResult, RecognitionEngine
from .normalizer import collapse_whitespace
from .progress_matcher import RESYNC_WINDOW, MatchState, ProgressMatcher
from .scheduler import Scheduler, SingleShotTimer

logger = logging.getLogger(__name__)

NOT_AUTHORIZED_MESSAGE: str = "Speech recognition not authorized"
ENGINE_UNAVAILABLE_MESSAGE: str = "Speech recognizer not available"


class SessionState(Enum):
    """Lifecycle of the recognition session."""
    IDLE = "idle"
    LISTENING = "listening"
    RESTARTING = "restarting"
    STOPPED = "stopped"


class SessionMode(Enum):
    """Where recognized text goes."""
    TELEPROMPTER = "teleprompter"
    DICTATION = "dictation"


class ErrorKind(Enum):
    """Terminal failures surfaced through last_error."""
    RETRIES_EXHAUSTED = "retries_exhausted"
    NOT_AUTHORIZED = "not_authorized"
    ENGINE_UNAVAILABLE = "engine_unavailable"


@dataclass(frozen=True)
class SessionSnapshot:
    """Externally visible session state, sent to listeners after each change."""
    state: SessionState
    mode: SessionMode | None
    generation: int
    recognized_char_count: int
    is_listening: bool
    last_error: str | None
    error_kind: ErrorKind | None
    last_spoken_text: str
    is_finished: bool


def backoff_delay(retry_count: int, step: float = 0.5, cap: float = 1.5) -> float:
    """Delay before restart number `retry_count`."""
    return min(retry_count * step, cap)


class SessionController:
    """
    Drives the recognition engine and routes its results.

    In teleprompter mode results feed a ProgressMatcher; in dictation mode
    they feed a DictationSegmentManager. Committed progress survives engine
    restarts and resumes; only start() and jump_to() move it otherwise.
    """

    def __init__(
        self,
        engine: RecognitionEngine,
        scheduler: Scheduler,
        max_retries: int = 10,
        backoff_step: float = 0.5,
        backoff_cap: float = 1.5,
        jump_restart_delay: float = 0.1,
        resync_window: int = RESYNC_WINDOW
    ) -> None:
        self.engine = engine
        self.scheduler = scheduler
        self.backoff_step = backoff_step
        self.backoff_cap = backoff_cap
        self.jump_restart_delay = jump_restart_delay
        self.resync_window = resync_window

        self.state: SessionState = SessionState.IDLE
        self.mode: SessionMode | None = None
        self.match_state = MatchState(max_retries=max_retries)
        self.matcher: ProgressMatcher | None = None
        self.dictation: DictationSegmentManager | None = None

        self.generation: int = 0
        self._live_generation: int | None = None
        self.raw_transcript: str = ""
        self.last_spoken_text: str = ""
        self.last_error: str | None = None
        self.error_kind: ErrorKind | None = None
        self.is_finished: bool = False

        self._restart_timer = SingleShotTimer(scheduler, "restart")
        self._listeners: list[Callable[[SessionSnapshot], None]] = []

    @classmethod
    def from_config(
        cls,
        engine: RecognitionEngine,
        scheduler: Scheduler,
        config: Config
    ) -> 'SessionController':
        """Build a controller from the session and matching config sections."""
        session = get_session_settings(config)
        matching = get_matching_settings(config)
        return cls(
            engine,
            scheduler,
            max_retries=session.get("max_retries", 10),
            backoff_step=session.get("backoff_step", 0.5),
            backoff_cap=session.get("backoff_cap", 1.5),
            jump_restart_delay=session.get("jump_restart_delay", 0.1),
            resync_window=matching.get("resync_window", RESYNC_WINDOW)
        )

    def create_dictation_manager(
        self,
        config: Config,
        document: DictationDocument | None = None
    ) -> DictationSegmentManager:
        """Build a DictationSegmentManager sharing this controller's scheduler."""
        settings = get_dictation_settings(config)
        return DictationSegmentManager(
            document,
            scheduler=self.scheduler,
            highlight_clear_seconds=settings.get("highlight_clear_seconds", 1.0)
        )

    # Observers

    def add_listener(self, listener: Callable[[SessionSnapshot], None]) -> None:
        """Register a callback that receives a SessionSnapshot after each change."""
        self._listeners.append(listener)

    def snapshot(self) -> SessionSnapshot:
        """Current externally visible state."""
        return SessionSnapshot(
            state=self.state,
            mode=self.mode,
            generation=self.generation,
            recognized_char_count=self.recognized_char_count,
            is_listening=self.is_listening,
            last_error=self.last_error,
            error_kind=self.error_kind,
            last_spoken_text=self.last_spoken_text,
            is_finished=self.is_finished
        )

    def _notify(self) -> None:
        snap = self.snapshot()
        for listener in self._listeners:
            listener(snap)

    # Public state

    @property
    def is_listening(self) -> bool:
        """True while a session is live or about to be restarted."""
        return self.state in (SessionState.LISTENING, SessionState.RESTARTING)

    @property
    def recognized_char_count(self) -> int:
        """Committed read-up-to offset into the reference script."""
        return self.match_state.recognized_char_count

    @property
    def match_start_offset(self) -> int:
        """Anchor the current generation is scored from."""
        return self.match_state.match_start_offset

    @property
    def retry_count(self) -> int:
        """Consecutive engine failures since the last successful result."""
        return self.match_state.retry_count

    @property
    def max_retries(self) -> int:
        """Failures tolerated before the session stops."""
        return self.match_state.max_retries

    @property
    def reference_script(self) -> str:
        """The (whitespace-collapsed) script being read, or "" outside teleprompter mode."""
        return self.matcher.reference_script if self.matcher else ""

    @property
    def live_generation(self) -> int | None:
        """Generation currently accepting results, if any."""
        return self._live_generation

    # Commands

    def start(self, script: str) -> bool:
        """
        Start tracking a new script from its beginning.

        Returns:
            True if recognition started
        """
        text: str = collapse_whitespace(script)
        if not text:
            logger.warning("Ignoring start with an empty script")
            return False

        self._halt_engine()
        if self.dictation is not None:
            self.dictation.release()
            self.dictation = None

        self.mode = SessionMode.TELEPROMPTER
        self.match_state.reset(0)
        self.matcher = ProgressMatcher(text, self.match_state, self.resync_window)
        self._clear_session_info()
        debug_log.clear_logs()
        logger.info("Starting session: %d characters", len(text))

        if not self.engine.is_authorized():
            self._fail(ErrorKind.NOT_AUTHORIZED, NOT_AUTHORIZED_MESSAGE)
            return False
        return self._begin_generation("start")

    def start_dictation(self, manager: DictationSegmentManager) -> bool:
        """
        Start free dictation into `manager`'s document.

        Returns:
            True if recognition started
        """
        self._halt_engine()
        if self.dictation is not None and self.dictation is not manager:
            self.dictation.release()

        self.mode = SessionMode.DICTATION
        self.matcher = None
        self.dictation = manager
        manager.reset()
        self.match_state.reset(0)
        self._clear_session_info()
        debug_log.clear_logs()
        logger.info("Starting dictation at caret %d", manager.caret_position)

        if not self.engine.is_authorized():
            self._fail(ErrorKind.NOT_AUTHORIZED, NOT_AUTHORIZED_MESSAGE)
            return False
        return self._begin_generation("start")

    def stop(self) -> None:
        """Stop listening. Progress is kept. Safe to call repeatedly."""
        self._restart_timer.cancel()
        if self.dictation is not None:
            self.dictation.release()
        if not self.is_listening:
            return
        self._halt_engine()
        self.state = SessionState.STOPPED
        logger.info("Session stopped at offset %d", self.recognized_char_count)
        self._notify()

    def jump_to(self, offset: int) -> None:
        """
        Move the cursor to an arbitrary script offset (clamped).

        A live session is restarted so the next transcript is scored from the
        new position rather than from words spoken before the jump.
        """
        if self.matcher is None:
            logger.warning("jump_to(%d) ignored: no script loaded", offset)
            return

        offset = self.matcher.jump_to(offset)
        self.match_state.retry_count = 0
        self.is_finished = False
        logger.info("Jumped to offset %d", offset)

        if self.is_listening:
            self._halt_engine()
            self.state = SessionState.RESTARTING
            self._restart_timer.schedule(
                self.jump_restart_delay, lambda: self._on_restart_timer("jump"))
        self._notify()

    def resume(self) -> bool:
        """
        Restart listening from the last committed point.

        Used after an external pause such as a page switch; already-read text
        is never scored again.

        Returns:
            True if recognition started
        """
        if self.mode is None:
            logger.warning("resume() ignored: nothing has been started")
            return False

        if self.matcher is not None:
            self.matcher.reanchor()
        self.match_state.retry_count = 0
        self.is_finished = False
        self.last_error = None
        self.error_kind = None

        if not self.engine.is_authorized():
            self._fail(ErrorKind.NOT_AUTHORIZED, NOT_AUTHORIZED_MESSAGE)
            return False
        return self._begin_generation("resume")

    # Engine callbacks

    def on_partial_result(self, text: str, generation_id: int) -> None:
        """Handle a cumulative partial transcript from the engine."""
        if not self._accepts(generation_id, "partial"):
            return
        if not text.strip():
            return

        self.match_state.retry_count = 0
        self.raw_transcript = text
        self.last_spoken_text = text

        if self.matcher is not None:
            old_count: int = self.matcher.recognized_char_count
            if self.matcher.update(text):
                debug_log.log_progress(old_count, self.matcher.recognized_char_count, text)
                if self.matcher.is_complete and not self.is_finished:
                    self.is_finished = True
                    logger.info("Reached the end of the script")
        elif self.dictation is not None:
            self.dictation.on_transcript(text)

        self._notify()

    def on_session_error(self, generation_id: int, message: str | None = None) -> None:
        """Handle a failure of the engine session for `generation_id`."""
        if not self._accepts(generation_id, "error"):
            return

        self._halt_engine()
        if message:
            logger.warning("Recognition error (generation %d): %s", generation_id, message)

        if self.is_finished:
            # Nothing left to read; let the session end quietly
            self.state = SessionState.STOPPED
            self._notify()
            return

        self.match_state.retry_count += 1
        retries: int = self.match_state.retry_count
        if retries >= self.match_state.max_retries:
            self._fail(
                ErrorKind.RETRIES_EXHAUSTED,
                f"Speech recognition stopped after {retries} failed restarts"
            )
            return

        delay: float = backoff_delay(retries, self.backoff_step, self.backoff_cap)
        self.state = SessionState.RESTARTING
        debug_log.log_retry(retries, self.match_state.max_retries, delay)
        logger.info("Restarting recognition in %.2fs (attempt %d/%d)",
                    delay, retries, self.match_state.max_retries)
        self._restart_timer.schedule(delay, lambda: self._on_restart_timer("retry"))
        self._notify()

    def handle_event(self, event: PartialResult | EngineFailure) -> None:
        """Route a typed engine event to on_partial_result / on_session_error."""
        if isinstance(event, PartialResult):
            self.on_partial_result(event.text, event.generation_id)
        else:
            self.on_session_error(event.generation_id, event.message)

    def on_caret_moved(self, position: int) -> None:
        """Forward an editor caret notification to the dictation manager."""
        if self.dictation is not None:
            self.dictation.on_caret_moved(position)

    # Internals

    def _accepts(self, generation_id: int, kind: str) -> bool:
        if self.state is SessionState.LISTENING and generation_id == self._live_generation:
            return True
        debug_log.log_dropped(generation_id, self._live_generation, kind)
        logger.debug("Dropped %s for generation %d (live=%s, state=%s)",
                     kind, generation_id, self._live_generation, self.state.value)
        return False

    def _clear_session_info(self) -> None:
        self.raw_transcript = ""
        self.last_spoken_text = ""
        self.last_error = None
        self.error_kind = None
        self.is_finished = False

    def _halt_engine(self) -> None:
        """Cancel the engine session and stop accepting its results."""
        self._restart_timer.cancel()
        self._live_generation = None
        self.engine.cancel()

    def _on_restart_timer(self, reason: str) -> None:
        if self.state is not SessionState.RESTARTING:
            return
        self._begin_generation(reason)

    def _begin_generation(self, reason: str) -> bool:
        self._halt_engine()
        self.generation += 1
        generation_id: int = self.generation
        self.raw_transcript = ""

        try:
            self.engine.begin(generation_id)
        except EngineUnavailableError as e:
            self._fail(ErrorKind.ENGINE_UNAVAILABLE, str(e) or ENGINE_UNAVAILABLE_MESSAGE)
            return False

        self._live_generation = generation_id
        self.state = SessionState.LISTENING
        if self.dictation is not None:
            self.dictation.on_generation_started(generation_id)

        debug_log.log_generation(generation_id, reason, self.match_state.match_start_offset)
        logger.info("Generation %d started (%s) from offset %d",
                    generation_id, reason, self.match_state.match_start_offset)
        self._notify()
        return True

    def _fail(self, kind: ErrorKind, message: str) -> None:
        self._halt_engine()
        if self.dictation is not None:
            self.dictation.release()
        self.state = SessionState.STOPPED
        self.last_error = message
        self.error_kind = kind
        logger.warning("Session stopped: %s", message)
        self._notify()
