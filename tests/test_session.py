# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for SessionController: generations, restarts with backoff, jumps,
resume and terminal errors. Time is driven by a ManualScheduler.
"""

from typing import List

import pytest

from cuealign.config import DEFAULT_CONFIG, _deep_merge
from cuealign.dictation import DictationDocument
from cuealign.engine import EngineFailure, EngineUnavailableError, NullEngine, PartialResult
from cuealign.scheduler import ManualScheduler
from cuealign.session import (
    ENGINE_UNAVAILABLE_MESSAGE,
    NOT_AUTHORIZED_MESSAGE,
    ErrorKind,
    SessionController,
    SessionMode,
    SessionSnapshot,
    SessionState,
    backoff_delay,
)

SCRIPT: str = "Hello world this is a test"


class UnavailableEngine(NullEngine):
    """Engine whose recognizer can never be started."""

    def begin(self, generation_id: int) -> None:
        raise EngineUnavailableError()


@pytest.fixture
def engine() -> NullEngine:
    return NullEngine()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def controller(engine: NullEngine, scheduler: ManualScheduler) -> SessionController:
    return SessionController(engine, scheduler)


class TestStart:
    """Tests for starting a session."""

    def test_start_begins_first_generation(self, controller: SessionController,
                                           engine: NullEngine) -> None:
        assert controller.start(SCRIPT)
        assert controller.state is SessionState.LISTENING
        assert controller.is_listening
        assert controller.generation == 1
        assert controller.live_generation == 1
        assert engine.generations == [1]
        assert controller.mode is SessionMode.TELEPROMPTER

    def test_start_collapses_whitespace(self, controller: SessionController) -> None:
        controller.start("Hello\n\nworld  again")
        assert controller.reference_script == "Hello world again"

    def test_start_resets_progress(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.on_partial_result("hello world this", 1)
        assert controller.recognized_char_count == 17

        controller.start("Another script entirely")
        assert controller.recognized_char_count == 0
        assert controller.match_start_offset == 0
        assert controller.retry_count == 0
        assert controller.generation == 2

    def test_empty_script_ignored(self, controller: SessionController,
                                  engine: NullEngine) -> None:
        assert not controller.start("  \n ")
        assert controller.state is SessionState.IDLE
        assert engine.generations == []

    def test_not_authorized(self, scheduler: ManualScheduler) -> None:
        engine: NullEngine = NullEngine(authorized=False)
        controller: SessionController = SessionController(engine, scheduler)

        assert not controller.start(SCRIPT)
        assert controller.state is SessionState.STOPPED
        assert not controller.is_listening
        assert controller.last_error == NOT_AUTHORIZED_MESSAGE
        assert controller.error_kind is ErrorKind.NOT_AUTHORIZED
        assert engine.generations == []

    def test_engine_unavailable(self, scheduler: ManualScheduler) -> None:
        controller: SessionController = SessionController(UnavailableEngine(), scheduler)

        assert not controller.start(SCRIPT)
        assert controller.state is SessionState.STOPPED
        assert controller.last_error == ENGINE_UNAVAILABLE_MESSAGE
        assert controller.error_kind is ErrorKind.ENGINE_UNAVAILABLE
        assert controller.live_generation is None


class TestPartialResults:
    """Tests for routing partial results."""

    def test_partial_advances_progress(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.on_partial_result("hello world this", 1)
        assert controller.recognized_char_count == 17
        assert controller.last_spoken_text == "hello world this"

        controller.on_partial_result("hello world this is a test", 1)
        assert controller.recognized_char_count == len(SCRIPT)
        assert controller.is_finished

    def test_stale_generation_dropped(self, controller: SessionController,
                                      scheduler: ManualScheduler) -> None:
        """Results from a cancelled generation can never move the cursor."""
        controller.start(SCRIPT)
        controller.on_partial_result("hello world", 1)
        controller.on_session_error(1)
        scheduler.advance(0.5)
        assert controller.live_generation == 2

        before: int = controller.recognized_char_count
        controller.on_partial_result("hello world this is a test", 1)
        assert controller.recognized_char_count == before
        assert controller.last_spoken_text == "hello world"

    def test_results_while_restarting_dropped(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.on_session_error(1)
        assert controller.state is SessionState.RESTARTING

        controller.on_partial_result("hello world", 1)
        assert controller.recognized_char_count == 0

    def test_unknown_generation_dropped(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.on_partial_result("hello world", 7)
        assert controller.recognized_char_count == 0

    def test_blank_partial_ignored(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.on_session_error(1)
        controller.scheduler.advance(0.5)  # type: ignore[attr-defined]
        assert controller.retry_count == 1

        controller.on_partial_result("   ", 2)
        assert controller.retry_count == 1

    def test_success_resets_retry_count(self, controller: SessionController,
                                        scheduler: ManualScheduler) -> None:
        controller.start(SCRIPT)
        controller.on_session_error(1)
        scheduler.advance(0.5)
        controller.on_session_error(2)
        scheduler.advance(1.0)
        assert controller.retry_count == 2

        controller.on_partial_result("hello", 3)
        assert controller.retry_count == 0


class TestRestart:
    """Tests for restarting after engine errors."""

    def test_backoff_schedule(self) -> None:
        assert [backoff_delay(n) for n in range(1, 6)] == [0.5, 1.0, 1.5, 1.5, 1.5]

    def test_restart_waits_for_backoff(self, controller: SessionController,
                                       scheduler: ManualScheduler) -> None:
        controller.start(SCRIPT)

        controller.on_session_error(1, "no speech detected")
        assert controller.state is SessionState.RESTARTING
        assert controller.is_listening
        assert controller.retry_count == 1

        scheduler.advance(0.25)
        assert controller.state is SessionState.RESTARTING
        scheduler.advance(0.25)
        assert controller.state is SessionState.LISTENING
        assert controller.generation == 2

    def test_consecutive_failures_back_off_further(self, controller: SessionController,
                                                   scheduler: ManualScheduler) -> None:
        controller.start(SCRIPT)
        delays: List[float] = []
        for _ in range(4):
            controller.on_session_error(controller.generation)
            start: float = scheduler.now
            while controller.state is SessionState.RESTARTING:
                scheduler.advance(0.25)
            delays.append(scheduler.now - start)

        assert delays == [0.5, 1.0, 1.5, 1.5]

    def test_restart_preserves_progress(self, controller: SessionController,
                                        scheduler: ManualScheduler) -> None:
        controller.start(SCRIPT)
        controller.on_partial_result("hello world this", 1)

        controller.on_session_error(1)
        scheduler.advance(0.5)
        assert controller.recognized_char_count == 17
        assert controller.match_start_offset == 0

        # The new generation's transcript starts from scratch
        controller.on_partial_result("hello world this is", 2)
        assert controller.recognized_char_count == 20

    def test_retries_exhausted(self, controller: SessionController,
                               scheduler: ManualScheduler) -> None:
        """Ten failures in a row without a result stop the session."""
        controller.start(SCRIPT)
        controller.on_partial_result("hello world this", 1)

        for _ in range(9):
            controller.on_session_error(controller.generation)
            assert controller.state is SessionState.RESTARTING
            scheduler.advance(2.0)
            assert controller.state is SessionState.LISTENING

        controller.on_session_error(controller.generation)
        assert controller.state is SessionState.STOPPED
        assert not controller.is_listening
        assert controller.error_kind is ErrorKind.RETRIES_EXHAUSTED
        assert controller.last_error is not None
        assert controller.recognized_char_count == 17
        assert scheduler.pending_count == 0

    def test_error_after_finishing_stops_quietly(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.on_partial_result("hello world this is a test", 1)

        controller.on_session_error(1)
        assert controller.state is SessionState.STOPPED
        assert controller.last_error is None

    def test_stale_error_ignored(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.on_session_error(42)
        assert controller.state is SessionState.LISTENING
        assert controller.retry_count == 0

    def test_max_retries_from_config(self, engine: NullEngine,
                                     scheduler: ManualScheduler) -> None:
        config = _deep_merge(DEFAULT_CONFIG, {"session": {"max_retries": 2}})
        controller: SessionController = SessionController.from_config(engine, scheduler, config)
        controller.start(SCRIPT)

        controller.on_session_error(1)
        scheduler.advance(0.5)
        controller.on_session_error(2)
        assert controller.state is SessionState.STOPPED


class TestStop:
    """Tests for stop()."""

    def test_stop_keeps_progress(self, controller: SessionController,
                                 engine: NullEngine) -> None:
        controller.start(SCRIPT)
        controller.on_partial_result("hello world", 1)
        controller.stop()

        assert controller.state is SessionState.STOPPED
        assert not controller.is_listening
        assert controller.live_generation is None
        assert controller.recognized_char_count == 12
        assert engine.cancel_count >= 1

    def test_stop_is_idempotent(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.stop()
        controller.stop()
        assert controller.state is SessionState.STOPPED

    def test_stop_before_start_is_noop(self, controller: SessionController) -> None:
        controller.stop()
        assert controller.state is SessionState.IDLE

    def test_stop_cancels_pending_restart(self, controller: SessionController,
                                          scheduler: ManualScheduler) -> None:
        controller.start(SCRIPT)
        controller.on_session_error(1)
        controller.stop()

        scheduler.advance(5.0)
        assert controller.state is SessionState.STOPPED
        assert controller.generation == 1


class TestJump:
    """Tests for jump_to()."""

    def test_jump_restarts_live_session(self, controller: SessionController,
                                        scheduler: ManualScheduler) -> None:
        controller.start(SCRIPT)
        controller.on_partial_result("hello world", 1)

        controller.jump_to(12)
        assert controller.recognized_char_count == 12
        assert controller.match_start_offset == 12
        assert controller.state is SessionState.RESTARTING

        # Words spoken before the jump must not count
        controller.on_partial_result("hello world this is a test", 1)
        assert controller.recognized_char_count == 12

        scheduler.advance(0.1)
        assert controller.state is SessionState.LISTENING
        assert controller.generation == 2

        controller.on_partial_result("this is", 2)
        assert controller.recognized_char_count == 20

    def test_jump_is_clamped(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.jump_to(500)
        assert controller.recognized_char_count == len(SCRIPT)
        controller.jump_to(-3)
        assert controller.recognized_char_count == 0

    def test_jump_resets_retries(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.on_session_error(1)
        controller.jump_to(6)
        assert controller.retry_count == 0

    def test_jump_while_stopped_does_not_restart(self, controller: SessionController,
                                                 scheduler: ManualScheduler) -> None:
        controller.start(SCRIPT)
        controller.stop()
        controller.jump_to(6)

        scheduler.advance(1.0)
        assert controller.state is SessionState.STOPPED
        assert controller.recognized_char_count == 6
        assert controller.generation == 1

    def test_jump_without_script_ignored(self, controller: SessionController) -> None:
        controller.jump_to(5)
        assert controller.recognized_char_count == 0


class TestResume:
    """Tests for resume()."""

    def test_resume_reanchors(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.on_partial_result("hello world this", 1)
        controller.stop()

        assert controller.resume()
        assert controller.state is SessionState.LISTENING
        assert controller.generation == 2
        assert controller.match_start_offset == 17

        controller.on_partial_result("is a", 2)
        assert controller.recognized_char_count == 22

    def test_resume_after_retries_exhausted(self, controller: SessionController,
                                            scheduler: ManualScheduler) -> None:
        controller.start(SCRIPT)
        for _ in range(10):
            controller.on_session_error(controller.generation)
            scheduler.advance(2.0)
        assert controller.state is SessionState.STOPPED

        assert controller.resume()
        assert controller.last_error is None
        assert controller.retry_count == 0

    def test_resume_before_start(self, controller: SessionController) -> None:
        assert not controller.resume()
        assert controller.state is SessionState.IDLE


class TestListeners:
    """Tests for snapshot listeners."""

    def test_snapshots_published(self, controller: SessionController,
                                 scheduler: ManualScheduler) -> None:
        snapshots: List[SessionSnapshot] = []
        controller.add_listener(snapshots.append)

        controller.start(SCRIPT)
        controller.on_partial_result("hello world", 1)
        controller.on_session_error(1)

        states: List[SessionState] = [s.state for s in snapshots]
        assert SessionState.LISTENING in states
        assert states[-1] is SessionState.RESTARTING
        assert snapshots[-1].recognized_char_count == 12
        assert snapshots[-1].is_listening

    def test_snapshot_matches_controller(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.on_partial_result("hello", 1)
        snapshot: SessionSnapshot = controller.snapshot()

        assert snapshot.generation == controller.generation
        assert snapshot.recognized_char_count == controller.recognized_char_count
        assert snapshot.last_spoken_text == "hello"
        assert snapshot.mode is SessionMode.TELEPROMPTER


class TestDictationSession:
    """Tests for dictation mode through the controller."""

    def test_restart_replaces_segment_in_place(self, controller: SessionController,
                                               scheduler: ManualScheduler) -> None:
        """A restart re-hearing the same words must not duplicate them."""
        document: DictationDocument = DictationDocument("Hi ")
        manager = controller.create_dictation_manager(DEFAULT_CONFIG, document)
        assert controller.start_dictation(manager)
        assert controller.mode is SessionMode.DICTATION

        controller.on_partial_result("there friend", 1)
        assert document.text == "Hi there friend"

        controller.on_session_error(1)
        scheduler.advance(0.5)
        controller.on_partial_result("there my friend", 2)

        assert document.text == "Hi there my friend"

    def test_stale_partial_does_not_touch_document(self, controller: SessionController,
                                                   scheduler: ManualScheduler) -> None:
        document: DictationDocument = DictationDocument()
        manager = controller.create_dictation_manager(DEFAULT_CONFIG, document)
        controller.start_dictation(manager)
        controller.on_partial_result("one two", 1)
        controller.on_session_error(1)
        scheduler.advance(0.5)

        controller.on_partial_result("one two three four", 1)
        assert document.text == "one two"

    def test_caret_notifications_forwarded(self, controller: SessionController) -> None:
        document: DictationDocument = DictationDocument()
        manager = controller.create_dictation_manager(DEFAULT_CONFIG, document)
        controller.start_dictation(manager)
        controller.on_partial_result("alpha beta", 1)

        controller.on_caret_moved(5)
        controller.on_partial_result("alpha beta gamma", 1)
        assert document.text == "alpha gamma beta"

    def test_start_teleprompter_leaves_dictation(self, controller: SessionController) -> None:
        manager = controller.create_dictation_manager(DEFAULT_CONFIG)
        controller.start_dictation(manager)
        controller.start(SCRIPT)
        assert controller.mode is SessionMode.TELEPROMPTER
        assert controller.dictation is None


class TestTypedEvents:
    """Tests for routing typed engine events."""

    def test_partial_result_event(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.handle_event(PartialResult("hello world", 1))
        assert controller.recognized_char_count == 12

    def test_engine_failure_event(self, controller: SessionController) -> None:
        controller.start(SCRIPT)
        controller.handle_event(EngineFailure(1, "audio interrupted"))
        assert controller.state is SessionState.RESTARTING
        assert controller.retry_count == 1

    def test_stale_event_dropped(self, controller: SessionController,
                                 scheduler: ManualScheduler) -> None:
        controller.start(SCRIPT)
        controller.handle_event(EngineFailure(1))
        scheduler.advance(0.5)
        controller.handle_event(PartialResult("hello world", 1))
        assert controller.recognized_char_count == 0
