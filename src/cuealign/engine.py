# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Interface to the speech recognition collaborator.

The engine itself (audio capture, the recognizer API) lives outside this
package. The session controller only needs to authorize it, start one
recognition session per generation, and cancel it. The engine reports back
by calling the controller's on_partial_result / on_session_error with the
generation id it was started with.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


class EngineUnavailableError(Exception):
    """Raised by RecognitionEngine.begin when no recognizer can be started."""


@dataclass(frozen=True)
class PartialResult:
    """A cumulative partial transcript for one generation."""

    text: str
    generation_id: int

    def __repr__(self) -> str:
        return f"PartialResult(gen={self.generation_id}: '{self.text}')"


@dataclass(frozen=True)
class EngineFailure:
    """The recognition session for a generation failed."""

    generation_id: int
    message: str | None = None


class RecognitionEngine(ABC):
    """Base interface for speech recognition collaborators."""

    @abstractmethod
    def is_authorized(self) -> bool:
        """Whether the user has granted speech recognition / microphone access."""

    @abstractmethod
    def begin(self, generation_id: int) -> None:
        """
        Start a fresh recognition session.

        Every result and error from this session must carry `generation_id`.

        Raises:
            EngineUnavailableError: If the recognizer cannot be started
        """

    @abstractmethod
    def cancel(self) -> None:
        """Stop the current recognition session, if any. Must be idempotent."""


class NullEngine(RecognitionEngine):
    """
    Engine that records begin/cancel calls and produces nothing itself.

    Used when results are fed to the controller by other means, e.g. when
    replaying a saved transcript.
    """

    def __init__(self, authorized: bool = True) -> None:
        self.authorized = authorized
        self.generations: list[int] = []
        self.cancel_count: int = 0

    def is_authorized(self) -> bool:
        return self.authorized

    def begin(self, generation_id: int) -> None:
        self.generations.append(generation_id)

    def cancel(self) -> None:
        self.cancel_count += 1
