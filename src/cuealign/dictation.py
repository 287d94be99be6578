# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Free dictation into an editable document.

Speech recognizers report a cumulative transcript that keeps being revised
while the speaker talks. Rather than appending each partial result, the
manager owns one live segment of the document and rewrites it in place on
every update. A segment is finalized (it simply becomes ordinary document
text) when the caret moves elsewhere or a new one is begun.

Within a recognition generation, text already committed by earlier segments
is skipped via the segment's skip offset, so moving the caret never
re-inserts what was already dictated. A new generation starts its transcript
from scratch, so the skip offset drops back to zero.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from . import debug_log
from .fuzzy import fuzzy_equal
from .normalizer import strip_to_alnum
from .scheduler import Scheduler, SingleShotTimer

logger = logging.getLogger(__name__)

SEPARATOR: str = " "

# Words that must line up before a restart may overwrite the live segment
REBIND_MIN_WORDS: int = 2
REBIND_WINDOW: int = 3


def _ordered_overlap(live_words: list[str], new_words: list[str]) -> int:
    """Count new words that fuzzily match live words in order, skipping at most REBIND_WINDOW."""
    matched: int = 0
    li: int = 0
    for word in new_words:
        if not word:
            continue
        for skip in range(min(REBIND_WINDOW + 1, len(live_words) - li)):
            if fuzzy_equal(live_words[li + skip], word):
                matched += 1
                li += skip + 1
                break
    return matched


@dataclass
class Segment:
    """The span of the document owned by the in-progress dictation burst."""
    start_offset: int
    length: int = 0
    needs_leading_separator: bool = False
    skip_offset: int = 0  # Raw transcript chars already committed this generation

    @property
    def end_offset(self) -> int:
        """Document offset just past the segment."""
        return self.start_offset + self.length


@dataclass(frozen=True)
class HighlightRange:
    """Newly dictated characters to emphasise."""
    start: int
    length: int


@dataclass(frozen=True)
class DocumentUpdate:
    """What the text editing collaborator should show."""
    text: str
    caret: int
    highlight: HighlightRange | None


class DictationDocument:
    """Plain text buffer with a caret. All offsets are clamped to the text."""

    def __init__(self, text: str = "", caret: int | None = None) -> None:
        self.text: str = text
        self.caret: int = len(text) if caret is None else self.clamp(caret)

    def __len__(self) -> int:
        return len(self.text)

    def clamp(self, offset: int) -> int:
        """Clamp an offset to [0, len(text)]."""
        return max(0, min(offset, len(self.text)))

    def set_caret(self, offset: int) -> int:
        """Move the caret (clamped). Returns the new position."""
        self.caret = self.clamp(offset)
        return self.caret

    def splice(self, start: int, length: int, replacement: str) -> tuple[int, int]:
        """
        Replace `length` characters at `start` with `replacement`.

        Returns:
            The (start, length) actually removed after clamping
        """
        start = self.clamp(start)
        length = max(0, min(length, len(self.text) - start))
        self.text = self.text[:start] + replacement + self.text[start + length:]
        return start, length


class DictationSegmentManager:
    """
    Splices partial transcripts into a document, one live segment at a time.

    Listeners receive a DocumentUpdate after every change to the text,
    caret or highlight.
    """

    def __init__(
        self,
        document: DictationDocument | None = None,
        scheduler: Scheduler | None = None,
        highlight_clear_seconds: float = 1.0
    ) -> None:
        self.document: DictationDocument = document if document is not None else DictationDocument()
        self.segment: Segment | None = None
        self.highlight_range: HighlightRange | None = None
        self.highlight_clear_seconds = highlight_clear_seconds

        self._consumed: int = 0  # Raw length placed in the document this generation
        self._rebind_pending: bool = False
        self._highlight_timer: SingleShotTimer | None = (
            SingleShotTimer(scheduler, "highlight-clear") if scheduler is not None else None
        )
        self._listeners: list[Callable[[DocumentUpdate], None]] = []

    def add_listener(self, listener: Callable[[DocumentUpdate], None]) -> None:
        """Register a callback for document updates."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        update = DocumentUpdate(
            text=self.document.text,
            caret=self.document.caret,
            highlight=self.highlight_range
        )
        for listener in self._listeners:
            listener(update)

    @property
    def caret_position(self) -> int:
        """Current caret offset in the document."""
        return self.document.caret

    def reset(self) -> None:
        """Forget the live segment and generation bookkeeping (new session)."""
        self.segment = None
        self._consumed = 0
        self._rebind_pending = False
        self.release()

    def release(self) -> None:
        """Cancel the pending highlight clear, dropping the highlight."""
        if self._highlight_timer is not None:
            self._highlight_timer.cancel()
        self.highlight_range = None

    def begin_new_segment(self, caret: int) -> Segment:
        """
        Finalize the live segment and open an empty one at `caret`.

        The separator flag is set when the caret directly follows a
        non-whitespace character, so dictated words don't run into it.
        """
        caret = self.document.clamp(caret)
        needs_separator: bool = caret > 0 and not self.document.text[caret - 1].isspace()
        self.segment = Segment(
            start_offset=caret,
            length=0,
            needs_leading_separator=needs_separator,
            skip_offset=self._consumed
        )
        self._rebind_pending = False
        debug_log.log_segment("begin", caret, 0, self._consumed)
        logger.debug("New segment at %d (separator=%s, skip=%d)",
                     caret, needs_separator, self._consumed)
        return self.segment

    def on_generation_started(self, generation_id: int) -> None:
        """
        A fresh recognition generation began; its transcript starts empty.

        A live segment with content is kept provisionally: if the new
        generation's text lines up with it (see _continues_live_segment),
        the recognizer is re-hearing the same utterance and the segment is
        replaced in place. Otherwise the first text begins a new segment at
        the caret.
        """
        self._consumed = 0
        if self.segment is not None and self.segment.length > 0:
            self.segment.skip_offset = 0
            self._rebind_pending = True
        elif self.segment is not None:
            self.begin_new_segment(self.document.caret)
        logger.debug("Dictation generation %d started (rebind pending=%s)",
                     generation_id, self._rebind_pending)

    def _live_text(self) -> str:
        assert self.segment is not None
        start: int = self.document.clamp(self.segment.start_offset)
        return self.document.text[start:start + self.segment.length]

    def _continues_live_segment(self, effective_text: str) -> bool:
        """
        Whether new-generation text re-recognizes the live segment's utterance.

        The first words must be identical, and when both sides have at least
        REBIND_MIN_WORDS words, that many of the new words must line up (in
        order, fuzzily) with the live segment's words.
        """
        live_words: list[str] = [strip_to_alnum(w.lower()) for w in self._live_text().split()]
        new_words: list[str] = [strip_to_alnum(w.lower()) for w in effective_text.split()]
        if not live_words or not new_words or not live_words[0]:
            return False
        if live_words[0] != new_words[0]:
            return False
        required: int = min(REBIND_MIN_WORDS, len(live_words), len(new_words))
        return _ordered_overlap(live_words, new_words) >= required

    def on_transcript(self, raw_transcript: str) -> bool:
        """
        Apply the cumulative transcript of the current generation.

        Returns:
            True if the document changed
        """
        if self.segment is None:
            self.begin_new_segment(self.document.caret)
        assert self.segment is not None

        effective: str = raw_transcript[self.segment.skip_offset:].lstrip()
        if not effective:
            return False

        if self._rebind_pending:
            self._rebind_pending = False
            if self._continues_live_segment(effective):
                debug_log.log_segment("rebind", self.segment.start_offset,
                                      self.segment.length, 0)
            else:
                self.begin_new_segment(self.document.caret)
                effective = raw_transcript[self.segment.skip_offset:].lstrip()
                if not effective:
                    return False

        previous_length: int = self.segment.length
        inserted: str = (SEPARATOR if self.segment.needs_leading_separator else "") + effective
        start, _removed = self.document.splice(
            self.segment.start_offset, self.segment.length, inserted)

        self.segment.start_offset = start
        self.segment.length = len(inserted)
        self.document.set_caret(self.segment.end_offset)
        self._consumed = len(raw_transcript)

        added: int = self.segment.length - previous_length
        self.highlight_range = (
            HighlightRange(start + previous_length, added) if added > 0 else None
        )
        if self._highlight_timer is not None:
            self._highlight_timer.schedule(self.highlight_clear_seconds, self.clear_highlight)

        debug_log.log_segment("replace", start, self.segment.length, self.segment.skip_offset)
        self._notify()
        return True

    def clear_highlight(self) -> None:
        """Drop the highlight (called by the highlight timer)."""
        if self.highlight_range is None:
            return
        self.highlight_range = None
        self._notify()

    def on_caret_moved(self, position: int) -> None:
        """
        The editor's caret moved.

        Anywhere other than the end of the live segment counts as a manual
        edit: the live segment is finalized and dictation continues at the
        new position.
        """
        position = self.document.set_caret(position)
        if self.segment is None or position == self.segment.end_offset:
            return
        self.begin_new_segment(position)

    def on_document_edited(self, text: str, caret: int) -> None:
        """The user typed into the document; adopt their text and caret."""
        self.document.text = text
        self.document.set_caret(caret)
        if self.segment is not None:
            self.begin_new_segment(self.document.caret)
