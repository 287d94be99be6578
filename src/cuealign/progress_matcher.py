# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Progress matching module that works out how far through a script the
speaker has read.

Two independent scans run over the cumulative transcript of the current
recognition generation, starting from the anchor offset:

1. A character-level scan that walks script and transcript in lockstep and
   re-synchronizes over short insertions, omissions and substitutions.
2. A word-level scan that fuzzily matches whole words, skips filler or
   hallucinated words, credits words the recognizer missed, and credits
   annotations such as "[pause]" without any spoken counterpart.

The furthest of the two wins. The committed cursor only ever moves forward,
except when explicitly jumped.
"""

import logging
from dataclasses import dataclass

from .fuzzy import fuzzy_equal
from .normalizer import collapse_whitespace, is_annotation_token, normalize, strip_to_alnum

logger = logging.getLogger(__name__)

# How many characters/words either side may be skipped to re-synchronize
RESYNC_WINDOW: int = 3


@dataclass
class MatchState:
    """Committed progress through the reference script."""
    match_start_offset: int = 0  # Anchor the next match is scored from
    recognized_char_count: int = 0  # Externally visible read-up-to cursor
    retry_count: int = 0
    max_retries: int = 10

    def reset(self, offset: int = 0) -> None:
        """Anchor both offsets at `offset` and clear the retry counter."""
        self.match_start_offset = offset
        self.recognized_char_count = offset
        self.retry_count = 0


def _find_ahead(items: list[str], start: int, target: str, window: int) -> int | None:
    """Return how far past `start` the `target` appears, within `window` steps."""
    max_skip: int = min(window, len(items) - start - 1)
    for skip in range(1, max_skip + 1):
        if items[start + skip] == target:
            return skip
    return None


def char_level_advance(
    spoken: str,
    reference: str,
    anchor: int = 0,
    window: int = RESYNC_WINDOW
) -> int:
    """
    Character-level resynchronizing scan.

    Args:
        spoken: Cumulative raw transcript for the current generation
        reference: The full reference script
        anchor: Offset in the reference to start matching from
        window: Maximum characters skipped on either side to re-sync

    Returns:
        Last confirmed position, relative to the anchor
    """
    # Lowercased per character so positions line up with the reference
    src: list[str] = [c.lower() for c in reference[anchor:]]
    spk: list[str] = list(normalize(spoken))

    si: int = 0
    ri: int = 0
    last_good: int = 0

    while si < len(src) and ri < len(spk):
        sc: str = src[si]
        rc: str = spk[ri]

        if not sc.isalnum():
            si += 1
            continue
        if not rc.isalnum():
            ri += 1
            continue

        if sc == rc:
            si += 1
            ri += 1
            last_good = si
            continue

        # Recognizer inserted extra characters
        skip: int | None = _find_ahead(spk, ri, sc, window)
        if skip is not None:
            ri += skip
            continue

        # Recognizer dropped characters
        skip = _find_ahead(src, si, rc, window)
        if skip is not None:
            si += skip
            continue

        # Substitution
        si += 1
        ri += 1
        last_good = si

    return last_good


def _words_match(script_word: str, spoken_word: str) -> bool:
    return script_word == spoken_word or fuzzy_equal(script_word, spoken_word)


def word_level_advance(
    spoken: str,
    reference: str,
    anchor: int = 0,
    window: int = RESYNC_WINDOW
) -> int:
    """
    Word-level resynchronizing scan.

    Credits are counted in characters of the original reference tokens
    (punctuation included) plus one for the following space, except after
    the script's last token.

    Args:
        spoken: Cumulative raw transcript for the current generation
        reference: The full reference script (single-space separated)
        anchor: Offset in the reference to start matching from
        window: Maximum words skipped on either side to re-sync

    Returns:
        Number of reference characters credited, relative to the anchor
    """
    source_words: list[str] = [w for w in reference[anchor:].split(' ') if w]
    spoken_words: list[str] = spoken.lower().split()
    last: int = len(source_words) - 1

    def credit(index: int) -> int:
        return len(source_words[index]) + (1 if index < last else 0)

    si: int = 0
    ri: int = 0
    credited: int = 0

    while si < len(source_words) and ri < len(spoken_words):
        token: str = source_words[si]

        # Stage directions and symbols never need to be spoken
        if is_annotation_token(token):
            credited += credit(si)
            si += 1
            continue

        src_word: str = strip_to_alnum(token.lower())
        spk_word: str = strip_to_alnum(spoken_words[ri])

        if _words_match(src_word, spk_word):
            credited += credit(si)
            si += 1
            ri += 1
            continue

        # Skip hallucinated or filler words in the transcript
        spk_skip: int | None = None
        for skip in range(1, min(window, len(spoken_words) - ri - 1) + 1):
            if _words_match(src_word, strip_to_alnum(spoken_words[ri + skip])):
                spk_skip = skip
                break
        if spk_skip is not None:
            ri += spk_skip
            continue

        # Credit script words the recognizer missed
        src_skip: int | None = None
        for skip in range(1, min(window, len(source_words) - si - 1) + 1):
            if _words_match(strip_to_alnum(source_words[si + skip].lower()), spk_word):
                src_skip = skip
                break
        if src_skip is not None:
            credited += sum(len(source_words[si + s]) + 1 for s in range(src_skip))
            si += src_skip
            continue

        if not src_word:
            credited += credit(si)
            si += 1
            continue

        # Pure noise
        ri += 1

    while si < len(source_words) and is_annotation_token(source_words[si]):
        credited += credit(si)
        si += 1

    return credited


def combine_advances(char_advance: int, word_advance: int) -> int:
    """Pick the furthest advance of the two scans."""
    return max(char_advance, word_advance)


class ProgressMatcher:
    """
    Tracks committed progress through one reference script.

    The reference is whitespace-collapsed on construction, so all offsets
    refer to the collapsed text.
    """

    reference_script: str
    state: MatchState
    window: int

    def __init__(
        self,
        reference_script: str,
        state: MatchState | None = None,
        window: int = RESYNC_WINDOW
    ) -> None:
        self.reference_script = collapse_whitespace(reference_script)
        self.state = state if state is not None else MatchState()
        self.window = window
        self._normalized: str | None = None

    @property
    def normalized_script(self) -> str:
        """Lowercased, punctuation-free version of the reference."""
        if self._normalized is None:
            self._normalized = normalize(self.reference_script)
        return self._normalized

    @property
    def recognized_char_count(self) -> int:
        """Committed read-up-to offset."""
        return self.state.recognized_char_count

    @property
    def match_start_offset(self) -> int:
        """Anchor the next transcript is scored from."""
        return self.state.match_start_offset

    @property
    def is_complete(self) -> bool:
        """True once the whole script has been read."""
        return self.state.recognized_char_count >= len(self.reference_script)

    @property
    def remaining_text(self) -> str:
        """Script text not yet read."""
        return self.reference_script[self.state.recognized_char_count:]

    def clamp(self, offset: int) -> int:
        """Clamp an offset to [0, len(reference_script)]."""
        return max(0, min(offset, len(self.reference_script)))

    def compute_advance(self, raw_transcript: str) -> int:
        """Best advance from the anchor for a transcript (no state change)."""
        anchor: int = self.state.match_start_offset
        char_advance: int = char_level_advance(
            raw_transcript, self.reference_script, anchor, self.window)
        word_advance: int = word_level_advance(
            raw_transcript, self.reference_script, anchor, self.window)
        logger.debug("Advance candidates from %d: char=%d word=%d",
                     anchor, char_advance, word_advance)
        return combine_advances(char_advance, word_advance)

    def update(self, raw_transcript: str) -> bool:
        """
        Score a cumulative transcript and commit any forward progress.

        Args:
            raw_transcript: The whole transcript of the current generation

        Returns:
            True if the committed cursor moved forward
        """
        if not raw_transcript.strip():
            return False

        candidate: int = min(
            len(self.reference_script),
            self.state.match_start_offset + self.compute_advance(raw_transcript)
        )
        if candidate <= self.state.recognized_char_count:
            return False

        logger.debug("Committed progress %d -> %d",
                     self.state.recognized_char_count, candidate)
        self.state.recognized_char_count = candidate
        return True

    def jump_to(self, offset: int) -> int:
        """Move both anchor and cursor to `offset` (clamped). Returns the offset used."""
        offset = self.clamp(offset)
        self.state.match_start_offset = offset
        self.state.recognized_char_count = offset
        return offset

    def reanchor(self) -> None:
        """Score future transcripts from the committed cursor."""
        self.state.match_start_offset = self.state.recognized_char_count
