# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Approximate word equality tuned for speech recognition noise.

Short words are held to a tighter edit-distance budget than long ones: a
single substituted letter changes "cat" far more than it changes
"recognition".
"""

from rapidfuzz.distance import Levenshtein

# Minimum shared-prefix run, as a fraction of the shorter word
SHARED_PREFIX_RATIO: tuple[int, int] = (3, 5)


def shared_prefix_length(a: str, b: str) -> int:
    """Length of the common leading run of two strings."""
    count: int = 0
    for ca, cb in zip(a, b):
        if ca != cb:
            break
        count += 1
    return count


def max_edit_distance(a: str, b: str) -> int:
    """Edit distance allowed between two words, based on the shorter one."""
    shorter: int = min(len(a), len(b))
    if shorter <= 4:
        return 1
    if shorter <= 8:
        return 2
    return max(len(a), len(b)) // 3


def fuzzy_equal(a: str, b: str) -> bool:
    """
    Check whether two (already normalized) words should count as the same.

    Checks, first match wins:
    1. Exact equality.
    2. Either word empty: never equal.
    3. One word is a prefix of the other ("not" ~ "notch").
    4. One word contains the other.
    5. Shared leading run of at least 60% of the shorter word (min 2 chars).
    6. Bounded Levenshtein distance (see max_edit_distance).

    Every check is symmetric, so fuzzy_equal(a, b) == fuzzy_equal(b, a).
    """
    if a == b:
        return True
    if not a or not b:
        return False
    if a.startswith(b) or b.startswith(a):
        return True
    if a in b or b in a:
        return True

    shorter: int = min(len(a), len(b))
    num, den = SHARED_PREFIX_RATIO
    if shorter >= 2 and shared_prefix_length(a, b) >= max(2, shorter * num // den):
        return True

    limit: int = max_edit_distance(a, b)
    return Levenshtein.distance(a, b, score_cutoff=limit) <= limit
