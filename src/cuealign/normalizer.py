# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Text normalization for comparing spoken transcripts against script text.

Also classifies "annotation" tokens: stage directions such as "[pause]" and
tokens with no letters or digits at all (emoji, dashes, stray punctuation).
These never need to be spoken for the reader to move past them.
"""


def _is_alnum(char: str) -> bool:
    """Letters and digits in any script."""
    return char.isalnum()


def normalize(text: str) -> str:
    """Lowercase text and drop everything except letters, digits and whitespace."""
    return ''.join(c for c in text.lower() if c.isalnum() or c.isspace())


def strip_to_alnum(token: str) -> str:
    """Remove every non-alphanumeric character from a token (case is kept)."""
    return ''.join(c for c in token if _is_alnum(c))


def is_annotation_token(token: str) -> bool:
    """
    Check whether a script token is an annotation rather than spoken text.

    A token is an annotation if it is wrapped in square brackets, or if
    nothing is left of it once punctuation and symbols are stripped.
    """
    if token.startswith('[') and token.endswith(']'):
        return True
    return not strip_to_alnum(token)


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace (including newlines) to single spaces."""
    return ' '.join(text.split())
