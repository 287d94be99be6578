"""
Cuealign - Speech-to-script alignment for teleprompters and dictation.

Feeds cumulative partial transcripts from a speech recognition engine into
a forward-only progress matcher (teleprompter mode) or a segment manager
that writes into a text document (dictation mode), restarting the engine
with backoff when it fails.
"""

__version__ = "0.1.0"

from .dictation import DictationDocument, DictationSegmentManager
from .engine import NullEngine, RecognitionEngine
from .fuzzy import fuzzy_equal
from .normalizer import normalize
from .progress_matcher import ProgressMatcher
from .scheduler import AsyncioScheduler, ManualScheduler
from .session import SessionController, SessionState
from .threaded_session import ThreadedSession

__all__ = [
    "normalize",
    "fuzzy_equal",
    "ProgressMatcher",
    "DictationDocument",
    "DictationSegmentManager",
    "RecognitionEngine",
    "NullEngine",
    "AsyncioScheduler",
    "ManualScheduler",
    "SessionController",
    "SessionState",
    "ThreadedSession",
]
