# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Debug logging for diagnosing tracking and dictation problems after the fact.

Creates two log files:
- session.log: generations, dropped stale results, committed progress, retries
- dictation.log: segment boundaries and in-place replacements

Logging is disabled by default. Call enable() to turn it on.
"""

from datetime import datetime
from pathlib import Path

# Log files location (in project root)
LOG_DIR: Path = Path(__file__).parent.parent.parent / "logs"
SESSION_LOG: Path = LOG_DIR / "session.log"
DICTATION_LOG: Path = LOG_DIR / "dictation.log"

# Global flag to control whether debug logging is enabled
_ENABLED: bool = False  # pylint: disable=invalid-name


def enable() -> None:
    """Enable debug logging."""
    global _ENABLED  # pylint: disable=global-statement
    _ENABLED = True


def disable() -> None:
    """Disable debug logging."""
    global _ENABLED  # pylint: disable=global-statement
    _ENABLED = False


def is_enabled() -> bool:
    """Check if debug logging is enabled."""
    return _ENABLED


def _ensure_log_dir() -> None:
    """Create log directory if it doesn't exist."""
    LOG_DIR.mkdir(exist_ok=True)


def _timestamp() -> str:
    """Get current timestamp."""
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


def _append(log_file: Path, line: str) -> None:
    _ensure_log_dir()
    with open(log_file, 'a', encoding='utf-8') as f:
        f.write(f"[{_timestamp()}] {line}\n")


def clear_logs() -> None:
    """Clear both log files for a fresh session."""
    if not _ENABLED:
        return
    _ensure_log_dir()
    log_file: Path
    for log_file in [SESSION_LOG, DICTATION_LOG]:
        with open(log_file, 'w', encoding='utf-8') as f:
            f.write(
                f"=== New session started at {datetime.now().isoformat()} ===\n\n")


def log_generation(generation_id: int, reason: str, anchor: int) -> None:
    """
    Log the start of a recognition generation.

    Args:
        generation_id: The new generation id
        reason: Why it started (start, retry, jump, resume)
        anchor: Script offset matching resumes from
    """
    if not _ENABLED:
        return
    _append(SESSION_LOG, f"GENERATION {generation_id:4d} ({reason}) anchor={anchor}")


def log_progress(old_count: int, new_count: int, transcript: str) -> None:
    """Log a committed progress change and the transcript that caused it."""
    if not _ENABLED:
        return
    _append(SESSION_LOG,
            f"progress {old_count} -> {new_count} transcript=\"{transcript[-60:]}\"")


def log_dropped(generation_id: int, current_generation: int | None, kind: str) -> None:
    """Log an engine event discarded because its generation is stale."""
    if not _ENABLED:
        return
    _append(SESSION_LOG,
            f"dropped {kind:15} gen={generation_id} current={current_generation}")


def log_retry(retry_count: int, max_retries: int, delay: float) -> None:
    """Log a scheduled restart after an engine failure."""
    if not _ENABLED:
        return
    _append(SESSION_LOG, f"retry {retry_count}/{max_retries} in {delay:.2f}s")


def log_segment(event: str, start_offset: int, length: int, skip_offset: int) -> None:
    """
    Log a dictation segment event.

    Args:
        event: Type of event (begin, replace, rebind)
        start_offset: Document offset of the segment
        length: Current segment length
        skip_offset: Raw transcript characters already committed
    """
    if not _ENABLED:
        return
    _append(DICTATION_LOG,
            f"{event:10} start={start_offset:5d} len={length:4d} skip={skip_offset}")
