# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Debug tool for replaying a transcript through the session controller.

This CLI tool takes a transcript file and a script file, feeds the
transcript to a SessionController as partial results on a virtual clock,
and writes detailed tracking information to help debug tracking issues.

Transcript format, one event per line:
- plain text: a cumulative partial result for the current generation
- "!error [message]": the engine session failed
- "!wait SECONDS": let virtual time pass (restart backoff, timers)
- "!jump OFFSET": the user jumped to a script offset
- "!resume" / "!stop": user commands
Blank lines and lines starting with "===" are ignored.

A partial or error that arrives while a restart is pending first lets the
restart happen, however long its backoff.
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from html.parser import HTMLParser
from pathlib import Path
from typing import Literal, TextIO

import markdown

from . import debug_log
from .config import DEFAULT_CONFIG, Config, load_config
from .engine import NullEngine
from .scheduler import ManualScheduler
from .session import SessionController, SessionState

logger = logging.getLogger(__name__)

EventType = Literal["advance", "no_change", "restart", "jump", "resume", "stopped", "dropped"]

MARKDOWN_SUFFIXES: frozenset[str] = frozenset([".md", ".markdown"])


@dataclass
class ReplayEvent:
    """A single event during transcript replay."""
    transcript_line: int
    text: str
    offset_before: int
    offset_after: int
    event_type: EventType
    generation: int


class _TextExtractor(HTMLParser):
    """Collects the text content of rendered Markdown."""

    def __init__(self) -> None:
        super().__init__()
        self.parts: list[str] = []

    def handle_data(self, data: str) -> None:
        self.parts.append(data)

    def get_text(self) -> str:
        return ' '.join(self.parts)


def render_script_text(script_text: str) -> str:
    """Render Markdown to the plain text a reader would see (and say)."""
    html: str = markdown.markdown(script_text, extensions=['nl2br', 'sane_lists'])
    extractor = _TextExtractor()
    extractor.feed(html)
    return extractor.get_text()


def load_transcript(path: Path) -> list[tuple[int, str]]:
    """Load transcript file, returning (line number, text) for each event line."""
    lines: list[tuple[int, str]] = []
    with open(path, encoding='utf-8') as f:
        for line_num, line in enumerate(f, start=1):
            stripped_line: str = line.strip()
            if stripped_line.startswith('===') or not stripped_line:
                continue
            lines.append((line_num, stripped_line))
    return lines


def load_script(path: Path) -> str:
    """Load script file content, rendering Markdown files to plain text."""
    with open(path, encoding='utf-8') as f:
        text: str = f.read()
    if path.suffix.lower() in MARKDOWN_SUFFIXES:
        return render_script_text(text)
    return text


def _expand_word_by_word(lines: list[tuple[int, str]]) -> list[tuple[int, str]]:
    """Turn each transcript line into growing partials, one word at a time."""
    expanded: list[tuple[int, str]] = []
    for line_num, text in lines:
        if text.startswith('!'):
            expanded.append((line_num, text))
            continue
        words: list[str] = text.split()
        for i in range(1, len(words) + 1):
            expanded.append((line_num, ' '.join(words[:i])))
    return expanded


def _finish_pending_restart(controller: SessionController, scheduler: ManualScheduler) -> None:
    """The engine has to be back before it can hear or fail again."""
    if controller.state is SessionState.RESTARTING:
        scheduler.run_all()


def replay_transcript(
    transcript_lines: list[tuple[int, str]],
    script_text: str,
    output: TextIO,
    verbose: bool = False,
    word_by_word: bool = False,
    config: Config | None = None
) -> list[ReplayEvent]:
    """Replay transcript events through a controller and log what happened.

    Args:
        transcript_lines: (line number, text) pairs from load_transcript
        script_text: The script content
        output: File handle to write log output
        verbose: If True, log every event. If False, only restarts/jumps/stops.
        word_by_word: Split each partial into growing one-word-at-a-time partials
        config: Optional configuration (defaults are used otherwise)

    Returns:
        List of all replay events
    """
    scheduler = ManualScheduler()
    engine = NullEngine()
    controller: SessionController = SessionController.from_config(
        engine, scheduler, config or DEFAULT_CONFIG)
    events: list[ReplayEvent] = []

    if word_by_word:
        transcript_lines = _expand_word_by_word(transcript_lines)

    controller.start(script_text)
    script: str = controller.reference_script

    output.write("=" * 80 + "\n")
    output.write("TRANSCRIPT REPLAY LOG" + (" (WORD-BY-WORD MODE)" if word_by_word else "") + "\n")
    output.write(f"Generated: {datetime.now().isoformat()}\n")
    output.write(f"Script characters: {len(script)}\n")
    output.write(f"Transcript events: {len(transcript_lines)}\n")
    output.write("=" * 80 + "\n\n")

    output.write("REPLAY LOG:\n")
    output.write("-" * 40 + "\n")

    for line_num, text in transcript_lines:
        before: int = controller.recognized_char_count
        event_type: EventType

        if text.startswith('!'):
            command, _, argument = text[1:].partition(' ')
            command = command.lower()
            if command == 'error':
                _finish_pending_restart(controller, scheduler)
                controller.on_session_error(controller.generation, argument or None)
                event_type = "stopped" if controller.state is SessionState.STOPPED else "restart"
            elif command == 'wait':
                scheduler.advance(float(argument or 0))
                continue
            elif command == 'jump':
                controller.jump_to(int(argument or 0))
                event_type = "jump"
            elif command == 'resume':
                controller.resume()
                event_type = "resume"
            elif command == 'stop':
                controller.stop()
                event_type = "stopped"
            else:
                output.write(f"  line {line_num}: unknown command '{text}'\n")
                continue
        else:
            _finish_pending_restart(controller, scheduler)
            generation_before: int | None = controller.live_generation
            controller.on_partial_result(text, controller.generation)
            after_partial: int = controller.recognized_char_count
            if generation_before is None:
                event_type = "dropped"
            elif after_partial > before:
                event_type = "advance"
            else:
                event_type = "no_change"

        after: int = controller.recognized_char_count
        event = ReplayEvent(
            transcript_line=line_num,
            text=text,
            offset_before=before,
            offset_after=after,
            event_type=event_type,
            generation=controller.generation
        )
        events.append(event)

        if event_type in ("restart", "jump", "resume", "stopped", "dropped") or verbose:
            upcoming: str = script[after:after + 30]
            output.write(
                f"  [{after:5d}] gen={event.generation:<3d} {event_type:9} "
                f"\"{text[-40:]}\" -> next: \"{upcoming}\"\n")

    output.write("\n" + "=" * 80 + "\n")
    output.write("SUMMARY:\n")
    output.write("-" * 40 + "\n")

    advances: list[ReplayEvent] = [e for e in events if e.event_type == "advance"]
    restarts: list[ReplayEvent] = [e for e in events if e.event_type == "restart"]

    output.write(f"Total events processed: {len(events)}\n")
    output.write(f"Final position: {controller.recognized_char_count} / {len(script)}\n")
    output.write(f"Advances: {len(advances)}\n")
    output.write(f"Restarts: {len(restarts)}\n")
    output.write(f"Generations: {controller.generation}\n")
    output.write(f"Final state: {controller.state.value}\n")
    if controller.last_error:
        output.write(f"Last error: {controller.last_error}\n")

    return events


def main() -> None:
    """CLI entry point for the replay tool."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S"
    )

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Debug script tracking by replaying a transcript through the session controller"
    )

    parser.add_argument(
        "transcript",
        type=Path,
        help="Path to transcript file"
    )

    parser.add_argument(
        "script",
        type=Path,
        help="Path to script file (.md files are rendered first)"
    )

    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output log file path (default: stdout)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log every event, not just restarts/jumps"
    )

    parser.add_argument(
        "-w", "--word-by-word",
        action="store_true",
        help="Feed each transcript line one word at a time"
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Config file (default: ./.cuealign.yaml)"
    )

    parser.add_argument(
        "--debug-log",
        action="store_true",
        help="Enable debug logging (written to the logs/ directory beside src/)"
    )

    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level (default: WARNING)"
    )

    args: argparse.Namespace = parser.parse_args()
    logging.getLogger("cuealign").setLevel(args.log_level)

    if not args.transcript.exists():
        print(
            f"Error: Transcript file not found: {args.transcript}", file=sys.stderr)
        sys.exit(1)

    if not args.script.exists():
        print(f"Error: Script file not found: {args.script}", file=sys.stderr)
        sys.exit(1)

    try:
        transcript_lines: list[tuple[int, str]] = load_transcript(args.transcript)
        script_text: str = load_script(args.script)
    except OSError as e:
        print(f"Error loading files: {e}", file=sys.stderr)
        sys.exit(1)

    if not transcript_lines:
        print("Error: No transcript lines found", file=sys.stderr)
        sys.exit(1)

    config: Config = load_config(args.config)
    if args.debug_log or config.get("debug_log"):
        debug_log.enable()
        print(f"Debug logging enabled (logs will be saved to {debug_log.LOG_DIR})")

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            replay_transcript(transcript_lines, script_text, f,
                              args.verbose, args.word_by_word, config)
        print(f"Replay log written to: {args.output}")
    else:
        replay_transcript(transcript_lines, script_text, sys.stdout,
                          args.verbose, args.word_by_word, config)


if __name__ == "__main__":
    main()
