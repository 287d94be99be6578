# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Multi-page scripts.

A script can be split into pages that are read one after another. Blank
pages are skipped, and pages that have been started are remembered as read.
"""

import logging

from .session import SessionController

logger = logging.getLogger(__name__)


class ScriptPages:
    """An ordered list of script pages with a current page."""

    def __init__(self, pages: list[str] | None = None) -> None:
        self.pages: list[str] = list(pages) if pages else [""]
        self.current_index: int = 0
        self.read_pages: set[int] = set()

    @staticmethod
    def _is_blank(text: str) -> bool:
        return not text.strip()

    @property
    def current_text(self) -> str:
        """Text of the current page, trimmed."""
        if self.current_index >= len(self.pages):
            return ""
        return self.pages[self.current_index].strip()

    @property
    def has_next_page(self) -> bool:
        """Whether any later page has something to read."""
        return any(not self._is_blank(p) for p in self.pages[self.current_index + 1:])

    @property
    def has_content(self) -> bool:
        """Whether any page has something to read."""
        return any(not self._is_blank(p) for p in self.pages)

    def add_page(self, text: str = "") -> int:
        """Append a page and make it current. Returns its index."""
        self.pages.append(text)
        self.current_index = len(self.pages) - 1
        return self.current_index

    def select(self, index: int) -> None:
        """Make `index` the current page (clamped)."""
        self.current_index = max(0, min(index, len(self.pages) - 1))

    def read_current(self) -> str | None:
        """Mark the current page read and return its text, or None if blank."""
        text: str = self.current_text
        if not text:
            return None
        self.read_pages.add(self.current_index)
        return text

    def advance_to_next_page(self) -> str | None:
        """
        Move to the next non-blank page.

        Returns:
            The new page's text, or None if there is no further page
        """
        next_index: int = self.current_index + 1
        while next_index < len(self.pages) and self._is_blank(self.pages[next_index]):
            next_index += 1
        if next_index >= len(self.pages):
            return None
        self.current_index = next_index
        logger.debug("Advanced to page %d", next_index)
        return self.read_current()

    def start_all_pages(self) -> str | None:
        """Forget read pages and begin again from the first page."""
        self.read_pages.clear()
        self.current_index = 0
        text: str | None = self.read_current()
        return text if text is not None else self.advance_to_next_page()


class PagedReader:
    """Runs a SessionController over a ScriptPages, one page per session."""

    def __init__(self, controller: SessionController, pages: ScriptPages) -> None:
        self.controller = controller
        self.pages = pages

    def start(self) -> bool:
        """Start reading from the first non-blank page."""
        text: str | None = self.pages.start_all_pages()
        if text is None:
            logger.warning("No page has any text to read")
            return False
        return self.controller.start(text)

    def next_page(self) -> bool:
        """Switch the session to the next non-blank page, if there is one."""
        text: str | None = self.pages.advance_to_next_page()
        if text is None:
            return False
        return self.controller.start(text)
