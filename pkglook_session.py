#!/usr/bin/env python3
"""
pkglook_session.py — the in-memory session model and its pure operations.

Results are shown in reverse order: index 0 sits at the bottom, right
above the input line, and higher indices are drawn above it. Selection
and scroll offset are always updated together by the methods below.
"""

import time
import logging

from pkglook_core import _, ngettext, SearchResult
from pkglook_term import Key, Terminal, style

logger = logging.getLogger(__name__)

PAGE_SIZE = 10
DEBOUNCE_SECONDS = 0.4
DESC_MAX_LEN = 62
DESC_INDENT = " " * 9
SEPARATOR_WIDTH = 66

# Status categories, used for highlighting
STATUS_NEUTRAL = "neutral"
STATUS_PROGRESS = "progress"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


def prompt_text():
    return _("Start typing to search.")


def searching_text():
    return _("Searching...")


class SessionState:
    """Authoritative state of one interactive session."""

    def __init__(self, page_size=PAGE_SIZE, now=0.0):
        self.page_size = page_size
        self.query = ""
        self.results = []
        self.selected_index = 0
        self.scroll_offset = 0
        self.status_text = prompt_text()
        self.status_kind = STATUS_NEUTRAL
        self.needs_search = False
        self.last_edit_time = now
        self.quit = False

    def set_status(self, text, kind=STATUS_NEUTRAL):
        self.status_text = text
        self.status_kind = kind

    @property
    def selected(self):
        if not self.results:
            return None
        return self.results[self.selected_index]

    @property
    def max_scroll(self):
        return max(0, len(self.results) - self.page_size)

    def visible_indices(self):
        """Indices on screen, top row first (highest index first)."""
        count = max(0, min(self.page_size, len(self.results) - self.scroll_offset))
        return list(range(self.scroll_offset + count - 1, self.scroll_offset - 1, -1))

    # --- results ---
    def set_results(self, packages):
        self.results = list(packages)
        self.selected_index = 0
        self.scroll_offset = 0

    def clear_results(self):
        self.set_results([])

    # --- selection/scroll transitions ---
    def move_up(self):
        """Select the entry drawn above the current one (next higher index)."""
        if self.selected_index < len(self.results) - 1:
            self.selected_index += 1
            if self.selected_index >= self.scroll_offset + self.page_size:
                self.scroll_offset = self.selected_index - self.page_size + 1

    def move_down(self):
        if self.selected_index > 0:
            self.selected_index -= 1
            if self.selected_index < self.scroll_offset:
                self.scroll_offset = self.selected_index

    def page_up(self):
        count = len(self.results)
        if count == 0:
            return
        self.selected_index = min(count - 1, self.selected_index + self.page_size)
        self.scroll_offset = min(self.max_scroll, self.scroll_offset + self.page_size)

    def page_down(self):
        self.selected_index = max(0, self.selected_index - self.page_size)
        self.scroll_offset = max(0, self.scroll_offset - self.page_size)

    def jump_top(self):
        """Home: the visually topmost result, i.e. the last index."""
        if self.results:
            self.selected_index = len(self.results) - 1
            self.scroll_offset = self.max_scroll

    def jump_bottom(self):
        """End: the visually bottommost result, index 0."""
        self.selected_index = 0
        self.scroll_offset = 0

    NAVIGATION = {
        Key.UP: "move_up",
        Key.DOWN: "move_down",
        Key.PAGE_UP: "page_up",
        Key.PAGE_DOWN: "page_down",
        Key.HOME: "jump_top",
        Key.END: "jump_bottom",
    }

    def navigate(self, key):
        """Apply a navigation key; returns False for keys that are not navigation."""
        method = self.NAVIGATION.get(key)
        if method is None:
            return False
        getattr(self, method)()
        return True

    # --- query editing ---
    def _mark_edited(self, now):
        self.needs_search = True
        self.last_edit_time = now

    def append_char(self, ch, now):
        if len(ch) != 1 or not (0x20 <= ord(ch) < 0x7F):
            return False
        self.query += ch
        self._mark_edited(now)
        return True

    def delete_char(self, now):
        if not self.query:
            return False
        self.query = self.query[:-1]
        self._mark_edited(now)
        return True

    def clear_query(self):
        """Escape: drop the query and the results at once, nothing left pending."""
        self.query = ""
        self.clear_results()
        self.needs_search = False
        self.set_status(prompt_text())

    # --- search completion ---
    def apply_search_result(self, result):
        """
        Store a provider result. An error result keeps the current list and
        selection and only shows the error text.
        """
        if result.has_error:
            self.set_status(result.error, STATUS_ERROR)
            return

        self.set_results(result.packages)
        count = len(self.results)
        if count == 0:
            self.set_status(_("No results found."), STATUS_ERROR)
        else:
            self.set_status(ngettext("Found {} result.", "Found {} results.", count).format(count),
                            STATUS_SUCCESS)


class DebounceScheduler:
    """Fires one search once the query has been quiet for `window` seconds."""

    def __init__(self, window=DEBOUNCE_SECONDS, clock=time.monotonic):
        self.window = window
        self.clock = clock

    def due(self, state, now=None):
        """
        Check the pending search on this tick. Returns True when the caller
        should search now (and clears the pending flag); otherwise shows the
        in-progress status while a search is pending.
        """
        if not state.needs_search:
            return False
        now = self.clock() if now is None else now
        if now - state.last_edit_time >= self.window:
            state.needs_search = False
            return True
        state.set_status(searching_text(), STATUS_PROGRESS)
        return False


def run_search(state, provider):
    """Search for the current query and store the outcome in `state`."""
    if not state.query:
        state.clear_results()
        state.set_status(prompt_text())
        return

    logger.debug("Searching %s for %r", provider.name, state.query)
    try:
        result = provider.search(state.query)
    except Exception:
        logger.exception("Provider %s failed searching for %r", provider.name, state.query)
        result = SearchResult.failure(_("Error executing the search command"))
    state.apply_search_result(result)
    logger.debug("Search for %r: %s", state.query, state.status_text)


def truncate(text, max_len):
    if len(text) <= max_len:
        return text
    if max_len <= 3:
        return text[:max_len]
    return text[:max_len - 3] + "..."


class FrameRenderer:
    """
    Builds one complete terminal frame from the session state. Pure: the
    same state and width always give the same text.
    """

    EOL = "\033[K\r\n"

    def __init__(self, provider, color=True, description_width=DESC_MAX_LEN):
        self.provider = provider
        self.color = color
        self.description_width = description_width

    def s(self, name):
        return style(name, self.color)

    def render(self, state, cols=80):
        reset = self.s("reset")
        out = [Terminal.CLEAR_HOME]

        for index in state.visible_indices():
            pkg = state.results[index]
            out.extend(self._entry_lines(pkg, index == state.selected_index, cols))

        out.append("{}[{}]{} ".format(self.s("provider"), self.provider.name, reset))
        out.append(self.s(state.status_kind) + state.status_text + reset + self.EOL)

        out.append(self.s("separator") + "─" * min(SEPARATOR_WIDTH, max(1, cols - 1)) + reset + self.EOL)

        out.append(_("Results: {}").format(len(state.results)))
        out.append("  |  " + _("↑↓: navigate") + "  |  " + _("Enter: install") + "  |  " + _("Ctrl+X: quit"))
        out.append(reset + self.EOL)

        out.append(self.s("prompt") + _("Search: ") + reset + state.query)
        return "".join(out)

    def _entry_lines(self, pkg, selected, cols):
        reset = self.s("reset")
        # Every inner reset also drops reverse video, so re-apply it.
        on = self.s("selected") if selected else ""

        line = [on]
        line.append(self.s(self.provider.source_color(pkg.source)) + "[" + pkg.source + "]" + reset + on)
        if pkg.installed:
            line.append(self.s("installed") + " *" + reset + on)
        else:
            line.append("  ")
        line.append(" " + self.s("name") + pkg.name + reset + on)
        line.append(" " + pkg.version)
        line.append(reset + self.EOL)

        width = min(self.description_width, max(4, cols - len(DESC_INDENT) - 1))
        desc = on + DESC_INDENT + truncate(pkg.description, width) + reset + self.EOL
        return ["".join(line), desc]
