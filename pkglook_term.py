#!/usr/bin/env python3
"""
pkglook_term.py — raw terminal input/output for the pkglook session.

Raw mode toggling with guaranteed restoration, bounded-wait key reads with
escape-sequence decoding, whole-frame output and a style lookup table.
"""

import os
import sys
import atexit
import select
import shutil
import signal
import termios
import logging
import curses.ascii
from collections import namedtuple
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_ROWS = 24
DEFAULT_COLS = 80

READ_TIMEOUT = 0.1


# --- Styles ---
ESCAPES = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "reverse": "\033[7m",
    "black": "\033[30m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "magenta": "\033[35m",
    "cyan": "\033[36m",
    "white": "\033[37m",
    "bright_black": "\033[90m",
    "bright_red": "\033[91m",
    "bright_green": "\033[92m",
    "bright_yellow": "\033[93m",
    "bright_blue": "\033[94m",
    "bright_magenta": "\033[95m",
    "bright_cyan": "\033[96m",
    "bright_white": "\033[97m",
}

# Attributes survive with colour disabled so the selection stays visible.
ATTRIBUTES = frozenset(("reset", "bold", "dim", "reverse"))

SEMANTIC_STYLES = {
    "success": "green",
    "progress": "yellow",
    "error": "red",
    "neutral": "dim",
    "installed": "green",
    "provider": "dim",
    "separator": "dim",
    "selected": "reverse",
    "prompt": "bold",
    "name": "bold",
}


def style(name, color=True):
    """
    Escape sequence for a semantic style or colour name, or "" when the
    name is unknown or colour output is disabled.
    """
    name = SEMANTIC_STYLES.get(name, name)
    code = ESCAPES.get(name)
    if code is None:
        return ""
    if not color and name not in ATTRIBUTES:
        return ""
    return code


def color_enabled(mode="auto", stream=None, environ=None):
    """Resolve the 'color' setting (auto/always/never) for an output stream."""
    environ = os.environ if environ is None else environ
    if mode == "never":
        return False
    if mode == "always":
        return True
    if "NO_COLOR" in environ:
        return False
    stream = sys.stdout if stream is None else stream
    try:
        return stream.isatty()
    except (AttributeError, ValueError):
        return False


# --- Keys ---
class Key(Enum):
    CHAR = "char"
    ENTER = "enter"
    ESCAPE = "escape"
    BACKSPACE = "backspace"
    CTRL_C = "ctrl-c"
    CTRL_Q = "ctrl-q"
    CTRL_X = "ctrl-x"
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    HOME = "home"
    END = "end"
    PAGE_UP = "page-up"
    PAGE_DOWN = "page-down"
    DELETE = "delete"


QUIT_KEYS = frozenset((Key.CTRL_C, Key.CTRL_Q, Key.CTRL_X))

KeyEvent = namedtuple("KeyEvent", ["key", "char"], defaults=[""])

CONTROL_KEYS = {
    curses.ascii.CR: Key.ENTER,
    curses.ascii.NL: Key.ENTER,
    curses.ascii.ESC: Key.ESCAPE,
    curses.ascii.DEL: Key.BACKSPACE,
    curses.ascii.BS: Key.BACKSPACE,
    ord(curses.ascii.ctrl('c')): Key.CTRL_C,
    ord(curses.ascii.ctrl('q')): Key.CTRL_Q,
    ord(curses.ascii.ctrl('x')): Key.CTRL_X,
}

# ESC [ <final> and ESC O <final>
CURSOR_FINALS = {
    "A": Key.UP,
    "B": Key.DOWN,
    "C": Key.RIGHT,
    "D": Key.LEFT,
    "H": Key.HOME,
    "F": Key.END,
}

# ESC [ <digit> ~
TILDE_CODES = {
    "1": Key.HOME,
    "3": Key.DELETE,
    "4": Key.END,
    "5": Key.PAGE_UP,
    "6": Key.PAGE_DOWN,
    "7": Key.HOME,
    "8": Key.END,
}

# Upper bound on bytes consumed while skipping an unknown CSI sequence.
MAX_SEQUENCE_LEN = 16


def decode_key(byte, read_byte):
    """
    Turn one input byte (plus any follow-on bytes) into a KeyEvent.

    :param byte: the first byte read, as an int
    :param read_byte: callable returning the next byte as an int, or None
                      if nothing arrived within the bounded wait
    :return: KeyEvent, or None for bytes with no meaning to the session
    """
    if byte == curses.ascii.ESC:
        return _decode_escape(read_byte)
    if byte in CONTROL_KEYS:
        return KeyEvent(CONTROL_KEYS[byte])
    if curses.ascii.isprint(byte):
        return KeyEvent(Key.CHAR, chr(byte))
    return None


def _decode_escape(read_byte):
    escape = KeyEvent(Key.ESCAPE)

    first = read_byte()
    if first is None:
        return escape
    second = read_byte()
    if second is None:
        return escape
    first, second = chr(first), chr(second)

    if first == "[":
        if second.isdigit():
            third = read_byte()
            if third is None:
                return escape
            if chr(third) == "~" and second in TILDE_CODES:
                return KeyEvent(TILDE_CODES[second])
            _skip_csi(third, read_byte)
            return escape
        if second in CURSOR_FINALS:
            return KeyEvent(CURSOR_FINALS[second])
        return escape

    if first == "O" and second in CURSOR_FINALS:
        return KeyEvent(CURSOR_FINALS[second])
    return escape


def _skip_csi(byte, read_byte):
    """Consume the rest of a CSI sequence (up to its final byte) so none of it reaches the query."""
    count = 0
    while byte is not None and count < MAX_SEQUENCE_LEN:
        if 0x40 <= byte <= 0x7E:
            return
        byte = read_byte()
        count += 1


# --- Terminal ---
class Terminal:
    """
    Owns the controlling terminal for the session.

    enter_interactive_mode()/leave_interactive_mode() are idempotent; the
    saved termios settings are restored on leave, at interpreter exit and
    on SIGTERM/SIGHUP.
    """

    CLEAR_HOME = "\033[H\033[J"
    CLEAR_SCREEN = "\033[2J\033[H"
    HIDE_CURSOR = "\033[?25l"
    SHOW_CURSOR = "\033[?25h"

    RESTORE_SIGNALS = (signal.SIGTERM, signal.SIGHUP)

    def __init__(self, input_fd=None, output=None, read_timeout=READ_TIMEOUT):
        self.input_fd = sys.stdin.fileno() if input_fd is None else input_fd
        self.output = sys.stdout if output is None else output
        self.read_timeout = read_timeout
        self._saved_attrs = None
        self._saved_handlers = {}
        self._atexit_registered = False

    @property
    def interactive(self):
        return self._saved_attrs is not None

    # --- mode switching ---
    def enter_interactive_mode(self):
        if self.interactive:
            return
        attrs = termios.tcgetattr(self.input_fd)
        raw = list(attrs)
        raw[6] = list(attrs[6])

        # iflag: no break, no CR to NL, no parity check, no strip, no flow control
        raw[0] &= ~(termios.BRKINT | termios.ICRNL | termios.INPCK | termios.ISTRIP | termios.IXON)
        # oflag: no post processing
        raw[1] &= ~termios.OPOST
        # cflag: 8 bit chars
        raw[2] |= termios.CS8
        # lflag: no echo, no canonical mode, no extended functions, no signal keys
        raw[3] &= ~(termios.ECHO | termios.ICANON | termios.IEXTEN | termios.ISIG)
        # reads return after at most 100ms
        raw[6][termios.VMIN] = 0
        raw[6][termios.VTIME] = 1

        termios.tcsetattr(self.input_fd, termios.TCSAFLUSH, raw)
        self._saved_attrs = attrs
        self._install_handlers()
        self.write(self.HIDE_CURSOR)
        self.flush()
        logger.debug("Entered interactive mode")

    def leave_interactive_mode(self):
        if not self.interactive:
            return
        attrs = self._saved_attrs
        self._saved_attrs = None
        try:
            self.write(style("reset") + self.SHOW_CURSOR)
            self.flush()
        except (OSError, ValueError):
            pass
        try:
            termios.tcsetattr(self.input_fd, termios.TCSAFLUSH, attrs)
        except termios.error as e:
            logger.error("Could not restore terminal settings: %s", e)
        self._restore_handlers()
        logger.debug("Left interactive mode")

    def __enter__(self):
        self.enter_interactive_mode()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.leave_interactive_mode()
        return False

    def _install_handlers(self):
        if not self._atexit_registered:
            atexit.register(self.leave_interactive_mode)
            self._atexit_registered = True
        for signum in self.RESTORE_SIGNALS:
            try:
                self._saved_handlers[signum] = signal.signal(signum, self._on_signal)
            except ValueError:
                # Not the main thread: rely on atexit and the context manager.
                pass

    def _restore_handlers(self):
        for signum, handler in self._saved_handlers.items():
            try:
                signal.signal(signum, handler)
            except ValueError:
                pass
        self._saved_handlers = {}

    def _on_signal(self, signum, frame):
        logger.info("Received signal %s, restoring terminal", signum)
        self.leave_interactive_mode()
        sys.exit(128 + signum)

    def suspend(self):
        """Hand the terminal back in its original state, on a clean screen."""
        self.leave_interactive_mode()
        self.write(self.CLEAR_SCREEN)
        self.flush()

    def resume(self):
        self.enter_interactive_mode()
        self.write(self.CLEAR_SCREEN)
        self.flush()

    # --- input ---
    def _read_byte(self, timeout):
        try:
            ready = select.select([self.input_fd], [], [], timeout)[0]
            if not ready:
                return None
            data = os.read(self.input_fd, 1)
        except (OSError, ValueError) as e:
            logger.debug("Key read failed: %s", e)
            return None
        if not data:
            return None
        return data[0]

    def read_key(self, timeout=None):
        """
        Wait up to `timeout` seconds (default: read_timeout) for a key.

        :return: KeyEvent, or None if no key arrived
        """
        timeout = self.read_timeout if timeout is None else timeout
        byte = self._read_byte(timeout)
        if byte is None:
            return None
        return decode_key(byte, lambda: self._read_byte(self.read_timeout))

    def wait_for_keypress(self):
        """Block until a key (in cooked mode: a line) arrives."""
        return self._read_byte(None)

    # --- output ---
    def write(self, text):
        self.output.write(text)

    def flush(self):
        self.output.flush()

    def render(self, frame):
        self.write(frame)
        self.flush()

    def clear_screen(self):
        self.write(self.CLEAR_SCREEN)

    def query_dimensions(self):
        """Return (rows, cols); falls back to 24x80."""
        try:
            size = os.get_terminal_size(self.output.fileno())
            cols, rows = size.columns, size.lines
        except (AttributeError, OSError, ValueError):
            cols, rows = shutil.get_terminal_size((DEFAULT_COLS, DEFAULT_ROWS))
        if rows <= 0 or cols <= 0:
            return DEFAULT_ROWS, DEFAULT_COLS
        return rows, cols
