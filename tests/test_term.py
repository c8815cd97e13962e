"""Key decoding, reads through a pipe, raw mode on a pty, styles."""

import io
import os
import pty
import signal
import termios

import pytest

from pkglook_term import (
    Key,
    KeyEvent,
    QUIT_KEYS,
    Terminal,
    color_enabled,
    decode_key,
    style,
)


def feed(data):
    """decode_key over a byte string; returns (event, unread bytes)."""
    rest = list(data[1:])

    def read_byte():
        return rest.pop(0) if rest else None

    return decode_key(data[0], read_byte), bytes(rest)


@pytest.fixture
def pipe_terminal():
    read_fd, write_fd = os.pipe()
    term = Terminal(input_fd=read_fd, output=io.StringIO(), read_timeout=0.01)
    yield term, write_fd
    os.close(read_fd)
    os.close(write_fd)


@pytest.mark.parametrize("data, key", [
    (b"\r", Key.ENTER),
    (b"\n", Key.ENTER),
    (b"\x7f", Key.BACKSPACE),
    (b"\x08", Key.BACKSPACE),
    (b"\x03", Key.CTRL_C),
    (b"\x11", Key.CTRL_Q),
    (b"\x18", Key.CTRL_X),
    (b"\x1b", Key.ESCAPE),
    (b"\x1b[A", Key.UP),
    (b"\x1b[B", Key.DOWN),
    (b"\x1b[C", Key.RIGHT),
    (b"\x1b[D", Key.LEFT),
    (b"\x1b[H", Key.HOME),
    (b"\x1b[F", Key.END),
    (b"\x1bOH", Key.HOME),
    (b"\x1bOF", Key.END),
    (b"\x1bOA", Key.UP),
    (b"\x1b[1~", Key.HOME),
    (b"\x1b[7~", Key.HOME),
    (b"\x1b[3~", Key.DELETE),
    (b"\x1b[4~", Key.END),
    (b"\x1b[8~", Key.END),
    (b"\x1b[5~", Key.PAGE_UP),
    (b"\x1b[6~", Key.PAGE_DOWN),
])
def test_decode_named_keys(data, key):
    event, rest = feed(data)
    assert event == KeyEvent(key)
    assert rest == b""


@pytest.mark.parametrize("data", [
    b"\x1b[",        # truncated
    b"\x1b[5",       # missing ~
    b"\x1b[Z",       # unknown final
    b"\x1b[2~",      # unknown code
    b"\x1bOQ",       # unknown SS3
    b"\x1bxy",       # not a sequence at all
])
def test_unknown_sequences_degrade_to_escape(data):
    event, _rest = feed(data)
    assert event == KeyEvent(Key.ESCAPE)


def test_modified_sequence_is_swallowed_entirely():
    event, rest = feed(b"\x1b[1;5Aq")
    assert event == KeyEvent(Key.ESCAPE)
    assert rest == b"q"


def test_printable_characters():
    for ch in "aZ0 ~/-":
        event, _rest = feed(ch.encode())
        assert event == KeyEvent(Key.CHAR, ch)


def test_unmapped_control_bytes_are_ignored():
    assert feed(b"\x01")[0] is None
    assert feed(b"\t")[0] is None
    assert feed(b"\xc3")[0] is None


def test_quit_keys():
    assert QUIT_KEYS == {Key.CTRL_C, Key.CTRL_Q, Key.CTRL_X}


def test_read_key_times_out_with_nothing_pending(pipe_terminal):
    term, _write_fd = pipe_terminal
    assert term.read_key() is None


def test_read_key_from_pipe(pipe_terminal):
    term, write_fd = pipe_terminal
    os.write(write_fd, b"v\x1b[A\x1b[6~\x7f\x1b")
    keys = [term.read_key() for _ in range(6)]
    assert keys == [
        KeyEvent(Key.CHAR, "v"),
        KeyEvent(Key.UP),
        KeyEvent(Key.PAGE_DOWN),
        KeyEvent(Key.BACKSPACE),
        KeyEvent(Key.ESCAPE),
        None,
    ]


def test_read_failure_counts_as_no_key():
    read_fd, write_fd = os.pipe()
    os.close(read_fd)
    os.close(write_fd)
    term = Terminal(input_fd=read_fd, output=io.StringIO(), read_timeout=0.01)
    assert term.read_key() is None


def test_leave_without_enter_is_harmless():
    out = io.StringIO()
    term = Terminal(input_fd=0, output=out)
    term.leave_interactive_mode()
    term.leave_interactive_mode()
    assert not term.interactive
    assert out.getvalue() == ""


def test_render_writes_whole_frame():
    out = io.StringIO()
    term = Terminal(input_fd=0, output=out)
    term.render("\033[H\033[Jhello")
    assert out.getvalue() == "\033[H\033[Jhello"


def test_dimensions_fall_back_without_a_tty(monkeypatch):
    monkeypatch.delenv("COLUMNS", raising=False)
    monkeypatch.delenv("LINES", raising=False)
    term = Terminal(input_fd=0, output=io.StringIO())
    rows, cols = term.query_dimensions()
    assert rows > 0 and cols > 0


def test_style_lookup():
    assert style("reset") == "\033[0m"
    assert style("success") == "\033[32m"
    assert style("error") == "\033[31m"
    assert style("progress") == "\033[33m"
    assert style("bright_blue") == "\033[94m"
    assert style("no-such-style") == ""


def test_style_without_colour_keeps_attributes():
    assert style("success", color=False) == ""
    assert style("cyan", color=False) == ""
    assert style("reverse", color=False) == "\033[7m"
    assert style("neutral", color=False) == "\033[2m"


class FakeTTY(io.StringIO):
    def isatty(self):
        return True


def test_color_modes():
    tty = FakeTTY()
    assert color_enabled("always", io.StringIO(), {}) is True
    assert color_enabled("never", tty, {}) is False
    assert color_enabled("auto", tty, {}) is True
    assert color_enabled("auto", tty, {"NO_COLOR": "1"}) is False
    assert color_enabled("auto", io.StringIO(), {}) is False


# --- raw mode on a real pseudo-terminal ---
@pytest.fixture
def pty_terminal():
    master, slave = pty.openpty()
    term = Terminal(input_fd=slave, output=io.StringIO(), read_timeout=0.05)
    original = termios.tcgetattr(slave)
    yield term, master, slave, original
    term.leave_interactive_mode()
    os.close(master)
    os.close(slave)


def raw_flags_cleared(fd):
    lflag = termios.tcgetattr(fd)[3]
    return not lflag & (termios.ICANON | termios.ECHO | termios.ISIG)


def test_interactive_mode_round_trip(pty_terminal):
    term, master, slave, original = pty_terminal
    with term:
        assert term.interactive
        assert raw_flags_cleared(slave)
        os.write(master, b"\x1b[5~")
        assert term.read_key() == KeyEvent(Key.PAGE_UP)
    assert not term.interactive
    assert termios.tcgetattr(slave) == original
    assert term.output.getvalue().endswith(Terminal.SHOW_CURSOR)


def test_exception_inside_session_restores_terminal(pty_terminal):
    term, _master, slave, original = pty_terminal
    with pytest.raises(RuntimeError):
        with term:
            assert raw_flags_cleared(slave)
            raise RuntimeError("crash")
    assert termios.tcgetattr(slave) == original


def test_termination_signal_restores_terminal(pty_terminal):
    term, _master, slave, original = pty_terminal
    before = signal.getsignal(signal.SIGTERM)
    term.enter_interactive_mode()
    assert signal.getsignal(signal.SIGTERM) == term._on_signal

    with pytest.raises(SystemExit) as exc:
        term._on_signal(signal.SIGTERM, None)

    assert exc.value.code == 128 + signal.SIGTERM
    assert termios.tcgetattr(slave) == original
    assert signal.getsignal(signal.SIGTERM) == before


def test_suspend_and_resume(pty_terminal):
    term, _master, slave, original = pty_terminal
    with term:
        term.suspend()
        assert termios.tcgetattr(slave) == original
        term.resume()
        assert raw_flags_cleared(slave)
    assert termios.tcgetattr(slave) == original
