"""
Terminal session for the dashboard.

RichTerminal owns two pieces of terminal state and restores both on close():
- cbreak mode on stdin (single keystrokes without Enter, Ctrl-C still works)
- a Rich Live display on the alternate screen

close() is idempotent: the renderer may reach it from several exit paths
but the terminal is restored exactly once.
"""

from __future__ import annotations

import logging
import os
import select
import sys
from typing import Any, Protocol

from rich.console import Console, RenderableType
from rich.live import Live
from rich.text import Text

try:  # not available on Windows
    import termios
    import tty
except ImportError:
    termios = None  # type: ignore[assignment]
    tty = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class TerminalError(RuntimeError):
    """Terminal setup, I/O or teardown failed."""


class TerminalSession(Protocol):
    """What the renderer needs from a terminal."""

    def open(self) -> None: ...

    def poll_key(self, timeout: float) -> str | None: ...

    def draw(self, renderable: RenderableType) -> None: ...

    def size(self) -> tuple[int, int]: ...

    def close(self) -> None: ...


class RichTerminal:
    """
    Full-screen terminal using Rich Live (screen=True) for output and
    select() on stdin for key polling.

    If stdin is not a TTY, key polling just waits out the timeout.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console if console is not None else Console()
        self._live: Live | None = None
        self._fd: int | None = None
        self._old_settings: Any = None
        self._opened = False
        self._closed = False
        self.close_calls: int = 0

    def open(self) -> None:
        if self._opened:
            return
        self._opened = True
        try:
            if termios is not None and sys.stdin.isatty():
                self._fd = sys.stdin.fileno()
                self._old_settings = termios.tcgetattr(self._fd)
                tty.setcbreak(self._fd)

            self._live = Live(
                Text("Starting...", style="dim"),
                console=self.console,
                screen=True,
                auto_refresh=False,
                redirect_stdout=False,
                redirect_stderr=False,
            )
            self._live.start()
        except Exception as e:
            # Undo whatever half of the setup succeeded
            try:
                self.close()
            except TerminalError:
                logger.exception("Terminal restore after failed setup also failed")
            raise TerminalError(f"terminal setup failed: {e}") from e

    def poll_key(self, timeout: float) -> str | None:
        """Wait up to timeout seconds for one keystroke."""
        if self._fd is None:
            select.select([], [], [], timeout)
            return None
        try:
            ready, _, _ = select.select([self._fd], [], [], timeout)
            if not ready:
                return None
            data = os.read(self._fd, 1)
        except OSError as e:
            raise TerminalError(f"reading keyboard failed: {e}") from e
        if not data:
            return None
        return data.decode('utf-8', 'ignore')

    def draw(self, renderable: RenderableType) -> None:
        if self._live is None:
            raise TerminalError("draw() before open()")
        try:
            self._live.update(renderable, refresh=True)
        except OSError as e:
            raise TerminalError(f"drawing failed: {e}") from e

    def size(self) -> tuple[int, int]:
        width, height = self.console.size
        return width, height

    def close(self) -> None:
        """Leave the alternate screen and restore stdin mode. Runs once."""
        self.close_calls += 1
        if self._closed:
            return
        self._closed = True

        errors: list[BaseException] = []
        if self._live is not None:
            try:
                self._live.stop()
            except Exception as e:
                errors.append(e)
            self._live = None

        if self._fd is not None and self._old_settings is not None and termios is not None:
            try:
                termios.tcsetattr(self._fd, termios.TCSADRAIN, self._old_settings)
            except termios.error as e:
                errors.append(e)
            self._fd = None
            self._old_settings = None

        if errors:
            raise TerminalError(f"terminal restore failed: {errors[0]}") from errors[0]
