"""
Live stock dashboard rendered with Rich + plotext.

Displays:
- Top: current raw price and moving average per instrument
- Bottom left: raw price history, one series per instrument
- Bottom right: moving-average history, one series per instrument

Performance notes:
- Renders at ~20 FPS (50ms frame interval)
- Both aggregates are copied out under their read locks before any drawing,
  so locks are never held while plotext or Rich work
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Iterable, Sequence

import numpy as np
import plotext as plt
from rich.console import Group
from rich.layout import Layout
from rich.panel import Panel
from rich.text import Text

from .terminal import TerminalSession
from ..engine.state import HISTORY_LEN, MarketState, UiState, take_snapshot
from ..types import DashboardSnapshot

logger = logging.getLogger(__name__)

# Same color per instrument in the panel and both charts
SERIES_COLORS = ("red", "green", "yellow", "blue", "magenta", "cyan")
BORDER_COLOR = "bright_black"

CHART_PADDING = 1.0
EMPTY_BOUNDS = (-1.0, 1.0)

DEFAULT_FRAME_INTERVAL_SEC = 0.05
DEFAULT_POLL_TIMEOUT_SEC = 0.01
QUIT_KEYS = frozenset({"q"})

MIN_CHART_WIDTH = 20
MIN_CHART_HEIGHT = 5


def series_color(index: int) -> str:
    return SERIES_COLORS[index % len(SERIES_COLORS)]


def chart_bounds(series: Iterable[Sequence[float]]) -> tuple[float, float]:
    """
    Y-axis bounds covering every visible point, padded by 1.0 on each side.

    All series of one chart share the bounds. No data -> (-1.0, 1.0).
    """
    chunks = [np.asarray(s, dtype=np.float64) for s in series if len(s)]
    if not chunks:
        return EMPTY_BOUNDS
    values = np.concatenate(chunks)
    return float(values.min()) - CHART_PADDING, float(values.max()) + CHART_PADDING


def build_price_panel(snapshot: DashboardSnapshot) -> Panel:
    """Numeric readout: one line per raw instrument, then one per smoothed."""
    lines: list[Text] = []
    for view in snapshot.market:
        lines.append(Text(
            f"Backend Stock {view.instrument_id} -> value: {view.price:.2f}",
            style=series_color(view.instrument_id),
        ))
    for view in snapshot.derived:
        lines.append(Text(
            f"Frontend Stock {view.instrument_id} -> moving avg: {view.value:.2f}",
            style=series_color(view.instrument_id),
        ))
    return Panel(Group(*lines), title="Prices", title_align="left", border_style=BORDER_COLOR)


def render_chart(
    series: Sequence[Sequence[float]],
    labels: Sequence[str],
    width: int,
    height: int,
    x_max: int = HISTORY_LEN,
    marker: str = "dot",
) -> str:
    """Draw a multi-series line chart to an ANSI string."""
    y_lo, y_hi = chart_bounds(series)

    plt.clf()
    plt.plotsize(max(MIN_CHART_WIDTH, width), max(MIN_CHART_HEIGHT, height))
    plt.theme("dark")
    plt.xlim(0, x_max)
    plt.ylim(y_lo, y_hi)

    for i, (values, label) in enumerate(zip(series, labels)):
        if not values:
            continue
        plt.plot(
            list(range(len(values))),
            list(values),
            color=series_color(i),
            marker=marker,
            label=label,
        )

    return plt.build()


def build_dashboard(
    snapshot: DashboardSnapshot,
    width: int,
    height: int,
    history_len: int = HISTORY_LEN,
) -> Layout:
    """Full-screen layout for one frame."""
    panel_height = len(snapshot.market) + len(snapshot.derived) + 2  # + borders
    chart_width = width // 2 - 4
    chart_height = height - panel_height - 2

    raw_chart = render_chart(
        [v.history for v in snapshot.market],
        [f"Backend {v.instrument_id}" for v in snapshot.market],
        chart_width,
        chart_height,
        x_max=history_len,
        marker="dot",
    )
    derived_chart = render_chart(
        [v.history for v in snapshot.derived],
        [f"Frontend {v.instrument_id}" for v in snapshot.derived],
        chart_width,
        chart_height,
        x_max=history_len,
        marker="braille",
    )

    layout = Layout()
    layout.split_column(
        Layout(build_price_panel(snapshot), name="prices", size=panel_height),
        Layout(name="charts"),
    )
    layout["charts"].split_row(
        Layout(Panel(Text.from_ansi(raw_chart), title="Backend Stocks",
                     title_align="left", border_style=BORDER_COLOR)),
        Layout(Panel(Text.from_ansi(derived_chart), title="Frontend Moving Avg",
                     title_align="left", border_style=BORDER_COLOR)),
    )
    return layout


class RenderPhase(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class Renderer:
    """
    Frame loop: poll for quit, snapshot, draw, sleep.

    Owns the terminal session: opened at the start of run(), closed exactly
    once on every way out of it (quit key, stop(), exceptions, Ctrl-C).

    Phases: IDLE -> RUNNING -> SHUTTING_DOWN -> TERMINATED. The last step
    happens whether or not the terminal restore succeeds.
    """

    def __init__(
        self,
        market: MarketState,
        ui: UiState,
        terminal: TerminalSession,
        frame_interval_sec: float = DEFAULT_FRAME_INTERVAL_SEC,
        poll_timeout_sec: float = DEFAULT_POLL_TIMEOUT_SEC,
        quit_keys: frozenset[str] = QUIT_KEYS,
    ) -> None:
        self.market = market
        self.ui = ui
        self.terminal = terminal
        self.frame_interval_sec = frame_interval_sec
        self.poll_timeout_sec = poll_timeout_sec
        self.quit_keys = quit_keys

        self.phase = RenderPhase.IDLE
        self.frames: int = 0
        self._stop = threading.Event()

    def stop(self) -> None:
        """Ask the loop to exit at the next frame boundary. Safe to call repeatedly."""
        self._stop.set()

    def render_frame(self) -> DashboardSnapshot:
        snapshot = take_snapshot(self.market, self.ui)
        width, height = self.terminal.size()
        self.terminal.draw(build_dashboard(snapshot, width, height, self.market.history_len))
        self.frames += 1
        return snapshot

    def _quit_requested(self) -> bool:
        if self._stop.is_set():
            return True
        key = self.terminal.poll_key(self.poll_timeout_sec)
        if key is not None and key in self.quit_keys:
            logger.info("Quit key %r pressed", key)
            self._stop.set()
            return True
        return False

    def run(self) -> None:
        """Block until quit. Terminal errors propagate after the terminal is released."""
        if self.phase is not RenderPhase.IDLE:
            raise RuntimeError(f"renderer already {self.phase.value}")

        try:
            self.terminal.open()
        except Exception:
            # Release whatever part of the setup took effect; close() is idempotent
            self.phase = RenderPhase.SHUTTING_DOWN
            try:
                self.terminal.close()
            except Exception:
                logger.exception("Terminal release after failed open also failed")
            self.phase = RenderPhase.TERMINATED
            raise

        self.phase = RenderPhase.RUNNING
        logger.info("Renderer started (frame=%.3fs)", self.frame_interval_sec)
        try:
            while not self._quit_requested():
                self.render_frame()
                self._stop.wait(self.frame_interval_sec)
        except Exception:
            logger.exception("Fatal terminal error, shutting down")
            raise
        finally:
            self.phase = RenderPhase.SHUTTING_DOWN
            try:
                self.terminal.close()
            except Exception:
                logger.exception("Terminal release failed")
                raise
            finally:
                self.phase = RenderPhase.TERMINATED
                logger.info("Renderer terminated after %d frames", self.frames)
