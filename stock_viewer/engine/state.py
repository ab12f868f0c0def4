"""
Shared market and UI aggregates.

Two aggregates, each a fixed-size list of per-instrument records behind one
RWLock:

- MarketState: raw prices, written by the generator, read by the
  aggregator and renderer
- UiState: smoothed prices, written by the aggregator, read by the renderer

Instruments are addressed by list index, and index == instrument_id for the
lifetime of the process.

Lock order: whenever both locks are held together it is MarketState first,
then UiState. lock_market_then_ui() is the only place that nests them.
"""

from __future__ import annotations

import time
from collections import deque
from contextlib import contextmanager
from typing import Iterator, Sequence

from .locks import RWLock
from ..types import DashboardSnapshot, DerivedView, InstrumentView, TickRecord

HISTORY_LEN = 50
DEFAULT_SEED_PRICE = 100.0
DEFAULT_INSTRUMENTS = 3


class Instrument:
    """
    One raw instrument. Mutated only under MarketState.lock (write side).

    Price is deliberately unbounded: it may go negative or drift forever.
    """

    __slots__ = ('instrument_id', 'price', 'last_update', 'history')

    def __init__(
        self,
        instrument_id: int,
        seed_price: float = DEFAULT_SEED_PRICE,
        history_len: int = HISTORY_LEN,
        now: float | None = None,
    ) -> None:
        self.instrument_id = instrument_id
        self.price = float(seed_price)
        self.last_update = time.monotonic() if now is None else now
        # Pre-filled so the chart starts as a flat line at the seed price
        self.history: deque[float] = deque([self.price] * history_len, maxlen=history_len)

    def apply_delta(self, delta: float, now: float) -> float:
        """Move the price by delta and record it. Returns the new price."""
        self.price += delta
        self.last_update = now
        self.history.append(self.price)  # maxlen evicts the oldest
        return self.price

    def view(self) -> InstrumentView:
        return InstrumentView(self.instrument_id, self.price, self.last_update, tuple(self.history))


class DerivedInstrument:
    """
    One smoothed instrument. Mutated only under UiState.lock (write side).

    value is rebound to a new float on every recompute, never changed in
    place, so anything that read the old value keeps a valid (stale) copy.
    """

    __slots__ = ('instrument_id', 'value', 'last_update', 'history')

    def __init__(
        self,
        instrument_id: int,
        seed_value: float = DEFAULT_SEED_PRICE,
        history_len: int = HISTORY_LEN,
        now: float | None = None,
    ) -> None:
        self.instrument_id = instrument_id
        self.value = float(seed_value)
        self.last_update = time.monotonic() if now is None else now
        self.history: deque[float] = deque(maxlen=history_len)

    def replace_value(self, value: float, now: float) -> None:
        self.value = float(value)
        self.last_update = now
        self.history.append(self.value)

    def view(self) -> DerivedView:
        return DerivedView(self.instrument_id, self.value, self.last_update, tuple(self.history))


class MarketState:
    """Raw price aggregate. Fixed size for the lifetime of the process."""

    __slots__ = ('lock', 'instruments', 'history_len')

    def __init__(
        self,
        count: int = DEFAULT_INSTRUMENTS,
        seed_price: float = DEFAULT_SEED_PRICE,
        history_len: int = HISTORY_LEN,
    ) -> None:
        if count <= 0:
            raise ValueError("count must be > 0")
        now = time.monotonic()
        self.lock = RWLock()
        self.history_len = history_len
        self.instruments: list[Instrument] = [
            Instrument(i, seed_price, history_len, now) for i in range(count)
        ]

    def __len__(self) -> int:
        return len(self.instruments)

    def apply_sweep(self, deltas: Sequence[float], now: float | None = None) -> list[TickRecord]:
        """
        Apply one delta per instrument under the exclusive lock.

        HOT PATH - called every generator tick.

        Every instrument in the sweep gets the same timestamp, which makes a
        torn read easy to spot: a consistent snapshot has one last_update per
        sweep across all instruments.
        """
        if len(deltas) != len(self.instruments):
            raise ValueError(
                f"expected {len(self.instruments)} deltas, got {len(deltas)}"
            )
        if now is None:
            now = time.monotonic()

        with self.lock.write():
            records = [
                TickRecord(inst.instrument_id, inst.apply_delta(float(delta), now))
                for inst, delta in zip(self.instruments, deltas)
            ]
        return records

    def snapshot(self) -> tuple[InstrumentView, ...]:
        """Self-contained copy of every instrument, taken under the shared lock."""
        with self.lock.read():
            return tuple(inst.view() for inst in self.instruments)


class UiState:
    """Smoothed price aggregate. Same size as the MarketState it shadows."""

    __slots__ = ('lock', 'instruments', 'history_len')

    def __init__(
        self,
        count: int = DEFAULT_INSTRUMENTS,
        seed_value: float = DEFAULT_SEED_PRICE,
        history_len: int = HISTORY_LEN,
    ) -> None:
        if count <= 0:
            raise ValueError("count must be > 0")
        now = time.monotonic()
        self.lock = RWLock()
        self.history_len = history_len
        self.instruments: list[DerivedInstrument] = [
            DerivedInstrument(i, seed_value, history_len, now) for i in range(count)
        ]

    @classmethod
    def for_market(cls, market: MarketState, seed_value: float = DEFAULT_SEED_PRICE) -> UiState:
        return cls(len(market), seed_value, market.history_len)

    def __len__(self) -> int:
        return len(self.instruments)

    def snapshot(self) -> tuple[DerivedView, ...]:
        with self.lock.read():
            return tuple(inst.view() for inst in self.instruments)


@contextmanager
def lock_market_then_ui(market: MarketState, ui: UiState) -> Iterator[None]:
    """
    Shared MarketState lock + exclusive UiState lock, always in that order.

    The only code path that holds both locks at once.
    """
    with market.lock.read():
        with ui.lock.write():
            yield


def take_snapshot(market: MarketState, ui: UiState) -> DashboardSnapshot:
    """
    Copy both aggregates for one frame.

    Sequential, not nested: the market lock is released before the UI lock
    is taken. Each half is internally consistent; the pair is not atomic.
    """
    market_views = market.snapshot()
    derived_views = ui.snapshot()
    return DashboardSnapshot(market_views, derived_views)
