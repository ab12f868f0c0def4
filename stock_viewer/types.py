"""
Data types for Stock Viewer.

Snapshots are tuples all the way down (histories included), so a frame or
a sink can hold one after the lock is released without it changing.
The live aggregates in engine/state.py keep mutable deques instead.
"""

from typing import NamedTuple


class TickRecord(NamedTuple):
    """One price update emitted by the generator to the sinks."""
    instrument_id: int
    price: float


class InstrumentView(NamedTuple):
    """Point-in-time copy of one raw instrument."""
    instrument_id: int
    price: float
    last_update: float        # time.monotonic() of the sweep that wrote it
    history: tuple[float, ...]  # Oldest first


class DerivedView(NamedTuple):
    """Point-in-time copy of one smoothed instrument."""
    instrument_id: int
    value: float              # Moving average at last recompute
    last_update: float
    history: tuple[float, ...]


class DashboardSnapshot(NamedTuple):
    """
    Everything one frame needs.

    The two halves are copied under separate locks, so each is internally
    consistent but they may come from different generator ticks.
    """
    market: tuple[InstrumentView, ...]
    derived: tuple[DerivedView, ...]
