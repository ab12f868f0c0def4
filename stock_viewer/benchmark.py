#!/usr/bin/env python3
"""
Micro-benchmark for Stock Viewer hot paths.

Tests:
1. Generator sweep throughput (exclusive market lock)
2. Moving-average recompute (market read + UI write locks)
3. Dashboard snapshot copy (both read locks, sequential)
4. Full frame build (snapshot + Rich layout + two plotext charts)

Usage:
    python -m stock_viewer.benchmark
"""

from __future__ import annotations

import time
from statistics import mean, stdev

from .datafeed.dispatch import SinkDispatcher
from .datafeed.generator import Generator
from .engine.smoothing import Aggregator
from .engine.state import MarketState, UiState, take_snapshot
from .ui.dashboard import build_dashboard


def _timed(func, iterations: int) -> list[float]:
    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        func()
        times.append(time.perf_counter() - start)
    return times


def _report(times: list[float], label: str = "calls") -> None:
    avg_time = mean(times) * 1000
    std_time = stdev(times) * 1000
    print(f"  Iterations: {len(times):,}")
    print(f"  Avg time: {avg_time:.4f}ms")
    print(f"  Std dev: {std_time:.4f}ms")
    print(f"  Rate: {1000/avg_time:,.0f} {label}/sec")


def benchmark_sweeps(iterations: int = 20000, instruments: int = 3) -> None:
    """Benchmark generator sweeps (no sinks attached)."""
    print("\n=== Generator Sweep Benchmark ===")

    market = MarketState(count=instruments)
    # Dispatcher is never started: publish() is not part of the sweep
    generator = Generator(market, SinkDispatcher(workers=1))

    _report(_timed(generator.sweep, iterations), "sweeps")


def benchmark_recompute(iterations: int = 20000, instruments: int = 3) -> None:
    """Benchmark moving-average recompute."""
    print("\n=== Moving Average Recompute Benchmark ===")

    market = MarketState(count=instruments)
    ui = UiState.for_market(market)
    aggregator = Aggregator(market, ui)

    _report(_timed(aggregator.recompute, iterations), "recomputes")


def benchmark_snapshot(iterations: int = 20000, instruments: int = 3) -> None:
    """Benchmark the renderer's snapshot copy."""
    print("\n=== Dashboard Snapshot Benchmark ===")

    market = MarketState(count=instruments)
    ui = UiState.for_market(market)
    Aggregator(market, ui).recompute()

    _report(_timed(lambda: take_snapshot(market, ui), iterations), "snapshots")


def benchmark_frame(iterations: int = 200, instruments: int = 3) -> None:
    """Benchmark a full frame build (what the renderer does every 50ms)."""
    print("\n=== Full Frame Build Benchmark ===")

    market = MarketState(count=instruments)
    ui = UiState.for_market(market)
    generator = Generator(market, SinkDispatcher(workers=1))
    aggregator = Aggregator(market, ui)
    for _ in range(50):
        generator.sweep()
        aggregator.recompute()

    def frame() -> None:
        build_dashboard(take_snapshot(market, ui), 160, 48)

    times = _timed(frame, iterations)
    _report(times, "frames")
    print(f"  Max FPS possible: {1/mean(times):,.0f}")


def main() -> None:
    """Run all benchmarks."""
    print("=" * 60)
    print("Stock Viewer Performance Benchmark")
    print("=" * 60)

    benchmark_sweeps()
    benchmark_recompute()
    benchmark_snapshot()
    benchmark_frame()

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
