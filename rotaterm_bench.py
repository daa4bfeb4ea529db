#!/usr/bin/env python3
"""
Profiling harness for rotaterm.

Runs the scene + raster + encode + paint pipeline headlessly under
cProfile, then prints a ranked breakdown of where time is spent. With
--raw it skips curses and writes every encoded frame straight to stdout,
which measures how fast the real terminal can take dot-matrix output.

Usage:
  python3 rotaterm_bench.py                  # 500 frames, summary
  python3 rotaterm_bench.py -n 1000          # 1000 frames
  python3 rotaterm_bench.py --line-timing    # per-stage timing
  python3 rotaterm_bench.py --dump prof.out  # dump cProfile binary for snakeviz etc.
  python3 rotaterm_bench.py --raw            # blast frames at this terminal
"""

from __future__ import annotations

import argparse
import cProfile
import pstats
import sys
import threading
import time
from io import StringIO
from typing import BinaryIO

import numpy as np

from rotaterm import (
    TICK_INTERVAL,
    AnimationState,
    FrameScheduler,
    Palette,
    TerminalDisplay,
)
from rotaterm_render import Rasterizer, encode, generate_scene

HOME = b"\x1b[H"


# ── Fake curses stubs for headless rendering ────────────────────────────

class FakeWindow:
    """Minimal curses.window stub that absorbs drawing calls."""

    def __init__(self, rows: int, cols: int) -> None:
        self._rows = rows
        self._cols = cols
        self.calls = 0
        self.refreshes = 0
        self.clears = 0
        self.written: dict[tuple[int, int], str] = {}
        self.attrs: dict[tuple[int, int], int] = {}

    def getmaxyx(self) -> tuple[int, int]:
        return self._rows, self._cols

    def getch(self) -> int:
        return -1

    def resize(self, rows: int, cols: int) -> None:
        self._rows = rows
        self._cols = cols

    def addstr(self, row: int, col: int, text: str, attr: int = 0) -> None:
        self.calls += 1
        self.written[(row, col)] = text
        self.attrs[(row, col)] = attr

    def clear(self) -> None:
        self.clears += 1
        self.written.clear()
        self.attrs.clear()

    def refresh(self) -> None:
        self.refreshes += 1


def headless_scheduler(rows: int, cols: int) -> FrameScheduler:
    window = FakeWindow(rows, cols)
    display = TerminalDisplay(window, Palette(), threading.Lock())  # type: ignore[arg-type]
    return FrameScheduler(display, cols, rows)


def run_raw(n_frames: int, out: BinaryIO, term_rows: int, term_cols: int) -> float:
    """Write n_frames encoded frames to `out`. Returns wall seconds."""
    state = AnimationState()
    raster = Rasterizer(term_cols, term_rows)
    t0 = time.perf_counter()
    for _ in range(n_frames):
        bitmap = raster.draw(generate_scene(state, term_cols, term_rows))
        out.write(HOME + encode(bitmap, term_cols, term_rows))
        out.flush()
        state.advance()
    return time.perf_counter() - t0


def run_benchmark(
    n_frames: int,
    term_rows: int = 60,
    term_cols: int = 200,
    line_timing: bool = False,
    dump_path: str | None = None,
    sort_key: str = "cumulative",
    top: int = 25,
) -> None:
    """Run the benchmark for n_frames and report results."""

    scheduler = headless_scheduler(term_rows, term_cols)

    print(f"Canvas: {term_cols * 2}x{term_rows * 4}  "
          f"Circles: {scheduler.state.circle_count + 1}  "
          f"Frames: {n_frames}")
    print(f"Terminal: {term_rows}x{term_cols}")
    print()

    # ── Per-stage timing ───────────────────────────────────────────
    if line_timing:
        scene_times: list[float] = []
        paint_times: list[float] = []
        total_times: list[float] = []

        for frame in range(n_frames):
            frame_t0 = time.perf_counter()
            timing = scheduler.tick()
            scene_times.append(timing.scene)
            paint_times.append(timing.paint)
            total_times.append(time.perf_counter() - frame_t0)

            if (frame + 1) % 100 == 0:
                avg_ms = sum(total_times[-100:]) / 100 * 1000
                print(f"  frame {frame + 1}/{n_frames}  "
                      f"avg {avg_ms:.1f}ms/frame  "
                      f"phase {scheduler.state.rotation_phase:.0f}")

        print()
        print("=== Per-Frame Stage Breakdown (ms) ===")
        print(f"{'Stage':<25} {'Mean':>8} {'P50':>8} {'P95':>8} {'P99':>8} {'Max':>8}")
        print("-" * 73)

        def stats_line(name: str, data: list[float]) -> str:
            arr = np.array(data) * 1000  # to ms
            return (f"{name:<25} {arr.mean():8.2f} {np.median(arr):8.2f} "
                    f"{np.percentile(arr, 95):8.2f} {np.percentile(arr, 99):8.2f} "
                    f"{arr.max():8.2f}")

        print(stats_line("scene+raster", scene_times))
        print(stats_line("encode+paint", paint_times))
        print(stats_line("TOTAL", total_times))

        budget_ms = TICK_INTERVAL * 1000
        total_arr = np.array(total_times) * 1000
        over_budget = (total_arr > budget_ms).sum()
        print(f"\nTick budget: {budget_ms:.1f}ms/frame")
        print(f"Frames over budget: {over_budget}/{n_frames} "
              f"({100 * over_budget / n_frames:.1f}%)")
        print(f"Headroom (mean): {budget_ms - total_arr.mean():.1f}ms")
        return

    # ── cProfile run ───────────────────────────────────────────────
    profiler = cProfile.Profile()
    wall_t0 = time.perf_counter()
    profiler.enable()
    for _ in range(n_frames):
        scheduler.tick()
    profiler.disable()
    wall_dt = time.perf_counter() - wall_t0

    print(f"{n_frames} frames in {wall_dt:.2f}s: "
          f"{wall_dt / n_frames * 1000:.1f}ms/frame, {n_frames / wall_dt:.1f} fps\n")
    if dump_path:
        profiler.dump_stats(dump_path)
        print(f"profile written to {dump_path}\n")

    report = StringIO()
    pstats.Stats(profiler, stream=report).strip_dirs().sort_stats(sort_key).print_stats(top)
    print(f"=== Top {top} by {sort_key} ===")
    print(report.getvalue())


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Profile the rotaterm render pipeline")
    parser.add_argument("-n", "--frames", type=int, default=500,
                        help="Number of frames to render (default: 500)")
    parser.add_argument("--rows", type=int, default=60,
                        help="Simulated terminal rows (default: 60)")
    parser.add_argument("--cols", type=int, default=200,
                        help="Simulated terminal cols (default: 200)")
    parser.add_argument("--line-timing", action="store_true",
                        help="Per-stage timing instead of cProfile")
    parser.add_argument("--dump", type=str, default=None,
                        help="Dump cProfile binary to this path")
    parser.add_argument("--sort", default="cumulative",
                        choices=["cumulative", "tottime", "ncalls"],
                        help="Profile table ordering (default: cumulative)")
    parser.add_argument("--top", type=int, default=25,
                        help="Rows in the profile table (default: 25)")
    parser.add_argument("--raw", action="store_true",
                        help="Write encoded frames to stdout instead of profiling")
    args = parser.parse_args(argv)

    if args.raw:
        wall = run_raw(args.frames, sys.stdout.buffer, args.rows, args.cols)
        print(f"\n{args.frames} frames in {wall:.2f}s "
              f"({args.frames / wall:.1f} fps)", file=sys.stderr)
        return

    run_benchmark(
        n_frames=args.frames,
        term_rows=args.rows,
        term_cols=args.cols,
        line_timing=args.line_timing,
        dump_path=args.dump,
        sort_key=args.sort,
        top=args.top,
    )


if __name__ == "__main__":
    main()
