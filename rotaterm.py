#!/usr/bin/env python3
"""
  ⠿  R O T A T E R M  ⠿
  A spiral of circles, rasterized and printed as Braille dot patterns.

  Every terminal cell holds a 2x4 block of pixels, so the picture runs at
  twice the column count and four times the row count. Render as fast as
  the terminal allows; the stage timings in the corner make this a handy
  test of terminal display speed.

  Controls:
    a/z       radius up / down         arrows    move the spiral
    s/x       more / fewer circles     ctrl-l    restart with defaults
    d/c       offset down / up         esc/enter quit

  Warnings raised while the screen is in use are printed after exit.
"""

from __future__ import annotations

import curses
import logging
import logging.handlers
import queue
import select
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, fields, replace
from enum import Enum, auto
from typing import Callable, ClassVar, Iterator, Union

from rotaterm_render import Rasterizer, TerminalGrid, encode, generate_scene

logger = logging.getLogger(__name__)

# ── Timing ──────────────────────────────────────────────────────────────
TICK_INTERVAL = 0.033   # ~30fps cadence
FRAME_WARN = 0.030      # frame line turns red beyond this
POLL_INTERVAL = 0.1     # listener wakes at least this often

# ── Parameter steps ─────────────────────────────────────────────────────
PHASE_STEP = 2.0
PHASE_LIMIT = 1000.0
RADIUS_STEP = 1.0
CIRCLE_STEP = 5
OFFSET_STEP = 1

# ── Overlays ────────────────────────────────────────────────────────────
TIMING_COL = 1
PARAMS_COL = 20
OVERLAY_ROWS = 3

# ── Keys ────────────────────────────────────────────────────────────────
KEY_ESCAPE = 27
KEY_CTRL_L = 12
ENTER_KEYS = (10, 13, curses.KEY_ENTER)

LOG_BUFFER = 500


# ═══════════════════════════════════════════════════════════════════════
#  Animation state
# ═══════════════════════════════════════════════════════════════════════

class Command(Enum):
    RESET = auto()
    PAN_LEFT = auto()
    PAN_RIGHT = auto()
    PAN_UP = auto()
    PAN_DOWN = auto()
    RADIUS_UP = auto()
    RADIUS_DOWN = auto()
    CIRCLES_UP = auto()
    CIRCLES_DOWN = auto()
    OFFSET_DOWN = auto()
    OFFSET_UP = auto()


@dataclass(frozen=True)
class Resize:
    cols: int
    rows: int


Message = Union[Command, Resize]


@dataclass
class AnimationState:
    """Scene parameters. Plain values only, so a shallow copy is a snapshot."""

    rotation_phase: float = 0.0
    radius: float = 6.0
    circle_count: int = 400
    offset: int = 10
    pan_x: int = 0
    pan_y: int = 0

    def snapshot(self) -> AnimationState:
        return replace(self)

    def reset(self) -> None:
        for f in fields(self):
            setattr(self, f.name, f.default)

    def advance(self) -> None:
        self.rotation_phase += PHASE_STEP
        if self.rotation_phase > PHASE_LIMIT:
            self.rotation_phase = -PHASE_LIMIT

    def apply(self, command: Command) -> None:
        if command is Command.RESET:
            self.reset()
        elif command is Command.PAN_LEFT:
            self.pan_x -= 1
        elif command is Command.PAN_RIGHT:
            self.pan_x += 1
        elif command is Command.PAN_UP:
            self.pan_y -= 1
        elif command is Command.PAN_DOWN:
            self.pan_y += 1
        elif command is Command.RADIUS_UP:
            self.radius += RADIUS_STEP
        elif command is Command.RADIUS_DOWN:
            self.radius = max(0.0, self.radius - RADIUS_STEP)
        elif command is Command.CIRCLES_UP:
            self.circle_count += CIRCLE_STEP
        elif command is Command.CIRCLES_DOWN:
            self.circle_count = max(0, self.circle_count - CIRCLE_STEP)
        elif command is Command.OFFSET_DOWN:
            self.offset -= OFFSET_STEP
        elif command is Command.OFFSET_UP:
            self.offset += OFFSET_STEP


@dataclass
class FrameTiming:
    """Seconds spent per stage; `frame` is the previous tick minus its wait."""

    scene: float = 0.0
    paint: float = 0.0
    frame: float = 0.0


# ═══════════════════════════════════════════════════════════════════════
#  Input listener
# ═══════════════════════════════════════════════════════════════════════

def _keys(*chars: str) -> list[int]:
    return [ord(c) for c in chars]


KEY_BINDINGS: dict[int, Command] = {
    KEY_CTRL_L: Command.RESET,
    curses.KEY_LEFT: Command.PAN_LEFT,
    curses.KEY_RIGHT: Command.PAN_RIGHT,
    curses.KEY_UP: Command.PAN_UP,
    curses.KEY_DOWN: Command.PAN_DOWN,
    **{k: Command.RADIUS_UP for k in _keys("a", "A")},
    **{k: Command.RADIUS_DOWN for k in _keys("z", "Z")},
    **{k: Command.CIRCLES_UP for k in _keys("s", "S")},
    **{k: Command.CIRCLES_DOWN for k in _keys("x", "X")},
    **{k: Command.OFFSET_DOWN for k in _keys("d", "D")},
    **{k: Command.OFFSET_UP for k in _keys("c", "C")},
}


class InputListener(threading.Thread):
    """Reads keys off the terminal and turns them into messages.

    Sleeps in select() on the terminal's input until a key arrives or
    POLL_INTERVAL passes, then drains getch() while holding the terminal
    lock. It never touches the animation state or the grid directly:
    everything goes through the message queue, and quit is an Event.
    """

    def __init__(
        self,
        window: curses.window,
        messages: queue.SimpleQueue[Message],
        quit_event: threading.Event,
        lock: threading.Lock,
        fd: int | None = None,
    ) -> None:
        super().__init__(name="rotaterm-input", daemon=True)
        self._window = window
        self._messages = messages
        self._quit = quit_event
        self._lock = lock
        self._fd = sys.stdin.fileno() if fd is None else fd

    def run(self) -> None:
        while not self._quit.is_set():
            select.select([self._fd], [], [], POLL_INTERVAL)
            with self._lock:
                keys = self._drain()
            for key in keys:
                self.handle_key(key)

    def _drain(self) -> list[int]:
        keys: list[int] = []
        while True:
            try:
                key = self._window.getch()
            except curses.error:
                break
            if key == -1:
                break
            keys.append(key)
        return keys

    def handle_key(self, key: int) -> None:
        if key == KEY_ESCAPE or key in ENTER_KEYS:
            self._quit.set()
        elif key == curses.KEY_RESIZE:
            with self._lock:
                rows, cols = self._window.getmaxyx()
            self._messages.put(Resize(cols, rows))
        else:
            command = KEY_BINDINGS.get(key)
            if command is not None:
                self._messages.put(command)


# ═══════════════════════════════════════════════════════════════════════
#  Colour management
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class Palette:
    """Curses attributes for the picture and the overlay lines.

    Until setup() runs every role maps to attribute 0, which lets the
    display work against a headless window.
    """

    # role -> (fg, bg) on 256-colour terminals, then on 8-colour ones
    ROLES: ClassVar[dict[str, tuple[tuple[int, int], tuple[int, int]]]] = {
        "grid": ((111, 0), (curses.COLOR_CYAN, curses.COLOR_BLACK)),
        "line1": ((111, 236), (curses.COLOR_WHITE, curses.COLOR_BLUE)),
        "line2": ((curses.COLOR_GREEN, 235), (curses.COLOR_BLACK, curses.COLOR_GREEN)),
        "line3": ((curses.COLOR_YELLOW, 234), (curses.COLOR_BLACK, curses.COLOR_WHITE)),
        "warn": ((curses.COLOR_YELLOW, 196), (curses.COLOR_YELLOW, curses.COLOR_RED)),
    }

    _attrs: dict[str, int] = field(default_factory=dict)

    def setup(self) -> None:
        if not curses.has_colors():
            return
        curses.start_color()
        rich = curses.COLORS >= 256
        for pair_id, (role, (fancy, basic)) in enumerate(self.ROLES.items(), start=1):
            if pair_id > curses.COLOR_PAIRS - 1:
                break
            fg, bg = fancy if rich else basic
            curses.init_pair(pair_id, fg, bg)
            self._attrs[role] = curses.color_pair(pair_id)

    def attr(self, role: str) -> int:
        return self._attrs.get(role, 0)


# ═══════════════════════════════════════════════════════════════════════
#  Display
# ═══════════════════════════════════════════════════════════════════════

def timing_lines(timing: FrameTiming) -> list[str]:
    return [
        f"mkimg:  {int(timing.scene * 1000):3d}ms",
        f"mkdots: {int(timing.paint * 1000):3d}ms",
        f"screen: {int(timing.frame * 1000):3d}ms",
    ]


def param_lines(state: AnimationState) -> list[str]:
    return [
        f"radius [A-Z]: {int(state.radius)}",
        f"circles[S-X]: {state.circle_count}",
        f"offset [D-C]: {state.offset}",
    ]


class TerminalDisplay:
    """Paints the glyph grid and overlays, then shows them in one refresh."""

    def __init__(
        self, window: curses.window, palette: Palette, lock: threading.Lock
    ) -> None:
        self.window = window
        self.palette = palette
        self._lock = lock

    def clear(self) -> None:
        """Throw away what's on screen so the next refresh repaints it all."""
        with self._lock:
            self.window.clear()

    @contextmanager
    def frame(self) -> Iterator[tuple[int, int]]:
        """Hold the terminal for one frame and refresh once on the way out.

        Yields the current screen size as (max_y, max_x).
        """
        with self._lock:
            yield self.window.getmaxyx()
            self.window.refresh()

    def present(
        self, grid: TerminalGrid, timing: FrameTiming, state: AnimationState
    ) -> None:
        with self.frame() as (max_y, max_x):
            self.paint_grid(grid, max_y, max_x)
            self.paint_overlays(timing, state, grid.rows, max_y, max_x)

    def paint_grid(self, grid: TerminalGrid, max_y: int, max_x: int) -> None:
        attr = self.palette.attr("grid")
        _addstr = self.window.addstr
        for row, line in enumerate(grid.lines[:max_y]):
            try:
                _addstr(row, 0, line[:max_x], attr)
            except curses.error:
                # writing the bottom-right cell moves the cursor off-screen
                pass

    def paint_overlays(
        self,
        timing: FrameTiming,
        state: AnimationState,
        rows: int,
        max_y: int,
        max_x: int,
    ) -> None:
        top = min(rows, max_y) - OVERLAY_ROWS
        if top < 0:
            return
        roles = ["line1", "line2", "line3"]
        if timing.frame > FRAME_WARN:
            roles[2] = "warn"
        attrs = [self.palette.attr(r) for r in roles]
        calm = [self.palette.attr(r) for r in ("line1", "line2", "line3")]

        for i, text in enumerate(timing_lines(timing)):
            self._put(top + i, TIMING_COL, text, attrs[i], max_x)
        for i, text in enumerate(param_lines(state)):
            self._put(top + i, PARAMS_COL, text, calm[i], max_x)

    def _put(self, row: int, col: int, text: str, attr: int, max_x: int) -> None:
        if col >= max_x:
            return
        try:
            self.window.addstr(row, col, text[: max_x - col], attr)
        except curses.error:
            pass


# ═══════════════════════════════════════════════════════════════════════
#  Frame scheduler
# ═══════════════════════════════════════════════════════════════════════

class FrameScheduler:
    """
    Owns the animation state, grid and canvas, and drives the frame loop.

    Each tick: drain messages (parameter changes, resizes), generate and
    rasterize the scene, encode and present it, then advance the phase.
    A tick that overruns simply makes the next one start late.
    """

    def __init__(
        self,
        display: TerminalDisplay,
        cols: int,
        rows: int,
        messages: queue.SimpleQueue[Message] | None = None,
        quit_event: threading.Event | None = None,
        state: AnimationState | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.display = display
        self.messages: queue.SimpleQueue[Message] = (
            messages if messages is not None else queue.SimpleQueue()
        )
        self.quit_event = quit_event if quit_event is not None else threading.Event()
        self.state = state if state is not None else AnimationState()
        self.timing = FrameTiming()
        self.frames = 0
        self._clock = clock
        self._last_start: float | None = None

        self.grid = TerminalGrid(cols, rows)
        self.rasterizer = Rasterizer(cols, rows)

    @property
    def size(self) -> tuple[int, int]:
        return self.grid.cols, self.grid.rows

    def resize(self, cols: int, rows: int) -> None:
        logger.debug("resize to %dx%d cells", cols, rows)
        self.grid = TerminalGrid(cols, rows)
        self.rasterizer.resize(cols, rows)
        self.display.clear()

    def drain(self) -> None:
        """Apply every message that arrived since the last tick, in order."""
        pending: Resize | None = None
        while True:
            try:
                msg = self.messages.get_nowait()
            except queue.Empty:
                break
            if isinstance(msg, Resize):
                pending = msg
            else:
                self.state.apply(msg)
                if msg is Command.RESET:
                    self.display.clear()
        if pending is not None:
            self.resize(pending.cols, pending.rows)

    def tick(self) -> FrameTiming:
        now = self._clock()
        if self._last_start is not None:
            self.timing.frame = max(0.0, now - self._last_start - TICK_INTERVAL)
        self._last_start = now

        self.drain()
        state = self.state.snapshot()
        cols, rows = self.size

        t0 = self._clock()
        circles = generate_scene(state, cols, rows)
        bitmap = self.rasterizer.draw(circles)
        self.timing.scene = self._clock() - t0

        t0 = self._clock()
        self.grid.load(encode(bitmap, cols, rows))
        with self.display.frame() as (max_y, max_x):
            self.display.paint_grid(self.grid, max_y, max_x)
            self.timing.paint = self._clock() - t0
            self.display.paint_overlays(self.timing, state, rows, max_y, max_x)

        self.state.advance()
        self.frames += 1
        return self.timing

    def run(self) -> None:
        while not self.quit_event.wait(TICK_INTERVAL):
            try:
                self.tick()
            except Exception:
                logger.exception("frame %d failed", self.frames)


# ═══════════════════════════════════════════════════════════════════════
#  Main
# ═══════════════════════════════════════════════════════════════════════

class DeferredHandler(logging.handlers.MemoryHandler):
    """Holds log records while curses owns the screen.

    Never flushes on its own; keeps only the newest `capacity` records
    until flush() is called after the terminal has been restored.
    """

    def shouldFlush(self, record: logging.LogRecord) -> bool:
        if len(self.buffer) > self.capacity:
            del self.buffer[0]
        return False


def configure_logging(level: int = logging.INFO) -> DeferredHandler:
    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    handler = DeferredHandler(LOG_BUFFER, target=stream)
    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)
    return handler


def main(stdscr: curses.window) -> None:
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    curses.set_escdelay(25)
    stdscr.keypad(True)
    stdscr.nodelay(True)

    palette = Palette()
    palette.setup()
    stdscr.bkgd(" ", palette.attr("grid"))
    stdscr.clear()

    rows, cols = stdscr.getmaxyx()
    logger.info("starting on a %dx%d terminal (%dx%d pixels)", cols, rows, cols * 2, rows * 4)

    lock = threading.Lock()
    quit_event = threading.Event()
    messages: queue.SimpleQueue[Message] = queue.SimpleQueue()

    listener = InputListener(stdscr, messages, quit_event, lock)
    scheduler = FrameScheduler(
        TerminalDisplay(stdscr, palette, lock),
        cols,
        rows,
        messages=messages,
        quit_event=quit_event,
    )
    listener.start()
    try:
        scheduler.run()
    finally:
        quit_event.set()
        listener.join(timeout=POLL_INTERVAL * 2)
    logger.info("stopped after %d frames", scheduler.frames)


def run() -> None:
    handler = configure_logging()
    status = 0
    try:
        curses.wrapper(main)
    except curses.error as exc:
        print(f"rotaterm: cannot initialise terminal: {exc}", file=sys.stderr)
        status = 1
    except KeyboardInterrupt:
        pass
    finally:
        handler.flush()
    sys.exit(status)


if __name__ == "__main__":
    run()
