"""
Render pipeline for rotaterm: scene -> bitmap -> dot-matrix glyphs.

Each frame flows one way:

    AnimationState  ->  generate_scene()  ->  list[Circle]
    list[Circle]    ->  Rasterizer.draw() ->  bool bitmap (rows*4 x cols*2)
    bitmap          ->  encode()          ->  UTF-8 dot-matrix stream
    stream          ->  TerminalGrid.load -> one glyph per terminal cell

Every terminal cell covers a 2-wide by 4-tall block of bitmap pixels,
packed into a single Braille pattern code point (U+2800 + bits).
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, NamedTuple

import numpy as np
from numpy.typing import NDArray
from PIL import Image, ImageDraw

if TYPE_CHECKING:
    from rotaterm import AnimationState

logger = logging.getLogger(__name__)

# ── Spiral ──────────────────────────────────────────────────────────────
SPIRAL_BASE = 400.0      # denominator base for the per-circle parameter t
SPIRAL_TURNS = 20        # full revolutions over t in [0, 1]
SPIRAL_SPREAD = 0.6      # how far the phase pushes circles outward
SPIRAL_INNER = 10.0      # minimum distance from the spiral centre
DENOM_EPSILON = 1e-6

# ── Canvas ──────────────────────────────────────────────────────────────
BACKGROUND = 0
FOREGROUND = 1

# ── Dot-matrix glyphs ───────────────────────────────────────────────────
CELL_W = 2
CELL_H = 4
BRAILLE_BASE = 0x2800
BLANK = chr(BRAILLE_BASE)

# Bit weight of each subpixel, indexed [y][x] within the 2x4 block
DOT_WEIGHTS: NDArray[np.uint8] = np.array(
    [
        [0x01, 0x08],
        [0x02, 0x10],
        [0x04, 0x20],
        [0x40, 0x80],
    ],
    dtype=np.uint8,
)

GLYPHS: NDArray[np.str_] = np.array([chr(BRAILLE_BASE + i) for i in range(256)])


class Circle(NamedTuple):
    x: float
    y: float
    r: float


# ═══════════════════════════════════════════════════════════════════════
#  Scene generator
# ═══════════════════════════════════════════════════════════════════════

def generate_scene(state: AnimationState, cols: int, rows: int) -> list[Circle]:
    """Lay circles along the rotating spiral for one frame.

    The centre uses the cell width for both axes; the vertical skew this
    gives is part of the look. Circles that come out non-finite are
    dropped, and a near-zero spiral denominator yields an empty scene.
    """
    denom = SPIRAL_BASE + state.rotation_phase / 9
    if not math.isfinite(denom) or abs(denom) < DENOM_EPSILON:
        logger.debug("spiral denominator %r out of range, empty scene", denom)
        return []

    cx = cols + state.pan_x
    cy = cols - rows // 2 + state.pan_y
    circles: list[Circle] = []
    for i in range(max(state.circle_count, 0) + 1):
        t = i / denom
        d = t * state.rotation_phase * SPIRAL_SPREAD + SPIRAL_INNER + state.offset
        a = t * math.pi * 2 * SPIRAL_TURNS
        x = cx + math.cos(a) * d
        y = cy + math.sin(a) * d
        r = t * state.radius
        if math.isfinite(x) and math.isfinite(y) and math.isfinite(r):
            circles.append(Circle(x, y, r))
    return circles


# ═══════════════════════════════════════════════════════════════════════
#  Rasterizer
# ═══════════════════════════════════════════════════════════════════════

class Rasterizer:
    """Fills circles onto a bilevel canvas sized cols*2 x rows*4.

    The canvas is mode "1" so fills carry no anti-aliasing: a pixel is
    either on or off, and overlapping circles can land in any order.
    """

    def __init__(self, cols: int, rows: int) -> None:
        self.width: int = 0
        self.height: int = 0
        self._image: Image.Image | None = None
        self._draw: ImageDraw.ImageDraw | None = None
        self.resize(cols, rows)

    def resize(self, cols: int, rows: int) -> None:
        """Discard the canvas and allocate one for the new cell grid."""
        self.width = max(cols, 0) * CELL_W
        self.height = max(rows, 0) * CELL_H
        if self.width and self.height:
            self._image = Image.new("1", (self.width, self.height), BACKGROUND)
            self._draw = ImageDraw.Draw(self._image)
        else:
            self._image = None
            self._draw = None

    def draw(self, circles: list[Circle]) -> NDArray[np.bool_]:
        """Clear, fill every circle, and return the bitmap as (height, width)."""
        if self._image is None or self._draw is None:
            return np.zeros((self.height, self.width), dtype=np.bool_)

        draw = self._draw
        draw.rectangle((0, 0, self.width, self.height), fill=BACKGROUND)
        for x, y, r in circles:
            if r <= 0:
                continue
            draw.ellipse((x - r, y - r, x + r, y + r), fill=FOREGROUND)
        return np.asarray(self._image, dtype=np.bool_)


# ═══════════════════════════════════════════════════════════════════════
#  Dot-matrix encoder
# ═══════════════════════════════════════════════════════════════════════

def pack(bitmap: NDArray[np.bool_], cols: int, rows: int) -> NDArray[np.uint8]:
    """Pack each 2x4 pixel block into its Braille bit pattern.

    Returns a (rows, cols) array of pattern offsets from BRAILLE_BASE.
    """
    if cols <= 0 or rows <= 0:
        return np.zeros((max(rows, 0), max(cols, 0)), dtype=np.uint8)

    need_h, need_w = rows * CELL_H, cols * CELL_W
    if bitmap.shape != (need_h, need_w):
        raise ValueError(
            f"bitmap is {bitmap.shape[1]}x{bitmap.shape[0]}, "
            f"expected {need_w}x{need_h} for {cols}x{rows} cells"
        )

    # (rows, 4, cols, 2): block y on axis 1, block x on axis 3
    blocks = bitmap.reshape(rows, CELL_H, cols, CELL_W).astype(np.uint8)
    weighted = blocks * DOT_WEIGHTS[np.newaxis, :, np.newaxis, :]
    return weighted.sum(axis=(1, 3)).astype(np.uint8)


def encode(bitmap: NDArray[np.bool_], cols: int, rows: int) -> bytes:
    """Render the bitmap as UTF-8 dot-matrix text, one line per row."""
    if cols <= 0 or rows <= 0:
        return b""
    glyphs = GLYPHS[pack(bitmap, cols, rows)]
    return "\n".join("".join(row) for row in glyphs.tolist()).encode("utf-8")


def is_glyph(ch: str) -> bool:
    return BRAILLE_BASE <= ord(ch) < BRAILLE_BASE + 256


# ═══════════════════════════════════════════════════════════════════════
#  Terminal grid
# ═══════════════════════════════════════════════════════════════════════

class TerminalGrid:
    """A cols x rows buffer of glyphs, one per terminal cell.

    Stored as one string per row so the display can paint a row with a
    single call. Sized once; a resize replaces the whole grid.
    """

    def __init__(self, cols: int, rows: int) -> None:
        self.cols: int = max(cols, 0)
        self.rows: int = max(rows, 0)
        self.lines: list[str] = [BLANK * self.cols for _ in range(self.rows)]

    def __getitem__(self, pos: tuple[int, int]) -> str:
        col, row = pos
        return self.lines[row][col]

    def load(self, stream: bytes) -> int:
        """Overwrite every cell from an encoded stream.

        Rows the stream does not cover, and cells past the end of a short
        line, become blank. Bytes that do not decode to a dot-matrix glyph
        leave their cell blank. Returns the number of blanked bad cells.
        """
        if self.cols == 0 or self.rows == 0:
            return 0

        raw_lines = stream.split(b"\n") if stream else []
        bad_total = 0
        for row in range(self.rows):
            if row >= len(raw_lines):
                self.lines[row] = BLANK * self.cols
                continue
            text = raw_lines[row].decode("utf-8", errors="replace")[: self.cols]
            bad = 0
            if not all(map(is_glyph, text)):
                cells = []
                for ch in text:
                    if is_glyph(ch):
                        cells.append(ch)
                    else:
                        cells.append(BLANK)
                        bad += 1
                text = "".join(cells)
                logger.warning("row %d: %d malformed cell(s) left blank", row, bad)
            self.lines[row] = text.ljust(self.cols, BLANK)
            bad_total += bad
        return bad_total
