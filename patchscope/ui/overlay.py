"""Grid and highlight overlay drawing.

The renderer is stateless: each call to :meth:`OverlayRenderer.render`
clears its surface and draws the grid, the highlight rectangles and the
rank labels from scratch. Surfaces only know how to draw primitives in
their own pixel space, which lets the same code paint a Tk canvas or a PIL
image for export.
"""
from __future__ import annotations

import colorsys
import logging
from typing import TYPE_CHECKING, Iterable, Optional, Protocol, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFont

from ..core.correspondence import match_band
from ..core.entities import HighlightTag, PatchHighlight
from ..core.grid import GridMapper

if TYPE_CHECKING:
    import tkinter as tk

logger = logging.getLogger(__name__)

RGBA = Tuple[int, int, int, float]

BAND_HUES = {"best": 120, "good": 60, "moderate": 30}

GRID_LINE_COLOR: RGBA = (255, 255, 255, 0.4)
SELECTED_FILL: RGBA = (59, 130, 246, 0.4)
SELECTED_STROKE: RGBA = (59, 130, 246, 0.8)
HOVERED_FILL: RGBA = (255, 255, 255, 0.2)
HOVERED_STROKE: RGBA = (255, 255, 255, 0.6)
LABEL_COLOR: RGBA = (255, 255, 255, 1.0)


def hsla(hue: float, saturation: float, lightness: float, alpha: float) -> RGBA:
    """CSS-style hsla (hue in degrees, the rest in 0..1) to an RGBA tuple."""
    r, g, b = colorsys.hls_to_rgb((hue % 360) / 360.0, lightness, saturation)
    return (round(r * 255), round(g * 255), round(b * 255), alpha)


def to_hex(color: RGBA) -> str:
    return "#{:02x}{:02x}{:02x}".format(*color[:3])


def rank_hue(rank: int) -> int:
    return BAND_HUES[match_band(rank)]


def rank_fill_alpha(rank: int) -> float:
    return max(0.3, 1 - (rank - 1) / 9) * 0.4


def highlight_colors(highlight: PatchHighlight) -> Tuple[RGBA, RGBA]:
    """(fill, stroke) for one highlight."""
    if highlight.tag is HighlightTag.SELECTED:
        return SELECTED_FILL, SELECTED_STROKE
    if highlight.tag is HighlightTag.HOVERED:
        return HOVERED_FILL, HOVERED_STROKE
    hue = rank_hue(highlight.rank)
    return hsla(hue, 0.7, 0.5, rank_fill_alpha(highlight.rank)), hsla(hue, 0.7, 0.4, 0.8)


class DrawingSurface(Protocol):
    """Primitive drawing operations in surface pixel coordinates."""

    @property
    def size(self) -> Tuple[float, float]: ...

    def clear(self) -> None: ...

    def line(self, x1: float, y1: float, x2: float, y2: float, color: RGBA, width: int) -> None: ...

    def rect(self, x1: float, y1: float, x2: float, y2: float,
             fill: RGBA, outline: RGBA, width: int) -> None: ...

    def text(self, x: float, y: float, label: str, color: RGBA) -> None: ...


class ImageSurface:
    """Composites the overlay onto a copy of a PIL image."""

    def __init__(self, base: Image.Image):
        self._base = base.convert("RGBA")
        self._result = self._base.copy()
        self._font = ImageFont.load_default()

    @property
    def size(self) -> Tuple[float, float]:
        return self._base.size

    @property
    def image(self) -> Image.Image:
        return self._result

    def clear(self) -> None:
        self._result = self._base.copy()

    @staticmethod
    def _pil(color: RGBA) -> Tuple[int, int, int, int]:
        return (color[0], color[1], color[2], round(color[3] * 255))

    def _composite(self, draw_fn) -> None:
        layer = Image.new("RGBA", self._result.size, (0, 0, 0, 0))
        draw_fn(ImageDraw.Draw(layer))
        self._result = Image.alpha_composite(self._result, layer)

    def line(self, x1, y1, x2, y2, color, width=1):
        self._composite(lambda d: d.line([(x1, y1), (x2, y2)], fill=self._pil(color), width=width))

    def rect(self, x1, y1, x2, y2, fill, outline, width=2):
        # Pixel (x2, y2) is inclusive for ImageDraw.
        box = [x1, y1, max(x1, x2 - 1), max(y1, y2 - 1)]
        self._composite(lambda d: d.rectangle(box, fill=self._pil(fill)))
        self._composite(lambda d: d.rectangle(box, outline=self._pil(outline), width=width))

    def text(self, x, y, label, color):
        def _draw(d):
            left, top, right, bottom = d.textbbox((0, 0), label, font=self._font)
            d.text((x - (right - left) / 2 - left, y - (bottom - top) / 2 - top), label,
                   fill=self._pil(color), font=self._font)
        self._composite(_draw)

    def save(self, path: str) -> None:
        self._result.save(path, format="PNG")


class TkCanvasSurface:
    """Draws on a region of a ``tk.Canvas``; translucency uses stipple patterns."""

    TAG = "overlay"

    def __init__(self, canvas: tk.Canvas, origin_x: float = 0, origin_y: float = 0,
                 width: float = 0, height: float = 0):
        self.canvas = canvas
        self.origin_x = origin_x
        self.origin_y = origin_y
        self.width = width
        self.height = height

    @property
    def size(self) -> Tuple[float, float]:
        return self.width, self.height

    def place(self, origin_x: float, origin_y: float, width: float, height: float) -> None:
        self.origin_x, self.origin_y, self.width, self.height = origin_x, origin_y, width, height

    @staticmethod
    def stipple_for(alpha: float) -> str:
        if alpha >= 0.85:
            return ""
        if alpha >= 0.6:
            return "gray75"
        if alpha >= 0.35:
            return "gray50"
        if alpha >= 0.15:
            return "gray25"
        return "gray12"

    def clear(self) -> None:
        self.canvas.delete(self.TAG)

    def line(self, x1, y1, x2, y2, color, width=1):
        self.canvas.create_line(
            self.origin_x + x1, self.origin_y + y1, self.origin_x + x2, self.origin_y + y2,
            fill=to_hex(color), width=width, stipple=self.stipple_for(color[3]), tags=(self.TAG,),
        )

    def rect(self, x1, y1, x2, y2, fill, outline, width=2):
        self.canvas.create_rectangle(
            self.origin_x + x1, self.origin_y + y1, self.origin_x + x2, self.origin_y + y2,
            fill=to_hex(fill), stipple=self.stipple_for(fill[3]),
            outline=to_hex(outline), width=width, tags=(self.TAG,),
        )

    def text(self, x, y, label, color):
        self.canvas.create_text(
            self.origin_x + x, self.origin_y + y, text=label, fill=to_hex(color),
            font=("Segoe UI", 9, "bold"), tags=(self.TAG,),
        )


class OverlayRenderer:
    """Paints the patch grid and highlights for one side of the viewer."""

    def __init__(self, grid_line_width: int = 1, stroke_width: int = 2):
        self.grid_line_width = grid_line_width
        self.stroke_width = stroke_width

    def render(self, surface: DrawingSurface, grid: Optional[GridMapper],
               highlights: Iterable[PatchHighlight], show_grid: bool = True) -> None:
        """Clear ``surface`` and redraw everything.

        With no grid (its patch count was not a square) only the clear
        happens; the image itself stays visible.
        """
        surface.clear()
        width, height = surface.size
        if grid is None or width <= 0 or height <= 0:
            return

        if show_grid:
            for i in range(1, grid.grid_size):
                x = grid.cell_edge(i, width)
                y = grid.cell_edge(i, height)
                surface.line(x, 0, x, height, GRID_LINE_COLOR, self.grid_line_width)
                surface.line(0, y, width, y, GRID_LINE_COLOR, self.grid_line_width)

        labels = []
        for highlight in highlights:
            if not grid.contains(highlight.index):
                logger.debug(f"Skipping highlight outside {grid}: {highlight.index}")
                continue
            x1, y1, x2, y2 = grid.index_to_pixel_rect(highlight.index, width, height)
            fill, stroke = highlight_colors(highlight)
            surface.rect(x1, y1, x2, y2, fill, stroke, self.stroke_width)
            if highlight.tag is HighlightTag.RANKED and highlight.rank is not None:
                labels.append(((x1 + x2) / 2, (y1 + y2) / 2, str(highlight.rank)))

        for x, y, label in labels:
            surface.text(x, y, label, LABEL_COLOR)

    def export(self, image: Image.Image, grid: Optional[GridMapper],
               highlights: Sequence[PatchHighlight], path: str, show_grid: bool = True) -> Image.Image:
        """Render onto a copy of ``image`` and save it as PNG."""
        surface = ImageSurface(image)
        self.render(surface, grid, highlights, show_grid)
        surface.save(path)
        logger.info(f"Exported overlay with {len(highlights)} highlights to {path}")
        return surface.image
