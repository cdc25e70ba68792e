"""Coordinate math for square patch grids.

Converts between pixel positions on a drawing surface, normalized image
space and discrete patch indices. Both the overlay renderer and the hit
testing on the canvases go through :class:`GridMapper`, so cell boundaries
are defined in exactly one place.
"""
from __future__ import annotations

import math
from typing import List, Optional, Tuple

from .entities import NormalizedRect, PatchCoordinate, PatchIndex
from .exceptions import InvalidGridError, OutOfRangeError


def grid_size_for(patch_count: int) -> int:
    """Return the side length of a square grid holding ``patch_count`` cells.

    Raises:
        InvalidGridError: if ``patch_count`` is not a positive perfect square.
    """
    if isinstance(patch_count, bool) or not isinstance(patch_count, int) or patch_count <= 0:
        raise InvalidGridError(patch_count)
    side = math.isqrt(patch_count)
    if side * side != patch_count:
        raise InvalidGridError(patch_count)
    return side


class GridMapper:
    """Pixel / normalized / index conversions for an N x N patch grid."""

    __slots__ = ("grid_size",)

    def __init__(self, grid_size: int):
        if isinstance(grid_size, bool) or not isinstance(grid_size, int) or grid_size < 1:
            raise InvalidGridError(grid_size, f"Grid size {grid_size!r} must be a positive integer")
        self.grid_size = grid_size

    @classmethod
    def from_patch_count(cls, patch_count: int) -> "GridMapper":
        return cls(grid_size_for(patch_count))

    def __repr__(self) -> str:
        return f"GridMapper(grid_size={self.grid_size})"

    def __eq__(self, other) -> bool:
        return isinstance(other, GridMapper) and other.grid_size == self.grid_size

    def __hash__(self) -> int:
        return hash(self.grid_size)

    @property
    def cell_count(self) -> int:
        return self.grid_size * self.grid_size

    def contains(self, index: PatchIndex) -> bool:
        return 0 <= index < self.cell_count

    def to_index(self, row: int, col: int) -> PatchIndex:
        """Convert a (row, col) cell to its row-major patch index."""
        if not (0 <= row < self.grid_size and 0 <= col < self.grid_size):
            raise OutOfRangeError(
                f"Cell ({row}, {col}) outside {self.grid_size}x{self.grid_size} grid"
            )
        return row * self.grid_size + col

    def to_coordinate(self, index: PatchIndex) -> PatchCoordinate:
        """Convert a patch index back to its (row, col) cell."""
        if not self.contains(index):
            raise OutOfRangeError(
                f"Patch index {index} outside [0, {self.cell_count})"
            )
        row, col = divmod(index, self.grid_size)
        return PatchCoordinate(row, col)

    def pixel_to_index(self, x: float, y: float,
                       surface_width: float, surface_height: float) -> Optional[PatchIndex]:
        """Return the patch under pixel (x, y), or None when off the surface.

        Cells are half-open, ``[c*w/N, (c+1)*w/N)``, so every pixel on the
        surface belongs to exactly one cell.
        """
        if surface_width <= 0 or surface_height <= 0:
            return None
        if not (0 <= x < surface_width and 0 <= y < surface_height):
            return None
        col = min(int(math.floor(x * self.grid_size / surface_width)), self.grid_size - 1)
        row = min(int(math.floor(y * self.grid_size / surface_height)), self.grid_size - 1)
        return row * self.grid_size + col

    def index_to_normalized_rect(self, index: PatchIndex) -> NormalizedRect:
        """Cell rectangle in [0, 1] units for resolution independent drawing."""
        coord = self.to_coordinate(index)
        size = 1.0 / self.grid_size
        return NormalizedRect(
            x=coord.col * size,
            y=coord.row * size,
            width=size,
            height=size,
        )

    def cell_edge(self, i: int, length: float) -> float:
        """Pixel position of grid line ``i`` along an axis of ``length``.

        Same arithmetic as :meth:`pixel_to_index`, so a pixel hit-tested
        into a cell always lies inside that cell's drawn rectangle.
        """
        return i * length / self.grid_size

    def index_to_pixel_rect(self, index: PatchIndex, surface_width: float,
                            surface_height: float) -> Tuple[float, float, float, float]:
        """Cell rectangle as (x1, y1, x2, y2) on a surface of the given size."""
        coord = self.to_coordinate(index)
        return (
            self.cell_edge(coord.col, surface_width),
            self.cell_edge(coord.row, surface_height),
            self.cell_edge(coord.col + 1, surface_width),
            self.cell_edge(coord.row + 1, surface_height),
        )

    def interior_boundaries(self) -> List[float]:
        """Normalized positions of the ``grid_size - 1`` interior grid lines."""
        return [i / self.grid_size for i in range(1, self.grid_size)]
