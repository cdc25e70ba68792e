"""Unit tests for canvas geometry (no display needed)."""
import pytest

pytest.importorskip("tkinter")

from patchscope.core.grid import GridMapper
from patchscope.ui.components.patch_canvas import INTERPOLATION, DisplayTransform


class TestDisplayTransform:
    """Test image fitting and hit testing on the canvas."""

    def test_fit_wide_canvas(self):
        t = DisplayTransform.fit(200, 100, 800, 200)
        assert t.scale == 2.0
        assert (t.width, t.height) == (400, 200)
        assert (t.offset_x, t.offset_y) == (200, 0)

    def test_fit_tall_canvas(self):
        t = DisplayTransform.fit(100, 100, 300, 500)
        assert (t.width, t.height) == (300, 300)
        assert (t.offset_x, t.offset_y) == (0, 100)

    def test_fit_degenerate(self):
        assert DisplayTransform.fit(0, 100, 300, 300) == DisplayTransform()

    def test_locate_accounts_for_offset(self):
        t = DisplayTransform.fit(100, 100, 300, 500)
        grid = GridMapper(7)

        # top-left cell starts at the image offset, not at the canvas origin
        assert t.locate(grid, 1, 101) == 0
        assert t.locate(grid, 299, 399) == 48
        assert t.locate(grid, 150, 50) is None

    def test_locate_without_grid(self):
        assert DisplayTransform.fit(10, 10, 10, 10).locate(None, 5, 5) is None

    def test_interpolation_by_quality(self):
        assert set(INTERPOLATION) == {"low", "medium", "high"}
