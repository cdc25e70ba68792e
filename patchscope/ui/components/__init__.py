"""Reusable UI widgets."""

from .patch_canvas import PatchCanvas, DisplayTransform
from .status_bar import StatusBar

__all__ = ["PatchCanvas", "DisplayTransform", "StatusBar"]
