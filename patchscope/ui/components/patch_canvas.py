"""Canvas that shows one image of a pair with its patch overlay."""

import logging
import tkinter as tk
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import cv2
import numpy as np
from PIL import Image, ImageTk

from ...core.entities import PatchHighlight, PatchIndex
from ...core.grid import GridMapper
from ...core.image_loader import (
    PLACEHOLDER_DETAIL, PLACEHOLDER_TITLE, ImageLoadState, ResilientImageLoader,
)
from ...services.image_service import to_rgb_array
from ..overlay import OverlayRenderer, TkCanvasSurface

logger = logging.getLogger(__name__)

INTERPOLATION = {
    'high': cv2.INTER_LANCZOS4,
    'medium': cv2.INTER_LINEAR,
    'low': cv2.INTER_NEAREST,
}


@dataclass
class DisplayTransform:
    """Where the scaled image sits on the canvas."""
    scale: float = 1.0
    offset_x: int = 0
    offset_y: int = 0
    width: int = 0
    height: int = 0

    @classmethod
    def fit(cls, image_w: int, image_h: int, canvas_w: int, canvas_h: int) -> "DisplayTransform":
        """Scale to fit the canvas, keeping the aspect ratio, and center."""
        if image_w <= 0 or image_h <= 0 or canvas_w <= 0 or canvas_h <= 0:
            return cls()
        scale = min(canvas_w / image_w, canvas_h / image_h)
        new_w = max(1, int(image_w * scale))
        new_h = max(1, int(image_h * scale))
        return cls(scale, (canvas_w - new_w) // 2, (canvas_h - new_h) // 2, new_w, new_h)

    def locate(self, grid: Optional[GridMapper], canvas_x: float, canvas_y: float) -> Optional[PatchIndex]:
        """Patch under a canvas point, or None outside the image."""
        if grid is None:
            return None
        return grid.pixel_to_index(canvas_x - self.offset_x, canvas_y - self.offset_y,
                                   self.width, self.height)


class PatchCanvas(tk.Canvas):
    """Image canvas with grid overlay, hit testing and load-state display."""

    def __init__(self, master, **kwargs):
        """Initialize patch canvas.

        Args:
            master: Parent widget
            **kwargs: Canvas configuration plus ``render_quality``,
                ``show_grid``, ``on_patch_click`` and ``on_patch_hover``
        """
        self._render_quality = kwargs.pop('render_quality', 'medium')
        self.show_grid = kwargs.pop('show_grid', True)
        self._on_patch_click: Optional[Callable[[PatchIndex], None]] = kwargs.pop('on_patch_click', None)
        self._on_patch_hover: Optional[Callable[[Optional[PatchIndex]], None]] = kwargs.pop('on_patch_hover', None)
        kwargs.setdefault('highlightthickness', 0)
        kwargs.setdefault('bg', '#1f2937')

        super().__init__(master, **kwargs)

        self._current_image: Optional[ImageTk.PhotoImage] = None
        self._image_id: Optional[int] = None
        self._last_image_array: Optional[np.ndarray] = None
        self._transform = DisplayTransform()

        self._grid: Optional[GridMapper] = None
        self._highlights: Sequence[PatchHighlight] = ()
        self._hover_index: Optional[PatchIndex] = None
        self._renderer = OverlayRenderer()
        self._surface = TkCanvasSurface(self)

        self.bind('<Configure>', self._on_resize)
        self.bind('<Motion>', self._on_motion)
        self.bind('<Leave>', self._on_leave)
        self.bind('<Button-1>', self._on_click)

    # ---------------------------------------------------------------- images

    def display_image(self, image):
        """Display a PIL image or RGB array scaled to the canvas."""
        array = to_rgb_array(image) if isinstance(image, Image.Image) else image
        if array is None or array.size == 0:
            return
        self._last_image_array = array
        self.delete('status')

        canvas_width = self.winfo_width()
        canvas_height = self.winfo_height()
        if canvas_width <= 1 or canvas_height <= 1:
            # Canvas not yet sized, defer display
            self.after(50, lambda: self.display_image(array))
            return

        h, w = array.shape[:2]
        self._transform = DisplayTransform.fit(w, h, canvas_width, canvas_height)
        t = self._transform

        if (t.width, t.height) != (w, h):
            array = cv2.resize(array, (t.width, t.height), interpolation=INTERPOLATION[self._render_quality])

        photo = ImageTk.PhotoImage(image=Image.fromarray(array))
        if self._image_id is None:
            self._image_id = self.create_image(t.offset_x, t.offset_y, anchor=tk.NW, image=photo)
        else:
            self.coords(self._image_id, t.offset_x, t.offset_y)
            self.itemconfig(self._image_id, image=photo)
        # Keep reference to prevent garbage collection
        self._current_image = photo

        self._surface.place(t.offset_x, t.offset_y, t.width, t.height)
        self.redraw_overlay()

    def show_loading(self, message: str = "Loading image..."):
        self._clear_image()
        self.create_text(self.winfo_width() // 2, self.winfo_height() // 2, text=message,
                         fill='#9ca3af', font=('Segoe UI', 10), tags=('status',))

    def show_placeholder(self):
        """Failure placeholder; the canvas stays usable for a later image."""
        self._clear_image()
        cx, cy = self.winfo_width() // 2, self.winfo_height() // 2
        self.create_text(cx, cy - 10, text=PLACEHOLDER_TITLE, fill='#e5e7eb',
                         font=('Segoe UI', 11, 'bold'), tags=('status',))
        self.create_text(cx, cy + 12, text=PLACEHOLDER_DETAIL, fill='#9ca3af',
                         font=('Segoe UI', 9), tags=('status',))

    def attach_loader(self, loader: ResilientImageLoader):
        """Follow a loader: spinner text while loading, image or placeholder after."""
        loader.add_listener(self._on_loader_change)
        self._on_loader_change(loader)

    def _on_loader_change(self, loader: ResilientImageLoader):
        if not self.winfo_exists():
            return
        if loader.state in (ImageLoadState.LOADING, ImageLoadState.RETRYING_STRICT):
            self.show_loading("Retrying image..." if loader.state is ImageLoadState.RETRYING_STRICT
                              else "Loading image...")
        elif loader.state is ImageLoadState.FAILED:
            self.show_placeholder()
        elif loader.image is not None:
            self.display_image(loader.image.image)

    def _clear_image(self):
        self.delete('status')
        self._surface.clear()
        if self._image_id is not None:
            self.delete(self._image_id)
            self._image_id = None
        self._current_image = None
        self._last_image_array = None
        self._transform = DisplayTransform()

    def clear(self):
        """Clear image, overlay and transformation info."""
        self._clear_image()
        self._grid = None
        self._highlights = ()
        self._hover_index = None

    # --------------------------------------------------------------- overlay

    def set_overlay(self, grid: Optional[GridMapper], highlights: Sequence[PatchHighlight]):
        self._grid = grid
        self._highlights = tuple(highlights)
        self.redraw_overlay()

    def redraw_overlay(self):
        if self._image_id is None:
            return
        self._renderer.render(self._surface, self._grid, self._highlights, self.show_grid)

    # ---------------------------------------------------------------- events

    def _on_resize(self, event):
        if self._last_image_array is not None:
            self.display_image(self._last_image_array)

    def _on_motion(self, event):
        index = self._transform.locate(self._grid, event.x, event.y) if self._image_id else None
        if index != self._hover_index:
            self._hover_index = index
            self.configure(cursor='hand2' if index is not None else '')
            if self._on_patch_hover:
                self._on_patch_hover(index)

    def _on_leave(self, event):
        if self._hover_index is not None:
            self._hover_index = None
            self.configure(cursor='')
            if self._on_patch_hover:
                self._on_patch_hover(None)

    def _on_click(self, event):
        if self._image_id is None or self._on_patch_click is None:
            return
        index = self._transform.locate(self._grid, event.x, event.y)
        if index is not None:
            self._on_patch_click(index)
