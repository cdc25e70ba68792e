"""Side-by-side patch correspondence viewer."""

import logging
import os
import threading
import tkinter as tk
from tkinter import filedialog, messagebox, ttk
from typing import Callable, Optional

from ..core.analysis import (
    CorrespondenceView, match_detail_rows, raw_score_rows, score_statistics, summarize_analysis,
)
from ..core.entities import PatchSide
from ..core.exceptions import ApplicationError
from ..core.selection import SelectionController
from ..services.image_service import ImageService
from .components.patch_canvas import PatchCanvas
from .overlay import BAND_HUES, OverlayRenderer, hsla, to_hex

logger = logging.getLogger(__name__)


class CorrespondenceViewer(tk.Toplevel):
    """Toplevel window linking query patch selection to candidate matches.

    Clicking a query patch toggles it; the candidate image then shows the
    ten best matches across all selected patches, ranked and colored by
    quality band. All state lives in the SelectionController, and every
    change redraws both overlays from it.
    """

    def __init__(self, master, view: CorrespondenceView, query_source: str, candidate_source: str,
                 image_service: ImageService, colors: dict, render_quality: str = 'medium',
                 show_grid: bool = True, download_dir: str = 'downloads',
                 on_close: Optional[Callable[[], None]] = None):
        super().__init__(master)
        self.view = view
        self.image_service = image_service
        self.COLORS = colors
        self.download_dir = download_dir
        self._on_close_callback = on_close
        self._query_source = query_source
        self._candidate_source = candidate_source

        self.selection = SelectionController(view.store)
        self.selection.add_listener(self._refresh)

        self.title("Patch Correspondence Analysis")
        self.geometry("1200x820")
        self.minsize(900, 640)
        self.configure(bg=self.COLORS['bg_primary'])
        self.protocol("WM_DELETE_WINDOW", self.close)

        self._build_ui(render_quality, show_grid)

        self.query_loader = image_service.load(query_source)
        self.query_canvas.attach_loader(self.query_loader)
        self.candidate_loader = image_service.load(candidate_source)
        self.candidate_canvas.attach_loader(self.candidate_loader)

        self._refresh()

    # -------------------------------------------------------------------- UI

    def _build_ui(self, render_quality: str, show_grid: bool):
        self.grid_rowconfigure(2, weight=1)
        self.grid_columnconfigure(0, weight=1)

        header = tk.Frame(self, bg=self.COLORS['bg_secondary'])
        header.grid(row=0, column=0, sticky='ew')

        self.counter_var = tk.StringVar()
        tk.Label(header, textvariable=self.counter_var, bg=self.COLORS['bg_secondary'],
                 fg=self.COLORS['text_primary'], font=('Segoe UI', 10, 'bold')).pack(side='left', padx=12, pady=8)

        ttk.Button(header, text="Clear selection", style='Secondary.TButton',
                   command=self.selection.clear).pack(side='left', padx=4)
        ttk.Button(header, text="Export overlay", style='Secondary.TButton',
                   command=self._export_overlay).pack(side='left', padx=4)

        visuals = self.view.analysis.visualizations
        if visuals is not None:
            if visuals.attention_heatmap:
                ttk.Button(header, text="Save heatmap", style='Secondary.TButton',
                           command=lambda: self._download(visuals.attention_heatmap, "attention_heatmap.png")
                           ).pack(side='right', padx=4)
            if visuals.top_correspondences:
                ttk.Button(header, text="Save correspondences", style='Secondary.TButton',
                           command=lambda: self._download(visuals.top_correspondences, "top_correspondences.png")
                           ).pack(side='right', padx=4)

        self.notice_var = tk.StringVar(value="\n".join(self.view.notices))
        tk.Label(self, textvariable=self.notice_var, bg=self.COLORS['bg_primary'], fg=self.COLORS['warning'],
                 justify='left', anchor='w', wraplength=1100).grid(row=1, column=0, sticky='ew', padx=12)

        images = tk.Frame(self, bg=self.COLORS['bg_primary'])
        images.grid(row=2, column=0, sticky='nsew', padx=8, pady=8)
        images.grid_rowconfigure(1, weight=1)
        images.grid_columnconfigure((0, 1), weight=1, uniform='side')

        for col, text in enumerate(("Query image (click patches)", "Candidate image (top matches)")):
            tk.Label(images, text=text, bg=self.COLORS['bg_primary'],
                     fg=self.COLORS['text_secondary']).grid(row=0, column=col, sticky='w')

        self.query_canvas = PatchCanvas(
            images, render_quality=render_quality, show_grid=show_grid,
            on_patch_click=self.selection.toggle,
            on_patch_hover=self._on_query_hover,
        )
        self.query_canvas.grid(row=1, column=0, sticky='nsew', padx=(0, 4))
        self.candidate_canvas = PatchCanvas(images, render_quality=render_quality, show_grid=show_grid)
        self.candidate_canvas.grid(row=1, column=1, sticky='nsew', padx=(4, 0))

        details = tk.Frame(self, bg=self.COLORS['bg_primary'])
        details.grid(row=3, column=0, sticky='ew', padx=8, pady=(0, 8))
        details.grid_columnconfigure((0, 1), weight=1)

        self.matches_tree = ttk.Treeview(details, columns=('mapping', 'similarity'), height=8)
        self.matches_tree.heading('#0', text='Rank')
        self.matches_tree.heading('mapping', text='Patches')
        self.matches_tree.heading('similarity', text='Similarity')
        self.matches_tree.column('#0', width=90, stretch=False)
        for band, hue in BAND_HUES.items():
            self.matches_tree.tag_configure(band, foreground=to_hex(hsla(hue, 0.7, 0.4, 1.0)))
        self.matches_tree.grid(row=0, column=0, sticky='nsew', padx=(0, 4))

        self.summary_text = tk.Text(details, height=10, wrap='word', bg=self.COLORS['bg_secondary'],
                                    fg=self.COLORS['text_primary'], relief='flat')
        self.summary_text.grid(row=0, column=1, sticky='nsew', padx=(4, 0))
        self._fill_summary()

    def _fill_summary(self):
        summary = summarize_analysis(self.view.analysis)
        lines = [f"{k}: {v}" for k, v in summary["overview"].items()]
        lines.append("")
        lines.extend(f"{k}: {v}" for k, v in summary["statistics"].items())
        if summary["preview"]:
            lines.append("")
            lines.append("Top correspondences:")
            lines.extend(summary["preview"])

        if not self.view.grid_enabled:
            stats = score_statistics(self.view.store)
            lines.append("")
            lines.append(f"Raw scores ({stats['count']} values, mean {stats['mean']:.3f}):")
            lines.extend(raw_score_rows(self.view.store))

        self.summary_text.insert('1.0', "\n".join(lines))
        self.summary_text.configure(state='disabled')

    # ----------------------------------------------------------------- state

    def _on_query_hover(self, index):
        if index is None:
            self.selection.clear_hover()
        else:
            self.selection.set_hover(PatchSide.QUERY, index)

    def _refresh(self, selection=None):
        ranked = self.selection.ranked_matches()
        self.counter_var.set(f"Selected: {len(self.selection.selected)}  |  Top matches: {len(ranked)}")

        self.query_canvas.set_overlay(self.view.query_grid, self.selection.highlights_for(PatchSide.QUERY))
        self.candidate_canvas.set_overlay(self.view.candidate_grid,
                                          self.selection.highlights_for(PatchSide.CANDIDATE))

        self.matches_tree.delete(*self.matches_tree.get_children())
        for row in match_detail_rows(ranked, self.view.store):
            self.matches_tree.insert('', 'end', text=row.rank_label,
                                     values=(row.mapping_label, row.similarity_label), tags=(row.band,))

    # --------------------------------------------------------------- actions

    def _export_overlay(self):
        loader = self.candidate_loader
        if not loader.is_loaded:
            messagebox.showinfo("Export overlay", "The candidate image has not loaded yet.", parent=self)
            return
        path = filedialog.asksaveasfilename(parent=self, defaultextension='.png',
                                            initialfile='candidate_matches.png',
                                            filetypes=[('PNG image', '*.png')])
        if not path:
            return
        OverlayRenderer().export(loader.image.image, self.view.candidate_grid,
                                 self.selection.highlights_for(PatchSide.CANDIDATE), path,
                                 show_grid=self.candidate_canvas.show_grid)
        self.notice_var.set(f"Overlay saved to {path}")

    def _download(self, source: str, filename: str):
        def worker():
            try:
                target = self.image_service.download(source, self.download_dir, filename)
                message = f"Saved {os.path.basename(str(target))} to {self.download_dir}"
            except ApplicationError as e:
                logger.error(f"Visualization download failed: {e}")
                message = f"Could not save {filename}: {e}"
            self.after(0, self.notice_var.set, message)

        threading.Thread(target=worker, daemon=True).start()

    def close(self):
        """Reset selection and destroy the window."""
        self.selection.reset()
        if self._on_close_callback:
            self._on_close_callback()
        self.destroy()
