"""Main application window: upload, model selection, search and results."""

import logging
import os
import threading
import tkinter as tk
from concurrent.futures import ThreadPoolExecutor
from tkinter import filedialog, ttk
from typing import Any, Callable, List, Optional

from ..config.settings import Config
from ..core.analysis import build_correspondence_view, format_percent
from ..core.entities import SearchResult
from ..core.exceptions import ApplicationError, MalformedResponseError
from ..services.http_client import BoundedRequestClient
from ..services.image_service import ImageService
from ..services.model_catalog import CatalogLoadResult, model_catalog, model_supports_patch_attention
from ..services.search_service import SearchService, search_notice, validate_upload
from .components.patch_canvas import PatchCanvas
from .components.status_bar import StatusBar
from .correspondence_viewer import CorrespondenceViewer

logger = logging.getLogger(__name__)

IMAGE_FILETYPES = [("Images", "*.png *.jpg *.jpeg *.gif *.bmp *.webp"), ("All files", "*.*")]


def run_task(task: Callable[[], Any], deliver: Callable[[Any, Optional[str]], None], action: str) -> None:
    """Run ``task`` on a worker thread and hand ``deliver`` (value, error text).

    ``deliver`` is called exactly once, whatever ``task`` raises, so the
    window never stays stuck in its busy state.
    """
    try:
        value = task()
    except MalformedResponseError as e:
        logger.error(f"{action} returned malformed data: {e}")
        deliver(None, f"{action} failed: the backend returned incomplete data ({e})")
        return
    except ApplicationError as e:
        logger.error(f"{action} error: {e}")
        deliver(None, str(e))
        return
    except Exception as e:
        logger.exception(f"Unexpected {action.lower()} failure")
        deliver(None, f"{action} failed unexpectedly: {e}")
        return
    deliver(value, None)


class MainWindow:
    """Main application window."""

    # Theme definitions
    THEMES = {
        'Dark': {
            'bg_primary': '#1e1e1e',
            'bg_secondary': '#2d2d2d',
            'bg_tertiary': '#3c3c3c',
            'accent_primary': '#007acc',
            'accent_secondary': '#005a9e',
            'text_primary': '#ffffff',
            'text_secondary': '#cccccc',
            'text_muted': '#999999',
            'success': '#4caf50',
            'warning': '#ff9800',
            'error': '#f44336',
        },
    }

    def __init__(self, root: tk.Tk, config: Config):
        self.root = root
        self.config = config
        self.COLORS = self.THEMES['Dark']

        self.executor = ThreadPoolExecutor(max_workers=6, thread_name_prefix="patchscope")
        self.client = BoundedRequestClient(config.backend_url, executor=self.executor, dispatch=self._dispatch)
        self.image_service = ImageService(timeout=config.image_timeout, origin=config.image_origin,
                                          executor=self.executor, dispatch=self._dispatch)
        self.search_service = SearchService(self.client, timeout_ms=config.request_timeout * 1000,
                                            max_upload_bytes=config.max_upload_bytes, top_k=config.top_k)

        self.image_path: Optional[str] = None
        self.results: List[SearchResult] = []
        self.viewer: Optional[CorrespondenceViewer] = None
        self._busy = False
        self._closed = False

        self._setup_window()
        self._setup_styles()
        self._build_ui()

        self.status_bar.set_status("Loading models...")
        model_catalog.initialize(self.client, config.catalog_timeout_ms, self._on_catalog_ready)

    def _dispatch(self, func, *args):
        """Marshal a callback onto the Tk thread; dropped once the window closed."""
        if self._closed:
            return
        self.root.after(0, func, *args)

    # ----------------------------------------------------------------- setup

    def _setup_window(self):
        self.root.title("PatchScope - Visual Similarity Search")
        self.root.geometry(f"{self.config.window_width}x{self.config.window_height}")
        self.root.minsize(960, 640)
        self.root.configure(bg=self.COLORS['bg_primary'])
        self.root.grid_rowconfigure(1, weight=1)
        self.root.grid_columnconfigure(0, weight=1)

    def _setup_styles(self):
        """Setup custom styles for ttk widgets."""
        style = ttk.Style()
        style.theme_use('clam')

        style.configure('Modern.TButton',
                        background=self.COLORS['accent_primary'],
                        foreground=self.COLORS['text_primary'],
                        borderwidth=0,
                        focuscolor='none',
                        padding=(12, 8))
        style.map('Modern.TButton',
                  background=[('active', self.COLORS['accent_secondary']),
                              ('pressed', self.COLORS['accent_secondary']),
                              ('disabled', self.COLORS['bg_tertiary'])])

        style.configure('Secondary.TButton',
                        background=self.COLORS['bg_tertiary'],
                        foreground=self.COLORS['text_primary'],
                        borderwidth=1,
                        focuscolor='none',
                        padding=(10, 6))

    def _build_ui(self):
        """Build toolbar, content panels and status bar."""
        self._build_toolbar()
        self._build_main_content()
        self.status_bar = StatusBar(self.root)
        self.status_bar.grid(row=2, column=0, sticky='ew', padx=8, pady=4)

    def _build_toolbar(self):
        toolbar = tk.Frame(self.root, bg=self.COLORS['bg_secondary'])
        toolbar.grid(row=0, column=0, sticky='ew')

        ttk.Button(toolbar, text="Open image...", style='Secondary.TButton',
                   command=self._on_open_image).pack(side='left', padx=(16, 6), pady=12)

        tk.Label(toolbar, text="Model:", bg=self.COLORS['bg_secondary'],
                 fg=self.COLORS['text_secondary']).pack(side='left', padx=(12, 4))
        self.model_var = tk.StringVar(value=self.config.default_model)
        self.model_combo = ttk.Combobox(toolbar, textvariable=self.model_var, state='readonly', width=14)
        self.model_combo.pack(side='left')
        self.model_combo.bind('<<ComboboxSelected>>', lambda e: self._on_model_changed())
        self._populate_models(model_catalog.get())

        self.patch_attention_var = tk.BooleanVar(value=self.config.include_patch_attention)
        self.patch_attention_check = ttk.Checkbutton(toolbar, text="Patch attention",
                                                     variable=self.patch_attention_var)
        self.patch_attention_check.pack(side='left', padx=12)

        self.search_button = ttk.Button(toolbar, text="Search", style='Modern.TButton',
                                        command=self._on_search)
        self.search_button.pack(side='left', padx=6)

        self.model_description_var = tk.StringVar()
        tk.Label(toolbar, textvariable=self.model_description_var, bg=self.COLORS['bg_secondary'],
                 fg=self.COLORS['text_muted']).pack(side='left', padx=12)
        self._on_model_changed()

    def _build_main_content(self):
        content = tk.Frame(self.root, bg=self.COLORS['bg_primary'])
        content.grid(row=1, column=0, sticky='nsew', padx=8, pady=8)
        content.grid_rowconfigure(1, weight=1)
        content.grid_columnconfigure(0, weight=2)
        content.grid_columnconfigure(1, weight=3)

        self.file_var = tk.StringVar(value="No image selected")
        tk.Label(content, textvariable=self.file_var, bg=self.COLORS['bg_primary'],
                 fg=self.COLORS['text_secondary'], anchor='w').grid(row=0, column=0, sticky='ew')

        self.preview_canvas = PatchCanvas(content, render_quality=self.config.render_quality)
        self.preview_canvas.grid(row=1, column=0, sticky='nsew', padx=(0, 8))

        results_frame = tk.Frame(content, bg=self.COLORS['bg_primary'])
        results_frame.grid(row=0, column=1, rowspan=2, sticky='nsew')
        results_frame.grid_rowconfigure(1, weight=1)
        results_frame.grid_columnconfigure(0, weight=1)

        self.caption_var = tk.StringVar()
        tk.Label(results_frame, textvariable=self.caption_var, bg=self.COLORS['bg_primary'],
                 fg=self.COLORS['text_primary'], anchor='w', wraplength=600,
                 justify='left').grid(row=0, column=0, columnspan=2, sticky='ew')

        self.results_tree = ttk.Treeview(results_frame, columns=('score', 'patch', 'url'), show='headings')
        self.results_tree.heading('score', text='Similarity')
        self.results_tree.heading('patch', text='Patch similarity')
        self.results_tree.heading('url', text='Image URL')
        self.results_tree.column('score', width=90, stretch=False)
        self.results_tree.column('patch', width=120, stretch=False)
        self.results_tree.grid(row=1, column=0, sticky='nsew')
        self.results_tree.bind('<Double-1>', lambda e: self._on_analyze())

        scrollbar = ttk.Scrollbar(results_frame, orient='vertical', command=self.results_tree.yview)
        scrollbar.grid(row=1, column=1, sticky='ns')
        self.results_tree.configure(yscrollcommand=scrollbar.set)

        self.analyze_button = ttk.Button(results_frame, text="Analyze attention", style='Modern.TButton',
                                         command=self._on_analyze)
        self.analyze_button.grid(row=2, column=0, sticky='e', pady=(8, 0))

    # ---------------------------------------------------------------- models

    def _populate_models(self, catalog):
        self._catalog = catalog
        keys = list(catalog.keys())
        self.model_combo.configure(values=keys)
        if self.model_var.get() not in catalog and keys:
            self.model_var.set(keys[0])

    def _on_catalog_ready(self, result: CatalogLoadResult):
        self._populate_models(result.models)
        self._on_model_changed()
        self.status_bar.set_notice(result.notice or "")
        self.status_bar.set_status("Ready")

    def _on_model_changed(self):
        model = self.model_var.get()
        info = self._catalog.get(model)
        self.model_description_var.set(f"{info.display_name}: {info.description}" if info else "")
        if model_supports_patch_attention(model):
            self.patch_attention_check.state(['!disabled'])
        else:
            self.patch_attention_var.set(False)
            self.patch_attention_check.state(['disabled'])

    # ---------------------------------------------------------------- search

    def _on_open_image(self):
        path = filedialog.askopenfilename(parent=self.root, title="Select image", filetypes=IMAGE_FILETYPES)
        if not path:
            return
        try:
            validate_upload(path, self.config.max_upload_bytes)
        except ApplicationError as e:
            self.status_bar.set_status(str(e))
            return
        self.image_path = path
        self.file_var.set(os.path.basename(path))
        self.preview_canvas.clear()
        self.preview_canvas.attach_loader(self.image_service.load(path))
        self.status_bar.set_status("Image selected. Press Search.")

    def _set_busy(self, busy: bool, message: str = ""):
        self._busy = busy
        state = ['disabled'] if busy else ['!disabled']
        self.search_button.state(state)
        self.analyze_button.state(state)
        if message:
            self.status_bar.set_status(message)

    def _on_search(self):
        if self._busy:
            return
        if not self.image_path:
            self.status_bar.set_status("Please select an image first")
            return

        model = self.model_var.get()
        include_attention = self.patch_attention_var.get()
        self._set_busy(True, "Searching...")
        self.results_tree.delete(*self.results_tree.get_children())
        self.caption_var.set("")

        image_path = self.image_path
        threading.Thread(
            target=run_task,
            args=(lambda: self.search_service.search(image_path, model, include_attention),
                  lambda response, error: self._dispatch(self._on_search_done, response, error),
                  "Search"),
            daemon=True,
        ).start()

    def _on_search_done(self, response, error):
        self._set_busy(False)
        if error is not None:
            self.status_bar.set_status(error)
            return

        self.results = list(response.results)
        self.caption_var.set(response.caption)
        self.status_bar.set_model_info(response.embedding_model or self.model_var.get())
        self.status_bar.set_results(len(self.results))
        for i, result in enumerate(self.results):
            patch = format_percent(result.patch_attention.overall_similarity) if result.patch_attention else "-"
            self.results_tree.insert('', 'end', iid=str(i), values=(format_percent(result.score), patch, result.url))
        self.status_bar.set_status(search_notice(response) or "Select a result and press Analyze attention")

    # -------------------------------------------------------------- analysis

    def _on_analyze(self):
        selection = self.results_tree.selection()
        if self._busy or not selection or not self.image_path:
            return
        result = self.results[int(selection[0])]
        model = self.model_var.get()
        self._set_busy(True, "Analyzing patch attention...")

        image_path = self.image_path

        def analyze():
            analysis = self.search_service.analyze_attention(image_path, result.url, model)
            return build_correspondence_view(analysis)

        threading.Thread(
            target=run_task,
            args=(analyze,
                  lambda view, error: self._dispatch(self._on_analysis_done, result, view, error),
                  "Analysis"),
            daemon=True,
        ).start()

    def _on_analysis_done(self, result, view, error):
        self._set_busy(False)
        if error is not None:
            self.status_bar.set_status(error)
            return
        if self.viewer is not None:
            self.viewer.close()
        self.viewer = CorrespondenceViewer(
            self.root, view, self.image_path, view.analysis.candidate_url or result.url,
            self.image_service, self.COLORS,
            render_quality=self.config.render_quality,
            show_grid=self.config.show_grid,
            download_dir=self.config.download_dir,
            on_close=self._on_viewer_closed,
        )
        self.status_bar.set_status("Click query patches to see their best matches")

    def _on_viewer_closed(self):
        self.viewer = None

    def close(self):
        """Cancel in-flight work and release network resources."""
        self._closed = True
        self.client.close()
        self.image_service.close()
        self.executor.shutdown(wait=False, cancel_futures=True)
