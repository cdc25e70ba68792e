"""Status bar component."""

import tkinter as tk
from tkinter import ttk


class StatusBar(ttk.Frame):
    """Status bar showing application state."""

    def __init__(self, parent):
        super().__init__(parent)
        self._build_ui()

    def _build_ui(self):
        """Build the status bar UI."""
        # Main status label
        self.status_var = tk.StringVar(value="Ready")
        self.status_label = ttk.Label(self, textvariable=self.status_var)
        self.status_label.pack(side='left', padx=(0, 10))

        # Result count
        self.results_var = tk.StringVar(value="Results: 0")
        self.results_label = ttk.Label(self, textvariable=self.results_var)
        self.results_label.pack(side='left', padx=(0, 10))

        separator = ttk.Separator(self, orient='vertical')
        separator.pack(side='left', fill='y', padx=5)

        # Model info
        self.model_var = tk.StringVar(value="Model: --")
        self.model_label = ttk.Label(self, textvariable=self.model_var)
        self.model_label.pack(side='left')

        # Catalog notice (fallback models etc.)
        self.notice_var = tk.StringVar(value="")
        self.notice_label = ttk.Label(self, textvariable=self.notice_var, foreground='#b45309')
        self.notice_label.pack(side='right')

    def set_status(self, status: str):
        """Update the main status message."""
        self.status_var.set(status)

    def set_results(self, count: int):
        self.results_var.set(f"Results: {count}")

    def set_model_info(self, model_name: str):
        """Update the model information."""
        self.model_var.set(f"Model: {model_name}")

    def set_notice(self, notice: str):
        self.notice_var.set(notice or "")
