"""Main entry point for PatchScope."""

import logging
import os
import sys
import tkinter as tk

from .config.settings import load_config
from .core.logging_config import configure_logging, logging_manager
from .ui.main_window import MainWindow

logger = logging.getLogger(__name__)


def setup_directories(config):
    """Ensure required directories exist."""
    for path in (config.download_dir, config.log_dir):
        os.makedirs(path, exist_ok=True)


def main():
    """Application entry point."""
    try:
        config = load_config()
        setup_directories(config)
        configure_logging(
            log_level=config.log_level,
            log_dir=config.log_dir,
            structured_logging=config.structured_logging,
        )

        root = tk.Tk()
        app = MainWindow(root, config)

        # Center window on screen
        root.update_idletasks()
        width = root.winfo_width()
        height = root.winfo_height()
        pos_x = (root.winfo_screenwidth() // 2) - (width // 2)
        pos_y = (root.winfo_screenheight() // 2) - (height // 2)
        root.geometry(f"{width}x{height}+{pos_x}+{pos_y}")

        def on_closing():
            try:
                app.close()
            finally:
                root.destroy()

        root.protocol("WM_DELETE_WINDOW", on_closing)

        logger.info(f"Starting PatchScope against {config.backend_url}")
        root.mainloop()

    except Exception as e:
        logger.exception(f"Failed to start application: {e}")
        return 1
    finally:
        logging_manager.shutdown()

    return 0


if __name__ == "__main__":
    sys.exit(main())
