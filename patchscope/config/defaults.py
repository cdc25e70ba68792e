"""Default configuration values."""

from typing import Any, Dict

DEFAULT_CONFIG: Dict[str, Any] = {
    # Backend
    "backend_url": "https://onurcopur-tattoo-search-engine.hf.space",
    "request_timeout": 120,  # seconds, search and attention analysis
    "catalog_timeout_ms": 30000,
    "image_timeout": 20,  # seconds per image attempt
    "image_origin": "http://localhost",

    # Search
    "default_model": "clip",
    "include_patch_attention": False,
    "max_upload_mb": 10,
    "top_k": 10,
    "download_dir": "downloads",

    # Display
    "render_quality": "medium",  # low, medium, high
    "show_grid": True,
    "window_width": 1280,
    "window_height": 860,

    # Debug and Logging Settings
    "debug": False,
    "log_level": "INFO",
    "log_dir": "logs",
    "structured_logging": False,
}
