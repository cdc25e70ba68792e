"""Configuration dataclass and loading utilities.

Provides a strongly-typed configuration object that is injected into the
services and windows instead of a global module-level dictionary.
Precedence, lowest first: built-in defaults, ``config.json``, environment.
"""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional
import json, os, logging
from .defaults import DEFAULT_CONFIG
from .env_config import load_environment_config, EnvironmentConfig

logger = logging.getLogger(__name__)

RENDER_QUALITIES = ('low', 'medium', 'high')

NUMERIC_RANGES = {
    'request_timeout': (5, 600),
    'catalog_timeout_ms': (100, 120000),
    'image_timeout': (1, 300),
    'max_upload_mb': (1, 100),
    'top_k': (1, 50),
    'window_width': (640, 7680),
    'window_height': (480, 4320),
}


@dataclass(slots=True)
class Config:
    # Backend
    backend_url: str = DEFAULT_CONFIG["backend_url"]
    request_timeout: int = DEFAULT_CONFIG["request_timeout"]
    catalog_timeout_ms: int = DEFAULT_CONFIG["catalog_timeout_ms"]
    image_timeout: int = DEFAULT_CONFIG["image_timeout"]
    image_origin: str = DEFAULT_CONFIG["image_origin"]

    # Search
    default_model: str = DEFAULT_CONFIG["default_model"]
    include_patch_attention: bool = DEFAULT_CONFIG["include_patch_attention"]
    max_upload_mb: int = DEFAULT_CONFIG["max_upload_mb"]
    top_k: int = DEFAULT_CONFIG["top_k"]
    download_dir: str = DEFAULT_CONFIG["download_dir"]

    # Display
    render_quality: str = DEFAULT_CONFIG["render_quality"]
    show_grid: bool = DEFAULT_CONFIG["show_grid"]
    window_width: int = DEFAULT_CONFIG["window_width"]
    window_height: int = DEFAULT_CONFIG["window_height"]

    # Debug and logging
    debug: bool = DEFAULT_CONFIG["debug"]
    log_level: str = DEFAULT_CONFIG["log_level"]
    log_dir: str = DEFAULT_CONFIG["log_dir"]
    structured_logging: bool = DEFAULT_CONFIG["structured_logging"]

    # Arbitrary extra values retained for forward compatibility
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        extra = d.pop("extra", {})
        d.update(extra)
        return d

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, self.extra.get(key, default))

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


def load_config(path: str = "config.json", env_file: Optional[str] = None) -> Config:
    """Load configuration from a JSON file, then apply environment overrides.

    Any problem with the file (missing, unreadable, not a JSON object) is
    logged and the defaults are used instead.
    """
    data: Dict[str, Any] = {}

    if os.path.isfile(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded_data = json.load(f)
            if not isinstance(loaded_data, dict):
                logger.error(f"Configuration file '{path}' does not contain a JSON object, using defaults")
            else:
                data = loaded_data
                logger.info(f"Loaded configuration from '{path}'")
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON configuration file '{path}': {e}. Using defaults.")
        except OSError as e:
            logger.error(f"Could not read configuration file '{path}': {e}. Using defaults.")
    else:
        logger.info(f"Configuration file '{path}' does not exist. Using defaults.")

    merged = {**DEFAULT_CONFIG, **data}
    merged = _apply_environment_overrides(merged, load_environment_config(env_file))
    merged = _sanitize_config_values(merged)

    known = [k for k in Config.__dataclass_fields__ if k != 'extra']
    extra = {k: v for k, v in merged.items() if k not in known}
    if extra:
        logger.info(f"Found extra configuration keys: {list(extra.keys())}")

    return Config(**{k: merged[k] for k in known}, extra=extra)


def save_config(cfg: Config, path: str = "config.json") -> None:
    """Save configuration to a JSON file, keeping a backup until it succeeds."""
    backup_path = f"{path}.backup"
    try:
        if os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as src, \
                        open(backup_path, "w", encoding="utf-8") as dst:
                    dst.write(src.read())
            except OSError as e:
                logger.warning(f"Failed to create configuration backup: {e}")

        with open(path, "w", encoding="utf-8") as f:
            json.dump(cfg.to_dict(), f, indent=2, ensure_ascii=False)
        logger.info(f"Configuration saved to '{path}'")

        if os.path.exists(backup_path):
            os.remove(backup_path)

    except OSError as e:
        logger.error(f"Failed to save configuration file '{path}': {e}")


def _apply_environment_overrides(config_dict: Dict[str, Any], env_config: EnvironmentConfig) -> Dict[str, Any]:
    """Apply validated environment values on top of the file/default values."""
    overrides = {
        "backend_url": env_config.backend_url,
        "request_timeout": env_config.request_timeout,
        "catalog_timeout_ms": env_config.catalog_timeout_ms,
        "default_model": env_config.default_model,
        "download_dir": env_config.download_dir,
    }
    for key, value in overrides.items():
        if value is not None:
            config_dict[key] = value

    if env_config.debug_logging:
        config_dict["debug"] = True
        config_dict["log_level"] = "DEBUG"

    return config_dict


def _sanitize_config_values(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Replace out-of-range or mistyped values with their defaults."""
    sanitized = config_dict.copy()

    for key, (min_val, max_val) in NUMERIC_RANGES.items():
        value = sanitized.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not (min_val <= value <= max_val):
            if value != DEFAULT_CONFIG[key]:
                logger.warning(f"Value {key}={value!r} invalid or out of range [{min_val}, {max_val}], using default")
            sanitized[key] = DEFAULT_CONFIG[key]

    if not isinstance(sanitized.get("backend_url"), str) or not sanitized["backend_url"].strip():
        logger.warning("backend_url is empty, using default")
        sanitized["backend_url"] = DEFAULT_CONFIG["backend_url"]
    sanitized["backend_url"] = sanitized["backend_url"].strip().rstrip('/')

    if sanitized.get("render_quality") not in RENDER_QUALITIES:
        logger.warning(f"Unknown render_quality {sanitized.get('render_quality')!r}, using default")
        sanitized["render_quality"] = DEFAULT_CONFIG["render_quality"]

    if not isinstance(sanitized.get("default_model"), str) or not sanitized["default_model"].strip():
        sanitized["default_model"] = DEFAULT_CONFIG["default_model"]

    for key in ("include_patch_attention", "show_grid", "debug", "structured_logging"):
        if not isinstance(sanitized.get(key), bool):
            logger.warning(f"Setting '{key}' must be true/false, using default")
            sanitized[key] = DEFAULT_CONFIG[key]

    return sanitized
