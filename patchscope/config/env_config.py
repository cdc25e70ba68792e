"""Environment variable configuration.

Values from the process environment (or a ``.env`` file) take precedence
over ``config.json``. Every value is validated before it is used; an
invalid value is reported and replaced by the default rather than
silently accepted.
"""
import os
import logging
from typing import Callable, Optional, Dict, TypeVar, Union
from pathlib import Path, PurePath
from dataclasses import dataclass
from urllib.parse import urlparse

from ..core.exceptions import ConfigError
from .defaults import DEFAULT_CONFIG

logger = logging.getLogger(__name__)

TRUE_VALUES = ('true', '1', 'yes', 'on')
SHELL_METACHARACTERS = frozenset('~$`;|&<>"\'')

T = TypeVar('T')


@dataclass(frozen=True)
class EnvironmentConfig:
    """Overrides taken from the environment; ``None`` means not set."""

    backend_url: Optional[str] = None
    request_timeout: Optional[int] = None
    catalog_timeout_ms: Optional[int] = None
    default_model: Optional[str] = None
    download_dir: Optional[str] = None
    debug_logging: bool = False


class EnvironmentValueError(ConfigError):
    """An environment variable holds an unusable value."""


class EnvironmentValidator:
    """Validates environment variable values."""

    @classmethod
    def validate_url(cls, url: str) -> str:
        """Return ``url`` without a trailing slash.

        Raises:
            EnvironmentValueError: If the value is not an http(s) URL
        """
        url = url.strip()
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise EnvironmentValueError(f"Not an http(s) URL: {url!r}")
        return url.rstrip('/')

    @classmethod
    def validate_model_key(cls, model: str) -> str:
        model = model.strip().lower()
        if not model or not all(ch.isalnum() or ch in '-_.' for ch in model):
            raise EnvironmentValueError(f"Invalid model key: {model!r}")
        return model

    @classmethod
    def sanitize_path(cls, path: str) -> str:
        """Normalize a relative or absolute directory path.

        Raises:
            EnvironmentValueError: On parent-directory segments or shell
                metacharacters
        """
        if not path or not path.strip():
            raise EnvironmentValueError("Path cannot be empty")
        if '..' in PurePath(path).parts:
            raise EnvironmentValueError(f"Path may not leave its base directory: {path!r}")
        bad = sorted(SHELL_METACHARACTERS.intersection(path))
        if bad:
            raise EnvironmentValueError(f"Path contains {''.join(bad)!r}: {path!r}")
        return os.path.normpath(path)

    @classmethod
    def validate_numeric_range(cls, value: Union[str, int, float],
                               min_val: Optional[Union[int, float]] = None,
                               max_val: Optional[Union[int, float]] = None,
                               value_type: Callable[[str], T] = int) -> T:
        """Convert ``value`` and check it against inclusive bounds.

        Raises:
            EnvironmentValueError: If conversion or the bounds check fails
        """
        try:
            number = value_type(value)
        except (ValueError, TypeError):
            raise EnvironmentValueError(f"Expected a number, got {value!r}")

        too_low = min_val is not None and number < min_val
        too_high = max_val is not None and number > max_val
        if too_low or too_high:
            raise EnvironmentValueError(f"{number} is outside [{min_val}, {max_val}]")
        return number


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in '"\'':
        return value[1:-1]
    return value


def load_env_file(env_path: Optional[str] = None) -> Dict[str, str]:
    """Parse ``KEY=VALUE`` lines from a .env file (defaults to ./.env).

    Blank lines and ``#`` comments are skipped; surrounding quotes are
    removed from values. A missing file yields an empty dict.
    """
    path = Path(env_path or ".env")
    if not path.is_file():
        logger.debug(f"No environment file at {path}")
        return {}

    try:
        lines = path.read_text(encoding='utf-8').splitlines()
    except OSError as e:
        logger.error(f"Error reading environment file {path}: {e}")
        return {}

    env_vars: Dict[str, str] = {}
    for line_num, raw in enumerate(lines, 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue
        key, sep, value = line.partition('=')
        if not sep or not key.strip():
            logger.warning(f"Skipping malformed line {path}:{line_num}")
            continue
        env_vars[key.strip()] = _unquote(value.strip())

    logger.info(f"Loaded {len(env_vars)} variables from {path}")
    return env_vars


def get_env_var(key: str, default: Optional[str] = None,
                env_vars: Optional[Dict[str, str]] = None) -> Optional[str]:
    """Get an environment variable, preferring values from the .env file."""
    if env_vars and key in env_vars:
        return env_vars[key]
    return os.getenv(key, default)


def load_environment_config(env_file_path: Optional[str] = None) -> EnvironmentConfig:
    """Load and validate environment configuration.

    Invalid values are logged and dropped so that ``config.json`` or the
    defaults apply instead.
    """
    env_vars = load_env_file(env_file_path)
    validator = EnvironmentValidator

    def checked(key: str, check: Callable[[str], T]) -> Optional[T]:
        raw = get_env_var(key, env_vars=env_vars)
        if raw is None or not raw.strip():
            return None
        try:
            return check(raw)
        except EnvironmentValueError as e:
            logger.warning(f"Ignoring {key}: {e}")
            return None

    debug_flag = get_env_var("DEBUG_LOGGING", "false", env_vars=env_vars) or ""
    config = EnvironmentConfig(
        backend_url=checked("PATCHSCOPE_BACKEND_URL", validator.validate_url),
        request_timeout=checked(
            "PATCHSCOPE_REQUEST_TIMEOUT",
            lambda v: validator.validate_numeric_range(v, 5, 600)),
        catalog_timeout_ms=checked(
            "PATCHSCOPE_CATALOG_TIMEOUT_MS",
            lambda v: validator.validate_numeric_range(v, 100, 120000)),
        default_model=checked("PATCHSCOPE_DEFAULT_MODEL", validator.validate_model_key),
        download_dir=checked("PATCHSCOPE_DOWNLOAD_DIR", validator.sanitize_path),
        debug_logging=debug_flag.strip().lower() in TRUE_VALUES,
    )

    if config.backend_url and config.backend_url != DEFAULT_CONFIG["backend_url"]:
        logger.info(f"Backend URL overridden from environment: {config.backend_url}")

    return config


__all__ = [
    "EnvironmentConfig",
    "EnvironmentValueError",
    "EnvironmentValidator",
    "load_environment_config",
    "load_env_file",
    "get_env_var",
]
