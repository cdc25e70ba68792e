"""Embedding model discovery with a fixed fallback catalog.

The catalog is process-wide state. It is written in exactly one place,
:meth:`ModelCatalogCache.initialize`, once per session; everything else
reads it. When the backend is slow or unreachable the fallback catalog is
installed instead, so model selection never blocks the search workflow.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from ..core.entities import ModelInfo
from ..core.logging_config import CorrelationContext
from .http_client import BackendRequest, BoundedRequestClient, RequestResult

logger = logging.getLogger(__name__)

CATALOG_TIMEOUT_MS = 30000

FALLBACK_CATALOG: Mapping[str, ModelInfo] = MappingProxyType({
    "clip": ModelInfo(
        display_name="ViT-B-32",
        description="OpenAI CLIP model - good general purpose vision-language model",
    ),
    "dinov2": ModelInfo(
        display_name="dinov2_vitb14",
        description="Meta DINOv2 - self-supervised vision transformer, good for visual features",
    ),
    "siglip": ModelInfo(
        display_name="google/siglip-base-patch16-224",
        description="Google SigLIP - improved CLIP-like model with better training",
    ),
})

TIMEOUT_NOTICE = "Model loading timed out. Using defaults."
FAILURE_NOTICE = "Failed to load models. Using defaults."

MODELS_REQUEST = BackendRequest(method="GET", path="/models")


@dataclass(frozen=True)
class CatalogLoadResult:
    models: Mapping[str, ModelInfo]
    from_fallback: bool
    notice: Optional[str] = None


def parse_catalog(payload: Any) -> Mapping[str, ModelInfo]:
    """Build a catalog from ``{available_models, model_configs}``.

    Raises:
        ValueError: if the payload has no usable models.
    """
    if not isinstance(payload, Mapping):
        raise ValueError(f"Model catalog must be an object, got {type(payload).__name__}")

    available = payload.get("available_models") or []
    configs = payload.get("model_configs") or {}
    if not isinstance(available, list) or not isinstance(configs, Mapping):
        raise ValueError("Model catalog has unexpected field types")

    catalog = {}
    for key in available:
        if not isinstance(key, str) or not key:
            continue
        cfg = configs.get(key) if isinstance(configs.get(key), Mapping) else {}
        catalog[key] = ModelInfo(
            display_name=str(cfg.get("model_name") or key),
            description=str(cfg.get("description") or ""),
        )

    if not catalog:
        raise ValueError("Model catalog lists no models")
    return MappingProxyType(catalog)


def model_supports_patch_attention(model: str) -> bool:
    """Whether the backend can produce patch correspondences for ``model``."""
    normalized = (model or "").lower()
    return (
        normalized == "clip"
        or normalized == "siglip"
        or normalized.startswith("dinov2")
        or normalized.startswith("dinov3")
    )


class ModelCatalogCache:
    """Session-scoped cache of the model catalog."""

    def __init__(self):
        self._lock = threading.Lock()
        self._result: Optional[CatalogLoadResult] = None

    @property
    def is_initialized(self) -> bool:
        return self._result is not None

    @property
    def result(self) -> Optional[CatalogLoadResult]:
        return self._result

    def get(self) -> Mapping[str, ModelInfo]:
        """Current catalog, or the fallback before initialization."""
        result = self._result
        return result.models if result is not None else FALLBACK_CATALOG

    def initialize(self, client: BoundedRequestClient, timeout_ms: int = CATALOG_TIMEOUT_MS,
                   on_ready: Optional[Callable[[CatalogLoadResult], None]] = None) -> None:
        """Fetch the catalog in the background; ``on_ready`` receives the outcome.

        Only the first call of a session issues a request. Later calls
        report the cached outcome straight away.
        """
        with self._lock:
            cached = self._result
        if cached is not None:
            if on_ready is not None:
                on_ready(cached)
            return

        def _done(outcome: RequestResult) -> None:
            result = self._store(outcome)
            if on_ready is not None:
                on_ready(result)

        with CorrelationContext():
            client.submit(MODELS_REQUEST, timeout_ms, _done)

    def load(self, client: BoundedRequestClient, timeout_ms: int = CATALOG_TIMEOUT_MS) -> CatalogLoadResult:
        """Blocking variant of :meth:`initialize`."""
        with self._lock:
            if self._result is not None:
                return self._result
        with CorrelationContext():
            outcome = client.fetch_with_timeout(MODELS_REQUEST, timeout_ms)
        return self._store(outcome)

    def _store(self, outcome: RequestResult) -> CatalogLoadResult:
        if outcome.ok:
            try:
                result = CatalogLoadResult(models=parse_catalog(outcome.value), from_fallback=False)
                logger.info(f"Loaded {len(result.models)} embedding models from backend")
            except ValueError as e:
                logger.error(f"Invalid model catalog from backend: {e}")
                result = CatalogLoadResult(FALLBACK_CATALOG, True, FAILURE_NOTICE)
        elif outcome.timed_out:
            logger.warning(f"Model catalog request timed out: {outcome.error}")
            result = CatalogLoadResult(FALLBACK_CATALOG, True, TIMEOUT_NOTICE)
        else:
            logger.error(f"Failed to fetch models: {outcome.error}")
            result = CatalogLoadResult(FALLBACK_CATALOG, True, FAILURE_NOTICE)

        with self._lock:
            if self._result is None:
                self._result = result
            return self._result

    def reset(self) -> None:
        """End the session; the next initialize fetches again."""
        with self._lock:
            self._result = None


# Global catalog cache instance
model_catalog = ModelCatalogCache()
