"""Services package for backend and image I/O."""

from .http_client import BoundedRequestClient, BackendRequest, RequestResult, PendingRequest
from .model_catalog import ModelCatalogCache, model_catalog, model_supports_patch_attention, FALLBACK_CATALOG
from .image_service import ImageService
from .search_service import SearchService, validate_upload

__all__ = [
    "BoundedRequestClient", "BackendRequest", "RequestResult", "PendingRequest",
    "ModelCatalogCache", "model_catalog", "model_supports_patch_attention", "FALLBACK_CATALOG",
    "ImageService",
    "SearchService", "validate_upload",
]
