"""Similarity search and per-pair attention analysis against the backend."""
from __future__ import annotations

import logging
import mimetypes
import os
from dataclasses import replace
from typing import Any, Dict, Optional, Tuple

from ..core.analysis import parse_analysis, parse_search_response
from ..core.correspondence import TOP_MATCH_LIMIT
from ..core.entities import DetailedAttentionAnalysis, SearchResponse
from ..core.exceptions import MalformedResponseError, ServiceError, ValidationError
from ..core.logging_config import CorrelationContext
from .http_client import BackendRequest, BoundedRequestClient
from .image_service import SUPPORTED_IMAGE_EXTENSIONS
from .model_catalog import model_supports_patch_attention

logger = logging.getLogger(__name__)

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
EMPTY_RESULTS_NOTICE = "No similar images found. Try a different image."


def validate_upload(path: str, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> Tuple[str, str]:
    """Check that ``path`` is a readable image no larger than ``max_bytes``.

    Returns:
        (filename, mime type) for the multipart upload.

    Raises:
        ValidationError: with a message suitable for the status bar.
    """
    if not path or not os.path.isfile(path):
        raise ValidationError("Please select an image first")

    filename = os.path.basename(path)
    mime, _ = mimetypes.guess_type(filename)
    ext = os.path.splitext(filename)[1].lower()
    if ext not in SUPPORTED_IMAGE_EXTENSIONS and not (mime or "").startswith("image/"):
        raise ValidationError(f"'{filename}' is not an image file")

    size = os.path.getsize(path)
    if size > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        raise ValidationError(f"'{filename}' is {size / (1024 * 1024):.1f} MB; the limit is {limit_mb:g} MB")

    return filename, mime or "application/octet-stream"


def search_notice(response: SearchResponse) -> Optional[str]:
    """User-facing text for a search that returned nothing."""
    return EMPTY_RESULTS_NOTICE if not response.results else None


class SearchService:
    """Blocking search/analysis calls; run them off the Tk thread."""

    def __init__(self, client: BoundedRequestClient, timeout_ms: int = 120000,
                 max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES, top_k: int = TOP_MATCH_LIMIT):
        self.client = client
        self.timeout_ms = timeout_ms
        self.max_upload_bytes = max_upload_bytes
        self.top_k = top_k

    def _upload(self, field_name: str, image_path: str) -> Dict[str, Any]:
        filename, mime = validate_upload(image_path, self.max_upload_bytes)
        with open(image_path, "rb") as f:
            data = f.read()
        return {field_name: (filename, data, mime)}

    def _call(self, request: BackendRequest, prefix: str) -> Any:
        result = self.client.fetch_with_timeout(request, self.timeout_ms)
        if not result.ok:
            raise ServiceError(f"{prefix}: {result.error}") from result.error
        return result.value

    def search(self, image_path: str, model: str, include_patch_attention: bool = False) -> SearchResponse:
        """Upload ``image_path`` and return the ranked similar images."""
        if include_patch_attention and not model_supports_patch_attention(model):
            logger.info(f"Model '{model}' has no patch attention support, disabling it")
            include_patch_attention = False

        with CorrelationContext():
            request = BackendRequest(
                method="POST",
                path="/search",
                params={
                    "embedding_model": model,
                    "include_patch_attention": str(include_patch_attention).lower(),
                },
                files=self._upload("file", image_path),
            )
            logger.info(f"Searching with model '{model}' for {os.path.basename(image_path)}")
            payload = self._call(request, "Search failed")
            try:
                response = parse_search_response(payload)
            except MalformedResponseError as e:
                raise ServiceError(f"Search failed: {e}") from e

            logger.info(f"Search returned {len(response.results)} results")
            return response

    def analyze_attention(self, image_path: str, candidate_url: str, model: str,
                          include_visualizations: bool = True) -> DetailedAttentionAnalysis:
        """Patch-level analysis of the query image against one candidate.

        Malformed analysis payloads propagate as :class:`MalformedResponseError`
        so the viewer can show its inline notice.
        """
        with CorrelationContext():
            request = BackendRequest(
                method="POST",
                path="/analyze-attention",
                params={
                    "candidate_url": candidate_url,
                    "embedding_model": model,
                    "include_visualizations": str(include_visualizations).lower(),
                },
                files=self._upload("query_file", image_path),
            )
            logger.info(f"Analyzing attention against {candidate_url}")
            payload = self._call(request, "Analysis failed")
            analysis = parse_analysis(payload, self.top_k)
            if analysis.candidate_url is None:
                analysis = replace(analysis, candidate_url=candidate_url)
            return analysis

