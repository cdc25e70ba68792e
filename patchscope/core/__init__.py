"""Core domain entities, grid math and interaction state."""

from .entities import (
    PatchSide, HighlightTag, PatchCoordinate, NormalizedRect, CandidateMatch,
    Correspondence, RankedMatch, PatchHighlight, DetailedAttentionAnalysis,
    SearchResult, SearchResponse, ModelInfo,
)
from .exceptions import (
    ApplicationError, InvalidGridError, OutOfRangeError, MalformedResponseError,
    RequestTimeoutError, NetworkError, ImageLoadFailure,
)
from .grid import GridMapper, grid_size_for
from .correspondence import CorrespondenceStore, TopMatchAggregator, match_band
from .selection import SelectionController
from .image_loader import ResilientImageLoader, ImageLoadState, CrossOriginMode, LoadedImage

__all__ = [
    "PatchSide", "HighlightTag", "PatchCoordinate", "NormalizedRect", "CandidateMatch",
    "Correspondence", "RankedMatch", "PatchHighlight", "DetailedAttentionAnalysis",
    "SearchResult", "SearchResponse", "ModelInfo",
    "ApplicationError", "InvalidGridError", "OutOfRangeError", "MalformedResponseError",
    "RequestTimeoutError", "NetworkError", "ImageLoadFailure",
    "GridMapper", "grid_size_for",
    "CorrespondenceStore", "TopMatchAggregator", "match_band",
    "SelectionController",
    "ResilientImageLoader", "ImageLoadState", "CrossOriginMode", "LoadedImage",
]
