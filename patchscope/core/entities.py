"""Domain entities (data-only structures) used across services."""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

PatchIndex = int
ImageSize = Tuple[int, int]  # (width, height)


class PatchSide(Enum):
    """Which image of the comparison a patch belongs to."""
    QUERY = "query"
    CANDIDATE = "candidate"


class HighlightTag(Enum):
    SELECTED = "selected"
    HOVERED = "hovered"
    RANKED = "ranked"


@dataclass(frozen=True, slots=True)
class PatchCoordinate:
    row: int
    col: int


@dataclass(frozen=True, slots=True)
class NormalizedRect:
    """Cell rectangle in [0, 1] image units."""
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True, slots=True)
class CandidateMatch:
    index: PatchIndex
    coordinate: PatchCoordinate
    similarity: float


@dataclass(frozen=True, slots=True)
class Correspondence:
    """Ranked candidate patches for one query patch (best first)."""
    query_index: PatchIndex
    query_coordinate: PatchCoordinate
    candidates: Tuple[CandidateMatch, ...]

    def candidate(self, index: PatchIndex) -> Optional[CandidateMatch]:
        for match in self.candidates:
            if match.index == index:
                return match
        return None


@dataclass(frozen=True, slots=True)
class RankedMatch:
    candidate_index: PatchIndex
    source_query_index: PatchIndex
    similarity: float
    rank: int  # 1-based


@dataclass(frozen=True, slots=True)
class PatchHighlight:
    """A cell to emphasise on one side of the viewer."""
    index: PatchIndex
    tag: HighlightTag
    rank: Optional[int] = None
    similarity: Optional[float] = None
    source_query_index: Optional[PatchIndex] = None


@dataclass(frozen=True, slots=True)
class SimilaritySummary:
    overall_similarity: float
    max_similarity: float
    min_similarity: float
    std_similarity: float
    query_patches_count: int
    candidate_patches_count: int
    high_attention_patches: int
    model_name: str


@dataclass(frozen=True, slots=True)
class Visualizations:
    attention_heatmap: Optional[str] = None
    top_correspondences: Optional[str] = None


@dataclass(frozen=True, slots=True)
class DetailedAttentionAnalysis:
    query_image_size: ImageSize
    candidate_image_size: ImageSize
    embedding_model: str
    similarity_analysis: SimilaritySummary
    attention_matrix_shape: Tuple[int, int]
    correspondences: Tuple[Correspondence, ...]
    candidate_url: Optional[str] = None
    visualizations: Optional[Visualizations] = None


@dataclass(frozen=True, slots=True)
class PatchAttentionData:
    overall_similarity: float
    query_grid_size: int
    candidate_grid_size: int
    attention_summary: Optional[SimilaritySummary] = None


@dataclass(frozen=True, slots=True)
class SearchResult:
    score: float
    url: str
    patch_attention: Optional[PatchAttentionData] = None


@dataclass(slots=True)
class SearchResponse:
    caption: str
    results: list = field(default_factory=list)
    embedding_model: str = ""
    patch_attention_enabled: bool = False


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """Catalog entry for one embedding model."""
    display_name: str
    description: str
