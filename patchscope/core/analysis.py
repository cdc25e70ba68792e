"""Ingestion of backend payloads into domain entities.

Everything the backend sends is validated here, at the boundary, so the
viewer and renderer downstream can assume well-formed data. Shape problems
that can be tolerated (mismatched list lengths, unsorted scores, patches
outside the grid) are repaired and logged; missing required fields raise
:class:`MalformedResponseError`. A patch count that does not form a square
grid disables the grid overlay for that side but keeps the raw scores.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from .correspondence import TOP_MATCH_LIMIT, CorrespondenceStore, match_band
from .entities import (
    CandidateMatch, Correspondence, DetailedAttentionAnalysis, PatchAttentionData,
    PatchCoordinate, RankedMatch, SearchResponse, SearchResult, SimilaritySummary, Visualizations,
)
from .exceptions import InvalidGridError, MalformedResponseError
from .grid import GridMapper

logger = logging.getLogger(__name__)

GRID_DISABLED_NOTICE = (
    "Patch grid unavailable for the {side} image: {count} patches cannot form a square grid. "
    "Showing raw similarity scores only."
)


def _require(data: Mapping[str, Any], key: str, context: str) -> Any:
    if not isinstance(data, Mapping):
        raise MalformedResponseError(f"{context} must be an object, got {type(data).__name__}")
    if key not in data or data[key] is None:
        raise MalformedResponseError(f"{context} is missing '{key}'")
    return data[key]


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise MalformedResponseError(f"'{name}' must be an integer, got bool")
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        raise MalformedResponseError(f"'{name}' must be an integer, got {value!r}")
    if not as_float.is_integer():
        raise MalformedResponseError(f"'{name}' must be an integer, got {value!r}")
    return int(as_float)


def _as_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise MalformedResponseError(f"'{name}' must be a number, got bool")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise MalformedResponseError(f"'{name}' must be a number, got {value!r}")


def _as_pair(value: Any, name: str) -> tuple:
    if not isinstance(value, Sequence) or isinstance(value, str) or len(value) != 2:
        raise MalformedResponseError(f"'{name}' must be a pair, got {value!r}")
    return (_as_int(value[0], name), _as_int(value[1], name))


def _as_list(value: Any, name: str) -> list:
    if not isinstance(value, Sequence) or isinstance(value, str):
        raise MalformedResponseError(f"'{name}' must be a list, got {type(value).__name__}")
    return list(value)


def parse_summary(data: Mapping[str, Any]) -> SimilaritySummary:
    ctx = "similarity_analysis"
    return SimilaritySummary(
        overall_similarity=_as_float(_require(data, "overall_similarity", ctx), "overall_similarity"),
        max_similarity=_as_float(_require(data, "max_similarity", ctx), "max_similarity"),
        min_similarity=_as_float(_require(data, "min_similarity", ctx), "min_similarity"),
        std_similarity=_as_float(_require(data, "std_similarity", ctx), "std_similarity"),
        query_patches_count=_as_int(_require(data, "query_patches_count", ctx), "query_patches_count"),
        candidate_patches_count=_as_int(_require(data, "candidate_patches_count", ctx),
                                        "candidate_patches_count"),
        high_attention_patches=_as_int(data.get("high_attention_patches", 0), "high_attention_patches"),
        model_name=str(data.get("model_name", "")),
    )


def parse_correspondence(raw: Mapping[str, Any], top_k: int = TOP_MATCH_LIMIT) -> Correspondence:
    """Build one Correspondence, repairing list length and ordering issues."""
    ctx = "top_correspondences[]"
    query_index = _as_int(_require(raw, "query_patch_idx", ctx), "query_patch_idx")
    query_coord = _as_pair(_require(raw, "query_patch_coord", ctx), "query_patch_coord")
    indices = _as_list(_require(raw, "top_candidate_indices", ctx), "top_candidate_indices")
    coords = _as_list(_require(raw, "top_candidate_coords", ctx), "top_candidate_coords")
    scores = _as_list(_require(raw, "similarity_scores", ctx), "similarity_scores")

    length = min(len(indices), len(coords), len(scores))
    if not (len(indices) == len(coords) == len(scores)):
        logger.warning(
            f"Query patch {query_index}: candidate lists differ in length "
            f"(indices={len(indices)}, coords={len(coords)}, scores={len(scores)}); truncating to {length}"
        )

    candidates = [
        CandidateMatch(
            index=_as_int(indices[i], "top_candidate_indices"),
            coordinate=PatchCoordinate(*_as_pair(coords[i], "top_candidate_coords")),
            similarity=_as_float(scores[i], "similarity_scores"),
        )
        for i in range(length)
    ]

    if any(a.similarity < b.similarity for a, b in zip(candidates, candidates[1:])):
        logger.warning(f"Query patch {query_index}: scores not in descending order; re-sorting")
        candidates.sort(key=lambda c: -c.similarity)

    return Correspondence(
        query_index=query_index,
        query_coordinate=PatchCoordinate(*query_coord),
        candidates=tuple(candidates[:top_k]),
    )


def _parse_visualizations(data: Any) -> Optional[Visualizations]:
    if not isinstance(data, Mapping):
        return None
    return Visualizations(
        attention_heatmap=data.get("attention_heatmap") or None,
        top_correspondences=data.get("top_correspondences") or None,
    )


def parse_analysis(payload: Mapping[str, Any], top_k: int = TOP_MATCH_LIMIT) -> DetailedAttentionAnalysis:
    """Parse a DetailedAttentionAnalysis response body."""
    ctx = "analysis response"
    raw_correspondences = _require(payload, "top_correspondences", ctx)
    if not isinstance(raw_correspondences, Sequence) or isinstance(raw_correspondences, str):
        raise MalformedResponseError("'top_correspondences' must be a list")

    shape = payload.get("attention_matrix_shape") or (0, 0)

    return DetailedAttentionAnalysis(
        query_image_size=_as_pair(_require(payload, "query_image_size", ctx), "query_image_size"),
        candidate_image_size=_as_pair(_require(payload, "candidate_image_size", ctx), "candidate_image_size"),
        embedding_model=str(payload.get("embedding_model", "")),
        similarity_analysis=parse_summary(_require(payload, "similarity_analysis", ctx)),
        attention_matrix_shape=_as_pair(shape, "attention_matrix_shape"),
        correspondences=tuple(parse_correspondence(raw, top_k) for raw in raw_correspondences),
        candidate_url=payload.get("candidate_url"),
        visualizations=_parse_visualizations(payload.get("visualizations")),
    )


def _parse_patch_attention(data: Any) -> Optional[PatchAttentionData]:
    if not isinstance(data, Mapping):
        return None
    summary = data.get("attention_summary")
    return PatchAttentionData(
        overall_similarity=_as_float(data.get("overall_similarity", 0.0), "overall_similarity"),
        query_grid_size=_as_int(data.get("query_grid_size", 0), "query_grid_size"),
        candidate_grid_size=_as_int(data.get("candidate_grid_size", 0), "candidate_grid_size"),
        attention_summary=parse_summary(summary) if isinstance(summary, Mapping) else None,
    )


def parse_search_response(payload: Mapping[str, Any]) -> SearchResponse:
    raw_results = _require(payload, "results", "search response")
    if not isinstance(raw_results, Sequence) or isinstance(raw_results, str):
        raise MalformedResponseError("'results' must be a list")

    results = []
    for raw in raw_results:
        results.append(SearchResult(
            score=_as_float(_require(raw, "score", "results[]"), "score"),
            url=str(_require(raw, "url", "results[]")),
            patch_attention=_parse_patch_attention(raw.get("patch_attention")),
        ))

    return SearchResponse(
        caption=str(payload.get("caption", "")),
        results=results,
        embedding_model=str(payload.get("embedding_model", "")),
        patch_attention_enabled=bool(payload.get("patch_attention_enabled", False)),
    )


@dataclass(slots=True)
class CorrespondenceView:
    """Everything the viewer needs for one analysis result."""
    analysis: DetailedAttentionAnalysis
    store: CorrespondenceStore
    query_grid: Optional[GridMapper]
    candidate_grid: Optional[GridMapper]
    notices: List[str] = field(default_factory=list)

    @property
    def grid_enabled(self) -> bool:
        return self.query_grid is not None and self.candidate_grid is not None


def _grid_or_none(count: int, side: str, notices: List[str]) -> Optional[GridMapper]:
    try:
        return GridMapper.from_patch_count(count)
    except InvalidGridError as e:
        logger.warning(f"Disabling {side} grid overlay: {e}")
        notices.append(GRID_DISABLED_NOTICE.format(side=side, count=count))
        return None


def build_correspondence_view(analysis: DetailedAttentionAnalysis) -> CorrespondenceView:
    """Derive grids and the correspondence store, dropping out-of-grid patches."""
    notices: List[str] = []
    summary = analysis.similarity_analysis
    query_grid = _grid_or_none(summary.query_patches_count, "query", notices)
    candidate_grid = _grid_or_none(summary.candidate_patches_count, "candidate", notices)

    correspondences = list(analysis.correspondences)
    if query_grid is not None and candidate_grid is not None:
        kept = []
        dropped = 0
        for corr in correspondences:
            if not query_grid.contains(corr.query_index):
                dropped += 1
                continue
            valid = tuple(c for c in corr.candidates if candidate_grid.contains(c.index))
            dropped += len(corr.candidates) - len(valid)
            kept.append(Correspondence(corr.query_index, corr.query_coordinate, valid))
        if dropped:
            logger.warning(f"Dropped {dropped} patch references outside the grid")
            notices.append(f"{dropped} patch references outside the image grid were ignored.")
        correspondences = kept

    return CorrespondenceView(
        analysis=analysis,
        store=CorrespondenceStore(correspondences),
        query_grid=query_grid,
        candidate_grid=candidate_grid,
        notices=notices,
    )


def format_percent(value: float, digits: int = 1) -> str:
    return f"{value * 100:.{digits}f}%"


def summarize_analysis(analysis: DetailedAttentionAnalysis, preview: int = 3) -> Dict[str, Any]:
    """Overview and statistics rows for the analysis panel."""
    summary = analysis.similarity_analysis
    preview_rows = []
    for corr in analysis.correspondences[:preview]:
        if not corr.candidates:
            continue
        best = corr.candidates[0]
        preview_rows.append(
            f"Query ({corr.query_coordinate.row}, {corr.query_coordinate.col}) "
            f"→ Candidate ({best.coordinate.row}, {best.coordinate.col}): "
            f"{format_percent(best.similarity)}"
        )

    return {
        "overview": {
            "Overall similarity": format_percent(summary.overall_similarity),
            "Max similarity": format_percent(summary.max_similarity),
            "High attention patches": str(summary.high_attention_patches),
            "Model": analysis.embedding_model or summary.model_name,
            "Query image": f"{analysis.query_image_size[0]} × {analysis.query_image_size[1]}, "
                           f"{summary.query_patches_count} patches",
            "Candidate image": f"{analysis.candidate_image_size[0]} × {analysis.candidate_image_size[1]}, "
                               f"{summary.candidate_patches_count} patches",
        },
        "statistics": {
            "Mean": format_percent(summary.overall_similarity, 2),
            "Max": format_percent(summary.max_similarity, 2),
            "Min": format_percent(summary.min_similarity, 2),
            "Std deviation": f"{summary.std_similarity:.4f}",
            "Attention matrix": f"{analysis.attention_matrix_shape[0]} × {analysis.attention_matrix_shape[1]}",
        },
        "preview": preview_rows,
    }


def raw_score_rows(store: CorrespondenceStore) -> List[str]:
    """Plain-text rows of every correspondence, used when the grid is disabled."""
    rows = []
    for corr in store.all():
        scores = ", ".join(
            f"{c.index}:{format_percent(c.similarity)}" for c in corr.candidates
        )
        rows.append(
            f"Query patch {corr.query_index} ({corr.query_coordinate.row}, {corr.query_coordinate.col}): {scores}"
        )
    return rows


def score_statistics(store: CorrespondenceStore) -> Dict[str, float]:
    """Mean/max/min/std over every candidate score held by the store."""
    scores = np.array(
        [c.similarity for corr in store.all() for c in corr.candidates],
        dtype=np.float64,
    )
    if scores.size == 0:
        return {"count": 0, "mean": 0.0, "max": 0.0, "min": 0.0, "std": 0.0}
    return {
        "count": int(scores.size),
        "mean": float(scores.mean()),
        "max": float(scores.max()),
        "min": float(scores.min()),
        "std": float(scores.std()),
    }


@dataclass(frozen=True, slots=True)
class MatchDetail:
    """One row of the top-matches list in the viewer."""
    rank: int
    band: str
    query: PatchCoordinate
    candidate: PatchCoordinate
    similarity: float

    @property
    def rank_label(self) -> str:
        return f"Rank #{self.rank}"

    @property
    def mapping_label(self) -> str:
        return (f"Query ({self.query.row}, {self.query.col}) -> "
                f"({self.candidate.row}, {self.candidate.col})")

    @property
    def similarity_label(self) -> str:
        return f"{format_percent(self.similarity)} similarity"


def match_detail_rows(ranked: Sequence[RankedMatch], store: CorrespondenceStore) -> List[MatchDetail]:
    """Detail rows for ranked matches, in rank order."""
    rows = []
    for match in ranked:
        corr = store.get(match.source_query_index)
        candidate = corr.candidate(match.candidate_index) if corr is not None else None
        if candidate is None:
            continue
        rows.append(MatchDetail(
            rank=match.rank,
            band=match_band(match.rank),
            query=corr.query_coordinate,
            candidate=candidate.coordinate,
            similarity=match.similarity,
        ))
    return rows
