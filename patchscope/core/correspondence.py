"""Patch correspondence storage and cross-patch match aggregation."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .entities import Correspondence, PatchIndex, RankedMatch

logger = logging.getLogger(__name__)

TOP_MATCH_LIMIT = 10

# (upper rank bound, band name); ranks above the last bound never occur
MATCH_BANDS: Tuple[Tuple[int, str], ...] = (
    (3, "best"),
    (6, "good"),
    (TOP_MATCH_LIMIT, "moderate"),
)


def match_band(rank: int) -> str:
    """Quality band for a 1-based rank: best (1-3), good (4-6), moderate (7+)."""
    if rank < 1:
        raise ValueError(f"Rank must be 1-based, got {rank}")
    for upper, name in MATCH_BANDS:
        if rank <= upper:
            return name
    return MATCH_BANDS[-1][1]


class CorrespondenceStore:
    """Read-only mapping of query patch index to its Correspondence.

    Built once per analysis result. Only a subset of query patches carry a
    top-K list, so :meth:`get` returning ``None`` is a normal outcome. A new
    analysis replaces the store wholesale; it is never mutated in place.
    """

    __slots__ = ("_by_query", "_ordered")

    def __init__(self, correspondences: Iterable[Correspondence] = ()):
        by_query: Dict[PatchIndex, Correspondence] = {}
        ordered: List[Correspondence] = []
        for corr in correspondences:
            if corr.query_index in by_query:
                logger.warning(f"Duplicate correspondence for query patch {corr.query_index}, keeping first")
                continue
            by_query[corr.query_index] = corr
            ordered.append(corr)
        self._by_query = by_query
        self._ordered = tuple(ordered)

    def get(self, query_index: PatchIndex) -> Optional[Correspondence]:
        return self._by_query.get(query_index)

    def all(self) -> Tuple[Correspondence, ...]:
        """All correspondences in backend arrival order."""
        return self._ordered

    def query_indices(self) -> Tuple[PatchIndex, ...]:
        return tuple(corr.query_index for corr in self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, query_index) -> bool:
        return query_index in self._by_query

    def __iter__(self) -> Iterator[Correspondence]:
        return iter(self._ordered)

    def __repr__(self) -> str:
        return f"CorrespondenceStore({len(self._ordered)} query patches)"


class TopMatchAggregator:
    """Merges the candidate lists of selected query patches into one ranking.

    Every (query, candidate) pair is its own entry: a candidate patch reached
    from two selected query patches can appear twice in the output.
    """

    def __init__(self, store: CorrespondenceStore, limit: int = TOP_MATCH_LIMIT):
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        self.store = store
        self.limit = limit

    def aggregate(self, selected: Iterable[PatchIndex]) -> List[RankedMatch]:
        triples: List[Tuple[float, PatchIndex, PatchIndex]] = []
        for query_index in selected:
            corr = self.store.get(query_index)
            if corr is None:
                continue
            for match in corr.candidates:
                triples.append((match.similarity, query_index, match.index))

        # similarity desc, then source asc, then candidate asc
        triples.sort(key=lambda t: (-t[0], t[1], t[2]))

        return [
            RankedMatch(
                candidate_index=candidate,
                source_query_index=source,
                similarity=similarity,
                rank=position + 1,
            )
            for position, (similarity, source, candidate) in enumerate(triples[:self.limit])
        ]
