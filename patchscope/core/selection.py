"""Selection and hover state for the patch correspondence viewer."""
from __future__ import annotations

import logging
from typing import Callable, FrozenSet, List, Optional, Set, Tuple

from .correspondence import CorrespondenceStore, TopMatchAggregator
from .entities import HighlightTag, PatchHighlight, PatchIndex, PatchSide, RankedMatch

logger = logging.getLogger(__name__)

SelectionListener = Callable[["SelectionController"], None]


class SelectionController:
    """Owns the selected query patches and the single hovered patch.

    State is mutated only through :meth:`toggle`, :meth:`clear`,
    :meth:`set_hover`, :meth:`clear_hover` and :meth:`load_store`. Highlight
    sets and ranked matches are derived on demand and never cached, so a
    redraw always sees the latest selection against the latest store.
    """

    def __init__(self, store: Optional[CorrespondenceStore] = None):
        self._selected: Set[PatchIndex] = set()
        self._hovered: Optional[Tuple[PatchSide, PatchIndex]] = None
        self._listeners: List[SelectionListener] = []
        self._store = store if store is not None else CorrespondenceStore()
        self._aggregator = TopMatchAggregator(self._store)

    # ------------------------------------------------------------------ state

    @property
    def store(self) -> CorrespondenceStore:
        return self._store

    @property
    def selected(self) -> FrozenSet[PatchIndex]:
        return frozenset(self._selected)

    @property
    def hovered(self) -> Optional[Tuple[PatchSide, PatchIndex]]:
        return self._hovered

    def is_selected(self, index: PatchIndex) -> bool:
        return index in self._selected

    # ------------------------------------------------------------ transitions

    def toggle(self, index: PatchIndex) -> bool:
        """Add or remove a query patch. Returns True if it is now selected."""
        if index in self._selected:
            self._selected.discard(index)
            now_selected = False
        else:
            self._selected.add(index)
            now_selected = True
        logger.debug(f"Patch {index} {'selected' if now_selected else 'deselected'} "
                     f"({len(self._selected)} selected)")
        self._notify()
        return now_selected

    def clear(self) -> None:
        """Empty the selection. Hover is left alone."""
        if not self._selected:
            return
        self._selected.clear()
        self._notify()

    def set_hover(self, side: PatchSide, index: PatchIndex) -> None:
        hovered = (PatchSide(side), index)
        if hovered == self._hovered:
            return
        self._hovered = hovered
        self._notify()

    def clear_hover(self) -> None:
        if self._hovered is None:
            return
        self._hovered = None
        self._notify()

    def reset(self) -> None:
        """Drop selection and hover, e.g. when the viewer closes."""
        changed = bool(self._selected) or self._hovered is not None
        self._selected.clear()
        self._hovered = None
        if changed:
            self._notify()

    def load_store(self, store: CorrespondenceStore) -> None:
        """Swap in the store of a new analysis and start from an empty state."""
        self._store = store
        self._aggregator = TopMatchAggregator(store)
        self._selected.clear()
        self._hovered = None
        self._notify()

    # ------------------------------------------------------------ derivations

    def ranked_matches(self) -> List[RankedMatch]:
        return self._aggregator.aggregate(sorted(self._selected))

    def highlights_for(self, side: PatchSide) -> List[PatchHighlight]:
        side = PatchSide(side)
        if side is PatchSide.QUERY:
            highlights = [
                PatchHighlight(index=index, tag=HighlightTag.SELECTED)
                for index in sorted(self._selected)
            ]
            if self._hovered is not None:
                hover_side, hover_index = self._hovered
                if hover_side is PatchSide.QUERY and hover_index not in self._selected:
                    highlights.append(PatchHighlight(index=hover_index, tag=HighlightTag.HOVERED))
            return highlights

        return [
            PatchHighlight(
                index=match.candidate_index,
                tag=HighlightTag.RANKED,
                rank=match.rank,
                similarity=match.similarity,
                source_query_index=match.source_query_index,
            )
            for match in self.ranked_matches()
        ]

    # -------------------------------------------------------------- listeners

    def add_listener(self, listener: SelectionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SelectionListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Selection listener failed: {e}", exc_info=True)
