"""
Hybrid Ranker

Merges a full-text ranking and a vector ranking by list position only. Raw
scores from the two searches are not comparable, so each item earns
``1 - i / n`` for its position ``i`` in a list of length ``n``, weighted by
``1 - w`` (full-text) or ``w`` (vector), and items found by both searches
sum their contributions.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, Sequence, Tuple, TypeVar

from ..core.errors import InvalidWeightError

T = TypeVar("T")


def positional_weight(index: int, length: int) -> float:
    return 1.0 - index / length


class HybridRanker(Generic[T]):
    """
    Positional-decay merge of two ranked lists.

    Parameters
    ----------
    semantic_weight : float
        Share of the score given to the vector ranking, in [0, 1].
    key : Optional[Callable]
        Identifies the same item across both lists. Defaults to identity.

    Raises
    ------
    InvalidWeightError
        If ``semantic_weight`` is outside [0, 1].
    """

    def __init__(
        self,
        semantic_weight: float = 0.5,
        key: Optional[Callable[[T], Hashable]] = None,
    ) -> None:
        if not 0.0 <= semantic_weight <= 1.0:
            raise InvalidWeightError(
                f"semantic_weight must be within [0, 1], got {semantic_weight}."
            )
        self.semantic_weight = semantic_weight
        self._key: Callable[[T], Any] = key or (lambda item: item)

    def score(
        self,
        full_text: Sequence[T],
        vector: Sequence[T],
        limit: int,
    ) -> List[Tuple[T, float]]:
        """
        Return ``(item, score)`` pairs, best first, at most ``limit`` long.

        Each input list is cut to ``limit`` first. Only an item's first
        occurrence in each list counts, and ties keep first-seen order with
        full-text items ahead of vector-only ones.
        """
        scores: Dict[Any, List[Any]] = {}

        weighted = (
            (list(full_text[:limit]), 1.0 - self.semantic_weight),
            (list(vector[:limit]), self.semantic_weight),
        )
        for items, weight in weighted:
            seen = set()
            for index, item in enumerate(items):
                k = self._key(item)
                if k in seen:
                    continue
                seen.add(k)

                contribution = weight * positional_weight(index, len(items))
                if k in scores:
                    scores[k][1] += contribution
                else:
                    scores[k] = [item, contribution]

        ranked = sorted(scores.values(), key=lambda pair: pair[1], reverse=True)
        return [(item, score) for item, score in ranked[:limit]]

    def merge(
        self,
        full_text: Sequence[T],
        vector: Sequence[T],
        limit: int,
    ) -> List[T]:
        return [item for item, _ in self.score(full_text, vector, limit)]
