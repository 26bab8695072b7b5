"""Cosine-similarity ranking of page units against a query embedding."""
from __future__ import annotations

from typing import List, Sequence

import numpy as np

from pdfask.models import PageUnit, ScoredUnit

DEFAULT_TOP_K = 5


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine of the angle between ``a`` and ``b``.

    Empty, mismatched-length and zero-norm inputs score ``0.0``.
    """

    if len(a) == 0 or len(a) != len(b):
        return 0.0

    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    left_norm = float(np.linalg.norm(left))
    right_norm = float(np.linalg.norm(right))
    if left_norm == 0.0 or right_norm == 0.0:
        return 0.0

    value = float(np.dot(left, right)) / (left_norm * right_norm)
    if not np.isfinite(value):
        return 0.0
    return max(-1.0, min(1.0, value))


def rank_units(
    units: Sequence[PageUnit],
    unit_vectors: Sequence[Sequence[float]],
    query_vector: Sequence[float],
    top_k: int = DEFAULT_TOP_K,
    display_name: str = "",
) -> List[ScoredUnit]:
    """Score every unit and keep the ``top_k`` best, highest first."""

    if top_k < 1:
        raise ValueError("top_k must be at least 1")
    if len(unit_vectors) != len(units):
        raise ValueError(
            f"expected {len(units)} unit vectors, received {len(unit_vectors)}"
        )

    scored = [
        ScoredUnit(
            page_number=unit.page_number,
            text=unit.text,
            score=cosine_similarity(query_vector, vector),
            display_name=display_name,
        )
        for unit, vector in zip(units, unit_vectors)
    ]
    # sorted() is stable: equal scores keep their page order.
    scored = sorted(scored, key=lambda item: item.score, reverse=True)
    return scored[: min(top_k, len(scored))]


__all__ = ["DEFAULT_TOP_K", "cosine_similarity", "rank_units"]
