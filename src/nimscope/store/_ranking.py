"""Cosine ranking over candidate vectors."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

logger = logging.getLogger(__name__)


def cosine_similarities(
    query: Sequence[float],
    candidates: Sequence[tuple[int, Sequence[float]]],
) -> list[tuple[int, float]]:
    """Return ``(id, cosine)`` for every candidate whose dimension matches *query*.

    Vectors are not assumed to be normalized.  A zero-norm query or
    candidate has cosine ``0``; cosines are clipped to ``[-1, 1]`` to absorb
    rounding.
    """
    q = np.asarray(query, dtype=np.float64)
    dim = q.shape[0]
    ids: list[int] = []
    rows: list[Sequence[float]] = []
    for cid, vector in candidates:
        if len(vector) != dim:
            logger.debug("Skipping symbol %d: dimension %d != %d", cid, len(vector), dim)
            continue
        ids.append(cid)
        rows.append(vector)
    if not rows:
        return []

    matrix = np.asarray(rows, dtype=np.float64)
    denom = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    sims = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
    sims = np.clip(sims, -1.0, 1.0)
    return [(cid, float(s)) for cid, s in zip(ids, sims, strict=True)]


def distance_and_score(similarity: float) -> tuple[float, float]:
    """Map a cosine to ``(distance, similarity_score)``.

    >>> distance_and_score(1.0)
    (0.0, 1.0)
    >>> distance_and_score(0.0)
    (1.0, 0.5)
    """
    distance = min(max(1.0 - similarity, 0.0), 2.0)
    score = min(max((1.0 + similarity) / 2.0, 0.0), 1.0)
    return distance, score
