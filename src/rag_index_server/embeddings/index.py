"""
FAISS Vector Index

This module implements an in-process FAISS-backed vector index for the
chunks of one namespace. The memory storage backend keeps one instance per
namespace, since every namespace fixes its own vector dimension.

Key Properties
--------------
- Explicit ID management via IndexIDMap2
- Cosine similarity (inner product over L2-normalised vectors)
- Deterministic add / remove / search behavior
- Concurrency-safe (thread locking)
- Strong validation of vector dimensionality
"""

from __future__ import annotations

from threading import RLock
from typing import List, Sequence, Tuple

import faiss
import numpy as np


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class FaissIndexError(RuntimeError):
    """Base error for FAISS index failures."""


# ---------------------------------------------------------------------
# FAISS Index Wrapper
# ---------------------------------------------------------------------

class FaissIndex:
    """
    FAISS flat inner-product index with explicit int64 IDs.

    Scores returned by :meth:`search` are cosine similarities in [-1, 1].
    """

    def __init__(self, dimension: int) -> None:
        """
        Initialize an empty index.

        Parameters
        ----------
        dimension : int
            Length every stored and queried vector must have.
        """
        if dimension <= 0:
            raise FaissIndexError("Index dimension must be positive.")

        self.dimension = dimension
        self._index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _as_matrix(self, vectors: Sequence[Sequence[float]]) -> np.ndarray:
        matrix = np.asarray(vectors, dtype="float32")
        if matrix.ndim != 2 or matrix.shape[1] != self.dimension:
            raise FaissIndexError(
                f"Expected vectors of dimension {self.dimension}."
            )
        matrix = np.ascontiguousarray(matrix)
        faiss.normalize_L2(matrix)
        return matrix

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def ntotal(self) -> int:
        with self._lock:
            return int(self._index.ntotal)

    def add(self, ids: Sequence[int], vectors: Sequence[Sequence[float]]) -> None:
        """
        Add vectors under the given IDs.
        """
        if not ids:
            return

        if len(ids) != len(vectors):
            raise FaissIndexError("ID count does not match vector count.")

        matrix = self._as_matrix(vectors)
        id_array = np.asarray(ids, dtype="int64")

        with self._lock:
            try:
                self._index.add_with_ids(matrix, id_array)
            except Exception as exc:
                raise FaissIndexError(
                    f"Failed to add vectors to FAISS: {type(exc).__name__}"
                ) from exc

    def remove(self, ids: Sequence[int]) -> int:
        """
        Remove vectors by ID.

        Returns
        -------
        int
            Number of removed vectors.
        """
        if not ids:
            return 0

        id_array = np.asarray(ids, dtype="int64")

        with self._lock:
            try:
                return int(self._index.remove_ids(id_array))
            except Exception as exc:
                raise FaissIndexError(
                    f"Failed to remove IDs from FAISS: {type(exc).__name__}"
                ) from exc

    def search(self, query: Sequence[float], k: int) -> List[Tuple[int, float]]:
        """
        Return up to ``k`` (id, score) pairs, best first.
        """
        q = self._as_matrix([query])

        with self._lock:
            total = int(self._index.ntotal)
            if total == 0 or k <= 0:
                return []

            scores, idxs = self._index.search(q, min(k, total))

        results: List[Tuple[int, float]] = []
        for score, idx in zip(scores[0], idxs[0]):
            idx = int(idx)
            if idx == -1:
                continue
            results.append((idx, float(score)))

        return results
