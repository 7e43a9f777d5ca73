"""Dimension-gated in-memory vector store with linear-scan cosine search.

Embeddings are persisted as BLOBs of little-endian float32 values
(``4 * dimensions`` bytes) and hydrated into a VectorStore at startup
(see Repository.load_chunk_vectors / load_learning_vectors).

The store holds no locks. Callers serialize mutation against search; a
search running concurrently with an insert may observe a partial update.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import numpy as np

from llm_archive.errors import ConfigurationError, ValidationError


_DTYPE = np.dtype("<f4")


# ------------------------------------------------------------------
# Codec
# ------------------------------------------------------------------


def to_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    """Return *values* as a 1-D float32 array (copies only when needed)."""
    arr = np.asarray(values, dtype=np.float32)
    if arr.ndim != 1:
        raise ValidationError(f"Expected a 1-D vector, got shape {arr.shape}")
    return arr


def serialize_embedding(vector: Sequence[float] | np.ndarray) -> bytes:
    """Encode a vector as fixed-width little-endian float32 bytes."""
    return to_vector(vector).astype(_DTYPE, copy=False).tobytes()


def deserialize_embedding(blob: bytes, dimensions: int | None = None) -> np.ndarray:
    """Decode a float32 BLOB.

    Raises:
        ConfigurationError: If *dimensions* is given and the blob holds a
            different number of values (stale vectors from another model).
    """
    if len(blob) % _DTYPE.itemsize:
        raise ValidationError(f"Embedding blob length {len(blob)} is not a multiple of 4")
    vector = np.frombuffer(blob, dtype=_DTYPE).astype(np.float32)
    if dimensions is not None and vector.shape[0] != dimensions:
        raise ConfigurationError(
            f"Stored embedding has {vector.shape[0]} dimensions, store expects {dimensions}. "
            "Purge embeddings from the previous model before re-embedding."
        )
    return vector


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors; 0.0 if either has zero norm."""
    denom = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


# ------------------------------------------------------------------
# Store
# ------------------------------------------------------------------


@dataclass
class VectorSearchResult:
    """A single hit. ``distance`` is ``1 - score``; scores are not clamped."""

    id: str
    score: float
    distance: float


class VectorStore:
    """Container of ``id -> vector`` with a one-way Uninitialized → Initialized state.

    Example:
        >>> store = VectorStore()
        >>> store.initialize(3)
        >>> store.insert("a", [1.0, 0.0, 0.0])
        >>> store.search([1.0, 0.0, 0.0], limit=1)[0].id
        'a'
    """

    def __init__(self) -> None:
        self._dimensions: int | None = None
        # dict preserves insertion order; an overwrite keeps the id's slot
        self._vectors: dict[str, np.ndarray] = {}

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    @property
    def is_initialized(self) -> bool:
        return self._dimensions is not None

    def initialize(self, dimensions: int) -> None:
        """Fix the vector length. Repeating the same value is a no-op.

        Raises:
            ValidationError: If *dimensions* < 1.
            ConfigurationError: If already initialized with other dimensions.
        """
        if dimensions < 1:
            raise ValidationError(f"dimensions must be >= 1, got {dimensions}")
        if self._dimensions is not None and self._dimensions != dimensions:
            raise ConfigurationError(
                f"Already initialized with {self._dimensions} dimensions, "
                f"cannot reinitialize with {dimensions}"
            )
        self._dimensions = dimensions

    def insert(self, id: str, vector: Sequence[float] | np.ndarray) -> None:
        """Store *vector* under *id*, replacing any previous vector."""
        self._vectors[id] = self._checked(vector, "Vector").copy()

    def insert_many(self, items: Iterable[tuple[str, Sequence[float] | np.ndarray]]) -> int:
        """Insert several ``(id, vector)`` pairs. Returns the number inserted."""
        count = 0
        for id, vector in items:
            self.insert(id, vector)
            count += 1
        return count

    def delete(self, id: str) -> bool:
        """Remove *id*. Returns True if it was present."""
        return self._vectors.pop(id, None) is not None

    def search(self, query: Sequence[float] | np.ndarray, limit: int) -> list[VectorSearchResult]:
        """Return the *limit* best matches for *query*, score descending.

        Every stored vector is scored (no approximate index). Ties keep
        insertion order.
        """
        q = self._checked(query, "Query vector")
        if not self._vectors or limit <= 0:
            return []

        ids = list(self._vectors)
        matrix = np.vstack([self._vectors[i] for i in ids])
        norms = np.linalg.norm(matrix, axis=1) * float(np.linalg.norm(q))
        dots = matrix @ q
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)

        order = np.argsort(-scores, kind="stable")[:limit]
        return [
            VectorSearchResult(id=ids[i], score=float(scores[i]), distance=1.0 - float(scores[i]))
            for i in order
        ]

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, id: object) -> bool:
        return id in self._vectors

    def _checked(self, vector: Sequence[float] | np.ndarray, label: str) -> np.ndarray:
        if self._dimensions is None:
            raise ConfigurationError("VectorStore not initialized. Call initialize() first.")
        arr = to_vector(vector)
        if arr.shape[0] != self._dimensions:
            raise ValidationError(
                f"{label} dimension mismatch: expected {self._dimensions}, got {arr.shape[0]}"
            )
        return arr
