"""In-memory similarity index over paper embeddings (linear-scan cosine)."""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from scholarcast.models import EmbeddingVector

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|), defined as 0.0 when either norm is zero."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector length mismatch: {va.shape[0]} vs {vb.shape[0]}")
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class SimilarityIndex:
    """paper_id -> EmbeddingVector, safe to share across request handlers.

    Writes take the lock; queries scan a snapshot so a concurrent upsert
    never changes the set being ranked mid-query.
    """

    def __init__(self):
        self._vectors: Dict[str, EmbeddingVector] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, paper_id: str) -> bool:
        return paper_id in self._vectors

    def upsert(self, paper_id: str, vector: EmbeddingVector) -> None:
        with self._lock:
            # re-insert so tie order follows the latest write
            self._vectors.pop(paper_id, None)
            self._vectors[paper_id] = vector

    def load(self, vectors: Iterable[EmbeddingVector]) -> int:
        count = 0
        for v in vectors:
            self.upsert(v.paper_id, v)
            count += 1
        return count

    def get(self, paper_id: str) -> Optional[EmbeddingVector]:
        return self._vectors.get(paper_id)

    def remove(self, paper_id: str) -> bool:
        with self._lock:
            return self._vectors.pop(paper_id, None) is not None

    def query(self, vector: Sequence[float], k: int = 5, include_placeholders: bool = True,
              exclude: Optional[Iterable[str]] = None) -> List[Tuple[str, float]]:
        """Top-k (paper_id, score) by descending cosine similarity.

        Stored vectors of a different dimension are skipped.
        """
        if k <= 0:
            return []
        excluded = set(exclude or ())
        with self._lock:
            snapshot = list(self._vectors.items())
        dim = len(vector)
        scored = []
        for paper_id, stored in snapshot:
            if paper_id in excluded:
                continue
            if stored.is_placeholder and not include_placeholders:
                continue
            if stored.dimension != dim:
                logger.debug(f"Skipping {paper_id}: dimension {stored.dimension} != {dim}")
                continue
            scored.append((paper_id, cosine_similarity(vector, stored.values)))
        # sorted() is stable, so equal scores keep insertion order
        scored = sorted(scored, key=lambda item: item[1], reverse=True)
        return scored[:k]
