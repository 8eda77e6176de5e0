from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import numpy as np

from .schema import EmbeddingRecord, Hit


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in -1..1; 0 for mismatched or zero-length vectors."""
    va = np.asarray(a, dtype="float32")
    vb = np.asarray(b, dtype="float32")
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def to_unit_score(cos: float) -> float:
    return (cos + 1.0) / 2.0


class DenseStore:
    """Embedding map for one session, searched by brute-force cosine."""

    def __init__(self) -> None:
        self.records: Dict[str, EmbeddingRecord] = {}
        self.chunk_id_order: list[str] = []
        self._emb_matrix: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return len(self.records)

    def add(self, record: EmbeddingRecord) -> None:
        if record.chunk_id not in self.records:
            self.chunk_id_order.append(record.chunk_id)
        self.records[record.chunk_id] = record
        self._emb_matrix = None

    def clear(self) -> None:
        self.records = {}
        self.chunk_id_order = []
        self._emb_matrix = None

    def vectors(self) -> Dict[str, List[float]]:
        return {cid: list(self.records[cid].vector) for cid in self.chunk_id_order}

    def _matrix(self) -> np.ndarray:
        if self._emb_matrix is None:
            M = np.asarray([self.records[c].vector for c in self.chunk_id_order], dtype="float32")
            norms = np.linalg.norm(M, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            self._emb_matrix = M / norms
        return self._emb_matrix

    def search(self, query_vec: Sequence[float], top_k: Optional[int] = None) -> List[Hit]:
        """Every stored chunk scored by ``(cosine + 1) / 2``, best first."""
        if not self.chunk_id_order:
            return []
        M = self._matrix()
        q = np.asarray(query_vec, dtype="float32")
        if q.ndim != 1 or q.shape[0] != M.shape[1]:
            return []
        qn = float(np.linalg.norm(q))
        if qn == 0.0:
            sims = np.zeros(M.shape[0], dtype="float32")
        else:
            sims = (M @ (q / qn)).astype("float32")
        order = np.argsort(-sims)
        if top_k is not None:
            order = order[:top_k]
        return [
            Hit(chunk_id=self.chunk_id_order[i], score=to_unit_score(float(sims[i])))
            for i in order.tolist()
        ]
