from __future__ import annotations

import re
from typing import Dict, List, Optional

from rank_bm25 import BM25Plus

from .schema import Chunk, Hit


def _tok(s: str) -> list[str]:
    return re.findall(r"[A-Za-z0-9]+", s.lower())


class LexicalIndexer:
    """
    In-memory BM25 index over chunk ``text``.

    Scores are divided by the best score of the query so they land in 0..1
    and can be blended with cosine scores.
    """

    def __init__(self) -> None:
        self.bm25: Optional[BM25Plus] = None
        self.chunk_id_order: list[str] = []
        self._chunk_map: Dict[str, Chunk] = {}

    def __len__(self) -> int:
        return len(self.chunk_id_order)

    def build(self, chunks: List[Chunk]) -> "LexicalIndexer":
        self.chunk_id_order = [c.id for c in chunks]
        self._chunk_map = {c.id: c for c in chunks}
        docs = [_tok(c.text) for c in chunks]
        # delta=0: plain BM25 weighting with the always-positive log((N+1)/df) idf,
        # so a term shared by half of a tiny corpus still counts
        self.bm25 = BM25Plus(docs, delta=0.0) if any(docs) else None
        return self

    def clear(self) -> None:
        self.bm25 = None
        self.chunk_id_order = []
        self._chunk_map = {}

    def get(self, chunk_id: str) -> Optional[Chunk]:
        return self._chunk_map.get(chunk_id)

    def chunks(self) -> List[Chunk]:
        return [self._chunk_map[i] for i in self.chunk_id_order]

    def search(self, query: str, top_k: int = 20, min_score: float = 0.0) -> List[Hit]:
        terms = _tok(query)
        if self.bm25 is None or not terms:
            return []
        scores = self.bm25.get_scores(terms)
        best = float(max(scores)) if len(scores) else 0.0
        if best <= 0.0:
            return []
        pairs = [(i, float(s) / best) for i, s in enumerate(scores)]
        pairs.sort(key=lambda x: x[1], reverse=True)
        hits = []
        for i, s in pairs:
            if s < min_score or s <= 0.0:
                continue
            hits.append(Hit(chunk_id=self.chunk_id_order[i], score=s))
            if len(hits) >= top_k:
                break
        return hits

    def load_chunks_by_ids(self, ids: List[str]) -> List[Chunk]:
        return [self._chunk_map[i] for i in ids if i in self._chunk_map]
