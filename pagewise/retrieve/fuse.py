from __future__ import annotations

from typing import Dict, List, Set

from ..index.schema import Hit

LEXICAL_WEIGHT = 0.5
VECTOR_WEIGHT = 0.5


def clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, x))


def blend_score(lexical: float, vector: float) -> float:
    return LEXICAL_WEIGHT * clamp(lexical) + VECTOR_WEIGHT * vector


def blend_hits(lexical_hits: List[Hit], vector_hits: List[Hit], limit: int) -> List[Hit]:
    """
    Combine lexical and vector candidates.

    Every lexical hit is blended with its vector score (0 without one). Up to
    ``limit`` of the best vector hits that were not lexically retrieved are
    added with a lexical score of 0. Result is unsorted and unfiltered.
    """
    vec: Dict[str, float] = {h.chunk_id: h.score for h in vector_hits}
    merged: List[Hit] = []
    seen: Set[str] = set()
    for h in lexical_hits:
        merged.append(Hit(chunk_id=h.chunk_id, score=blend_score(h.score, vec.get(h.chunk_id, 0.0))))
        seen.add(h.chunk_id)

    extra = 0
    for h in sorted(vector_hits, key=lambda x: x.score, reverse=True):
        if extra >= limit:
            break
        if h.chunk_id in seen:
            continue
        merged.append(Hit(chunk_id=h.chunk_id, score=blend_score(0.0, h.score)))
        seen.add(h.chunk_id)
        extra += 1
    return merged


def rank(hits: List[Hit], threshold: float, limit: int) -> List[Hit]:
    kept = [h for h in hits if h.score >= threshold]
    kept.sort(key=lambda x: x.score, reverse=True)
    return kept[:limit]
