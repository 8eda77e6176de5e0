from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Dict, List, Optional

from rank_bm25 import BM25Plus

from ..index.schema import Chunk

logger = logging.getLogger(__name__)

K1 = 1.5
B = 0.75

HIGH_VALUE_TAGS = {"article", "main"}
NOISE_PHRASES = (
    "cookie",
    "privacy policy",
    "terms of service",
    "all rights reserved",
    "subscribe",
    "newsletter",
    "follow us",
    "advertisement",
    "sponsored",
    "click here",
    "read more",
)
BOILERPLATE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"cookie",
        r"privacy policy",
        r"terms of service",
        r"all rights reserved",
        r"©\s*\d{4}",
        r"subscribe to our newsletter",
        r"follow us on",
        r"social media",
        r"advertisement",
        r"sponsored content",
    )
]
MARKDOWN_LINK = re.compile(r"\[[^\]]*\]\([^)]*\)")

MIN_BOILERPLATE_CHARS = 20
BOILERPLATE_MATCHES_TO_DROP = 3
DEDUPE_KEY_CHARS = 100


def quality_score(chunk: Chunk) -> float:
    """Structural quality of a single chunk; independent of the rest of the corpus."""
    score = 0.0
    text = chunk.raw_text
    lower = text.lower()
    n = len(text)

    if 1 <= chunk.heading_level <= 3:
        score += 10
    if chunk.semantic_tag.lower() in HIGH_VALUE_TAGS:
        score += 5

    if 100 <= n <= 500:
        score += 10
    elif 50 <= n < 100:
        score += 5
    elif 500 < n <= 1000:
        score += 5
    elif n < 50:
        score -= 10
    else:
        score -= 5

    if n:
        links_per_100 = len(MARKDOWN_LINK.findall(text)) / (n / 100)
        if links_per_100 > 5:
            score -= 15

    for phrase in NOISE_PHRASES:
        if phrase in lower:
            score -= 5

    words = lower.split()
    if words:
        top = Counter(words).most_common(1)[0][1]
        if top / len(words) > 0.3:
            score -= 10
    return score


def _terms(text: str) -> List[str]:
    return [w for w in text.lower().split() if len(w) > 2]


def lexical_scores(chunks: List[Chunk]) -> Dict[str, float]:
    """
    BM25 weight of each chunk against its own vocabulary.

    Document frequencies come from the chunk set itself, so terms that appear
    in every chunk (site chrome, repeated labels) contribute little.
    """
    docs = [_terms(c.raw_text) for c in chunks]
    if not any(docs):
        return {c.id: 0.0 for c in chunks}
    # delta=0 as in the retrieval index: log((N+1)/df) never goes negative
    bm25 = BM25Plus(docs, k1=K1, b=B, delta=0.0)
    out: Dict[str, float] = {}
    for i, (chunk, terms) in enumerate(zip(chunks, docs)):
        out[chunk.id] = float(bm25.get_batch_scores(sorted(set(terms)), [i])[0]) if terms else 0.0
    return out


def boilerplate_hits(text: str) -> int:
    return sum(1 for p in BOILERPLATE_PATTERNS if p.search(text))


def remove_boilerplate(chunks: List[Chunk]) -> List[Chunk]:
    kept: List[Chunk] = []
    for c in chunks:
        text = c.raw_text.strip()
        if len(text) < MIN_BOILERPLATE_CHARS:
            continue
        if boilerplate_hits(text) >= BOILERPLATE_MATCHES_TO_DROP:
            logger.debug("Dropping boilerplate chunk %s", c.id)
            continue
        kept.append(c)
    if len(kept) != len(chunks):
        logger.info("Boilerplate pass removed %d of %d chunks", len(chunks) - len(kept), len(chunks))
    return kept


def filter_chunks(
    chunks: List[Chunk],
    min_quality_score: Optional[float] = None,
    min_lexical_score: Optional[float] = None,
    max_chunks: Optional[int] = None,
    remove_duplicates: bool = True,
) -> List[Chunk]:
    """
    Score, prune and optionally cap the corpus. Survivors keep document order
    and carry their quality/lexical/total scores.
    """
    lex = lexical_scores(chunks)
    survivors: List[Chunk] = []
    seen = set()
    for c in chunks:
        q = quality_score(c)
        s = lex.get(c.id, 0.0)
        if min_quality_score is not None and q < min_quality_score:
            continue
        if min_lexical_score is not None and s < min_lexical_score:
            continue
        if remove_duplicates:
            key = " ".join(c.raw_text.lower().split())[:DEDUPE_KEY_CHARS]
            if key in seen:
                continue
            seen.add(key)
        c.quality_score = q
        c.lexical_score = s
        c.total_score = q + s
        survivors.append(c)

    if max_chunks is not None and len(survivors) > max_chunks:
        best = sorted(survivors, key=lambda c: c.total_score or 0.0, reverse=True)[:max_chunks]
        keep = {c.id for c in best}
        survivors = [c for c in survivors if c.id in keep]

    logger.info("Filter kept %d of %d chunks", len(survivors), len(chunks))
    return survivors
