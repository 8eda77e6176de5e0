from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

from ..errors import EmbedderUnavailable
from ..index.dense import cosine
from ..index.schema import Chunk, Citation, SearchResult

logger = logging.getLogger(__name__)

SENT_BOUNDARY = re.compile(r"[.!?]+\s+")

STRONG = 0.75
MODERATE = 0.65
WEAK = 0.55
MAX_MODERATE = 2
MAX_LEXICAL = 2
KEYWORD_RATIO = 0.2
LEXICAL_CONFIDENCE = 0.5

STOP_WORDS = frozenset(
    """
    the and for are but not you all can her was one our out day get has him his how its may new
    now old see two way who boy did let put say she too use that this with from have they will
    what when where which there their them then than been were would could should about into
    also just only some such more most very your
    """.split()
)


@dataclass
class Segment:
    text: str
    start: int
    end: int


def split_segments(answer: str) -> List[Segment]:
    """Sentences of ``answer`` with their character offsets (terminal punctuation excluded)."""
    segments: List[Segment] = []
    pos = 0

    def push(lo: int, hi: int) -> None:
        piece = answer[lo:hi]
        stripped = piece.strip()
        if not stripped:
            return
        start = lo + (len(piece) - len(piece.lstrip()))
        segments.append(Segment(text=stripped, start=start, end=start + len(stripped)))

    for m in SENT_BOUNDARY.finditer(answer or ""):
        push(pos, m.start())
        pos = m.end()
    if answer:
        tail = answer[pos:]
        # drop a trailing run of terminal punctuation from the last sentence
        push(pos, pos + len(tail.rstrip().rstrip(".!?")))
    return segments


def _words(text: str) -> List[str]:
    return re.sub(r"[^\w\s]", " ", text.lower()).split()


def extract_keywords(text: str) -> Set[str]:
    return {w for w in _words(text) if len(w) > 3 and w not in STOP_WORDS}


def extract_phrases(text: str, min_len: int = 3, max_len: int = 5) -> List[str]:
    words = [w for w in text.lower().split() if len(w) > 2]
    phrases = []
    for n in range(min_len, max_len + 1):
        for i in range(0, len(words) - n + 1):
            phrases.append(" ".join(words[i : i + n]))
    return phrases


def lexical_match(segment: str, source: str) -> bool:
    source_l = source.lower()
    keywords = extract_keywords(segment)
    if keywords:
        overlap = keywords & extract_keywords(source)
        if len(overlap) / len(keywords) > KEYWORD_RATIO:
            return True
    return any(p in source_l for p in extract_phrases(segment))


def source_text(item: SearchResult | Chunk) -> str:
    chunk = item.chunk if isinstance(item, SearchResult) else item
    return chunk.raw_text or chunk.text


class CitationMapper:
    """Attributes answer sentences to the ranked sources the answer was built from."""

    def __init__(self, embedder=None) -> None:
        self.embedder = embedder

    async def _similarities(
        self, segments: List[Segment], sources: List[str]
    ) -> Optional[List[List[float]]]:
        if self.embedder is None:
            return None
        try:
            seg_vecs = await self.embedder.embed_batch([s.text for s in segments])
            src_vecs = await self.embedder.embed_batch(sources)
        except EmbedderUnavailable as e:
            logger.warning("Citation mapping falls back to lexical matching: %s", e)
            return None
        return [[cosine(sv, cv) for cv in src_vecs] for sv in seg_vecs]

    def _accept(self, sims: Sequence[float], segment: str, sources: List[str]) -> List[int]:
        accepted: List[int] = []
        for i in sorted(range(len(sims)), key=lambda j: sims[j], reverse=True):
            s = sims[i]
            if s > STRONG:
                accepted.append(i)
            elif s > MODERATE and len(accepted) < MAX_MODERATE:
                accepted.append(i)
            elif s > WEAK and not accepted and lexical_match(segment, sources[i]):
                accepted.append(i)
        return accepted

    async def map(self, answer: str, sources: Sequence[SearchResult | Chunk]) -> List[Citation]:
        segments = split_segments(answer)
        texts = [source_text(s) for s in sources]
        if not segments or not texts:
            return []

        sim_matrix = await self._similarities(segments, texts)
        citations: List[Citation] = []
        for k, seg in enumerate(segments):
            sims = sim_matrix[k] if sim_matrix is not None else None
            accepted = self._accept(sims, seg.text, texts) if sims is not None else []
            if accepted:
                confidence = max(sims[i] for i in accepted)
            else:
                accepted = [i for i, t in enumerate(texts) if lexical_match(seg.text, t)][:MAX_LEXICAL]
                confidence = LEXICAL_CONFIDENCE
            if not accepted:
                continue
            citations.append(
                Citation(
                    start=seg.start,
                    end=seg.end,
                    source_indices=sorted(accepted),
                    confidence=float(confidence),
                )
            )
        citations.sort(key=lambda c: c.start)
        logger.debug("Mapped %d of %d sentences to sources", len(citations), len(segments))
        return citations
