from __future__ import annotations

import hashlib
import json
import re
from typing import Iterable, List, Tuple

from .schema import Chunk

FINGERPRINT_PREFIX_CHARS = 1000

# order matters: full timestamps before bare times, lead-ins after both
_VOLATILE: List[Tuple[re.Pattern, str]] = [
    (
        re.compile(
            r"\b\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)?(?:Z|[+-]\d{2}:?\d{2})?\b"
        ),
        "<TS>",
    ),
    (re.compile(r"\b\d{1,2}:\d{2}(?::\d{2})?\s*(?:[ap]\.?m\.?)?(?=\W|$)", re.IGNORECASE), "<TIME>"),
    (
        re.compile(
            r"\b(?:\d+|an?|one|few)\s+(?:seconds?|secs?|minutes?|mins?|hours?|hrs?|days?|weeks?|months?|years?)\s+ago\b",
            re.IGNORECASE,
        ),
        "<REL>",
    ),
    (
        re.compile(r"\b(?:just now|yesterday|today|tomorrow|last (?:night|week|month|year))\b", re.IGNORECASE),
        "<REL>",
    ),
    (
        re.compile(
            r"\b(?:last\s+)?(?:updated|modified|edited|published|posted)(?:\s+(?:on|at))?\s*:?",
            re.IGNORECASE,
        ),
        "<UPDATED>",
    ),
    (
        re.compile(
            r"\b\d[\d,.]*\s*[kKmM]?\s+(?:views?|likes?|comments?|shares?|followers?|reads?|votes?|replies|reply|points?|stars?|downloads?|visitors?)\b",
            re.IGNORECASE,
        ),
        "<COUNT>",
    ),
]
_WS = re.compile(r"\s+")


def fingerprint(raw_text: str) -> str:
    """Whitespace-collapsed text with timestamps, relative times and counters masked."""
    s = _WS.sub(" ", raw_text or "").strip()
    for pattern, token in _VOLATILE:
        s = pattern.sub(token, s)
    # placeholders can leave doubled spaces behind
    return _WS.sub(" ", s).strip()


def content_hash(chunks: Iterable[Chunk]) -> str:
    """
    Deterministic hash of a chunk corpus.

    Built from the sorted (id, heading path, length, fingerprint prefix)
    tuples plus the chunk count. The length is taken from the fingerprint
    so a volatile substring that changes width ("9 hours ago" to
    "10 hours ago") does not change the hash.
    """
    rows = []
    for c in chunks:
        fp = fingerprint(c.raw_text)
        rows.append([c.id, list(c.heading_path), len(fp), fp[:FINGERPRINT_PREFIX_CHARS]])
    rows.sort(key=lambda r: (r[0], r[1], r[2], r[3]))
    payload = json.dumps({"count": len(rows), "chunks": rows}, ensure_ascii=False, sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
