from __future__ import annotations

import enum
import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..errors import EmbedderUnavailable, MalformedCacheSnapshot
from ..retrieve.fuse import blend_hits, rank
from .dense import DenseStore
from .fingerprint import content_hash, fingerprint
from .lexical import LexicalIndexer
from .schema import CacheSnapshot, Chunk, EmbeddingRecord, Hit, SearchResult
from .store import KeyValueStore

logger = logging.getLogger(__name__)

LEXICAL_CANDIDATE_THRESHOLD = 0.1


class InsertStatus(str, enum.Enum):
    INSERTED = "inserted"
    # a valid snapshot supplied the embeddings
    REUSED = "reused"
    # a stale snapshot was discarded; re-embed and call insert again
    CACHE_INVALIDATED = "cache_invalidated"


class CacheStatus(str, enum.Enum):
    HIT = "hit"
    MISS = "miss"
    INVALIDATED = "invalidated"


def decode_snapshot(blob: bytes) -> CacheSnapshot:
    try:
        return CacheSnapshot.model_validate_json(blob)
    except (ValidationError, ValueError) as e:
        raise MalformedCacheSnapshot(str(e)) from e


def snapshot_is_valid(snap: CacheSnapshot, chunks: List[Chunk], identity: Tuple[str, str]) -> bool:
    """Reusable only when both the content hash and the embedder identity match."""
    if snap.embedding_provider is None or snap.embedding_model is None:
        return False
    if (snap.embedding_provider, snap.embedding_model) != tuple(identity):
        return False
    return snap.content_hash == content_hash(chunks)


class HybridIndex:
    """
    Lexical + vector index for one session, persisted as a single snapshot
    under ``session_key`` in a key-value store.

    Writers (``insert``/``clear``/``restore``) must not overlap with each other
    or with ``search``; the session serializes them.
    """

    def __init__(
        self,
        session_key: str,
        store: KeyValueStore,
        embedder=None,
        identity: Optional[Tuple[str, str]] = None,
    ) -> None:
        self.session_key = session_key
        self.store = store
        self.embedder = embedder
        if identity is None and embedder is not None:
            identity = tuple(embedder.identity())
        self.identity: Tuple[str, str] = tuple(identity) if identity else ("none", "none")
        self.lexical = LexicalIndexer()
        self.dense = DenseStore()

    def __len__(self) -> int:
        return len(self.lexical)

    @property
    def has_embeddings(self) -> bool:
        return len(self.dense) > 0

    # -- snapshot io -----------------------------------------------------
    async def _load_snapshot(self) -> Optional[CacheSnapshot]:
        blob = await self.store.get(self.session_key)
        if blob is None:
            return None
        try:
            return decode_snapshot(blob)
        except MalformedCacheSnapshot as e:
            logger.warning("Discarding unreadable snapshot %s: %s", self.session_key, e)
            await self.store.delete(self.session_key)
            return None

    async def _persist(self, chunks: List[Chunk]) -> None:
        snap = CacheSnapshot(
            embeddings=self.dense.vectors(),
            chunks={c.id: c for c in chunks},
            content_hash=content_hash(chunks),
            embedding_provider=self.identity[0],
            embedding_model=self.identity[1],
            timestamp=time.time(),
        )
        await self.store.put(self.session_key, snap.model_dump_json().encode("utf-8"))
        logger.debug("Persisted snapshot %s (%d chunks, %d vectors)", self.session_key, len(chunks), len(self.dense))

    def _load_state(self, chunks: List[Chunk], vectors: Dict[str, Sequence[float]]) -> None:
        self.lexical.build(chunks)
        self.dense.clear()
        for c in chunks:
            vec = vectors.get(c.id)
            if vec is not None:
                self.dense.add(EmbeddingRecord(chunk_id=c.id, vector=list(vec), fingerprint=fingerprint(c.raw_text)))

    async def _discard(self, reason: str) -> None:
        logger.info("Cache for %s invalidated (%s)", self.session_key, reason)
        self.lexical.clear()
        self.dense.clear()
        await self.store.delete(self.session_key)

    async def restore(self, chunks: List[Chunk]) -> CacheStatus:
        """Load a stored snapshot if it is still valid for ``chunks``."""
        snap = await self._load_snapshot()
        if snap is None:
            logger.debug("No snapshot for %s", self.session_key)
            return CacheStatus.MISS
        if not snapshot_is_valid(snap, chunks, self.identity):
            legacy = snap.embedding_provider is None or snap.embedding_model is None
            await self._discard("legacy snapshot without embedder identity" if legacy else "content or embedder changed")
            return CacheStatus.INVALIDATED
        self._load_state(chunks, snap.embeddings)
        logger.info("Reusing cached embeddings for %s (%d chunks)", self.session_key, len(chunks))
        return CacheStatus.HIT

    # -- writes ----------------------------------------------------------
    async def insert(
        self,
        chunks: List[Chunk],
        embeddings: Optional[Dict[str, Sequence[float]]] = None,
        persist: bool = True,
    ) -> InsertStatus:
        """
        Index ``chunks`` and persist the snapshot.

        If a stored snapshot exists but no longer matches the chunks or the
        embedder, everything is dropped and ``CACHE_INVALIDATED`` is returned
        without inserting; the caller re-embeds and calls again. With a valid
        snapshot and no ``embeddings`` the stored vectors are reused. With
        ``persist=False`` the state stays in memory (used for degraded,
        lexical-only builds that must not overwrite a good snapshot).
        """
        snap = await self._load_snapshot()
        status = InsertStatus.INSERTED
        if snap is not None:
            if not snapshot_is_valid(snap, chunks, self.identity):
                await self._discard("snapshot does not match incoming chunks")
                return InsertStatus.CACHE_INVALIDATED
            if embeddings is None:
                embeddings = snap.embeddings
                status = InsertStatus.REUSED

        self._load_state(chunks, embeddings or {})
        if persist:
            await self._persist(chunks)
        return status

    async def clear(self) -> None:
        self.lexical.clear()
        self.dense.clear()
        await self.store.delete(self.session_key)

    # -- reads -----------------------------------------------------------
    async def search(
        self, query: str, limit: int = 10, threshold: float = 0.7, hybrid: bool = True
    ) -> List[SearchResult]:
        if not len(self.lexical) or not query.strip():
            return []
        use_vectors = hybrid and self.has_embeddings and self.embedder is not None
        lexical_hits = self.lexical.search(
            query,
            top_k=limit * 2 if use_vectors else limit,
            min_score=LEXICAL_CANDIDATE_THRESHOLD,
        )

        hits: List[Hit] = lexical_hits
        if use_vectors:
            try:
                qvec = await self.embedder.embed(query)
            except EmbedderUnavailable as e:
                logger.warning("Embedder unavailable, falling back to lexical search: %s", e)
                use_vectors = False
            else:
                hits = blend_hits(lexical_hits, self.dense.search(qvec), limit)

        ranked = rank(hits, threshold, limit)
        results = []
        for h in ranked:
            chunk = self.lexical.get(h.chunk_id)
            if chunk is not None:
                results.append(SearchResult(chunk=chunk, score=h.score))
        logger.debug(
            "search %r hybrid=%s -> %d results (lexical candidates=%d)",
            query[:60],
            use_vectors,
            len(results),
            len(lexical_hits),
        )
        return results
