import pytest

from pagewise.index.hybrid import CacheStatus, HybridIndex, InsertStatus
from pagewise.index.schema import CacheSnapshot, Chunk, Hit, Locator
from pagewise.index.store import FileStore, MemoryStore
from pagewise.ingest.dom import parse_html
from pagewise.ingest.segment import Segmenter
from pagewise.retrieve.fuse import blend_hits, blend_score

KEY = "pagewise-example.com-abc"


def mk(cid, raw):
    return Chunk(id=cid, text=raw, raw_text=raw, heading_path=["Docs"], locator=Locator(xpath="/html[1]"))


def docs(stamp="2024-01-01T10:00:00Z"):
    return [
        mk("a", f"Alpha bravo charlie delta. Last updated: {stamp}"),
        mk("b", "Echo foxtrot golf hotel."),
    ]


async def _embed_all(embedder, chunks):
    vecs = await embedder.embed_batch([c.text for c in chunks])
    return {c.id: v for c, v in zip(chunks, vecs)}


def test_blend_weights_are_even():
    assert blend_score(0.8, 0.6) == pytest.approx(0.7)
    assert blend_score(1.7, 0.0) == pytest.approx(0.5)  # lexical is clamped


def test_blend_hits_adds_vector_only_candidates():
    lexical = [Hit(chunk_id="a", score=0.8)]
    vector = [Hit(chunk_id="a", score=0.6), Hit(chunk_id="b", score=0.9), Hit(chunk_id="c", score=0.2)]
    merged = {h.chunk_id: h.score for h in blend_hits(lexical, vector, limit=1)}
    assert merged["a"] == pytest.approx(0.7)
    assert merged["b"] == pytest.approx(0.45)
    assert "c" not in merged


@pytest.mark.asyncio
async def test_vector_only_chunk_appears_when_it_clears_threshold(fakes):
    chunks = [mk("a", "alpha bravo charlie delta"), mk("b", "echo foxtrot golf hotel")]
    emb = fakes.TableEmbedder(
        {
            "alpha": [1.0, 0.0, 0.0],
            "alpha bravo charlie delta": [0.0, 1.0, 0.0],
            "echo foxtrot golf hotel": [1.0, 0.0, 0.0],
        }
    )
    index = HybridIndex(KEY, MemoryStore(), emb)
    await index.insert(chunks, await _embed_all(emb, chunks))

    results = await index.search("alpha", limit=5, threshold=0.45)
    scores = {r.chunk.id: r.score for r in results}
    assert scores["a"] == pytest.approx(0.75)   # 0.5 * 1.0 + 0.5 * (0 + 1) / 2
    assert scores["b"] == pytest.approx(0.5)    # vector only
    assert [r.chunk.id for r in results] == ["a", "b"]

    strict = await index.search("alpha", limit=5, threshold=0.7)
    assert [r.chunk.id for r in strict] == ["a"]


@pytest.mark.asyncio
async def test_lexical_only_search_when_not_hybrid(hash_embedder):
    chunks = docs()
    index = HybridIndex(KEY, MemoryStore(), hash_embedder)
    await index.insert(chunks, await _embed_all(hash_embedder, chunks))
    results = await index.search("foxtrot golf", hybrid=False)
    assert [r.chunk.id for r in results] == ["b"]
    assert results[0].score == pytest.approx(1.0)
    assert hash_embedder.query_calls == 0


@pytest.mark.asyncio
async def test_search_degrades_when_embedder_is_down(fakes):
    chunks = docs()
    store = MemoryStore()
    index = HybridIndex(KEY, store, fakes.DownEmbedder())
    await index.insert(chunks, {"a": [1.0, 0.0], "b": [0.0, 1.0]})
    results = await index.search("echo foxtrot")
    assert [r.chunk.id for r in results] == ["b"]


@pytest.mark.asyncio
async def test_search_on_empty_index_is_empty(hash_embedder):
    index = HybridIndex(KEY, MemoryStore(), hash_embedder)
    assert await index.search("anything") == []


@pytest.mark.asyncio
async def test_cache_hit_requires_same_content_and_identity(fakes):
    store = MemoryStore()
    m1 = fakes.HashEmbedder(model="m1")
    first = HybridIndex(KEY, store, m1)
    chunks = docs()
    assert await first.insert(chunks, await _embed_all(m1, chunks)) is InsertStatus.INSERTED

    # same content (timestamp aside), same embedder
    again = HybridIndex(KEY, store, fakes.HashEmbedder(model="m1"))
    assert await again.restore(docs("2025-02-02T02:02:02Z")) is CacheStatus.HIT
    assert again.has_embeddings

    # same content, different model
    other_model = HybridIndex(KEY, store, fakes.HashEmbedder(model="m2"))
    assert await other_model.restore(chunks) is CacheStatus.INVALIDATED
    assert await store.get(KEY) is None


@pytest.mark.asyncio
async def test_cache_invalidated_by_content_change(fakes):
    store = MemoryStore()
    m1 = fakes.HashEmbedder(model="m1")
    chunks = docs()
    await HybridIndex(KEY, store, m1).insert(chunks, await _embed_all(m1, chunks))

    changed = [mk("a", "Alpha bravo charlie epsilon."), chunks[1]]
    index = HybridIndex(KEY, store, fakes.HashEmbedder(model="m1"))
    assert await index.restore(changed) is CacheStatus.INVALIDATED
    assert await store.get(KEY) is None


@pytest.mark.asyncio
async def test_insert_reports_invalidation_then_succeeds(fakes):
    store = MemoryStore()
    old = fakes.HashEmbedder(model="old")
    chunks = docs()
    await HybridIndex(KEY, store, old).insert(chunks, await _embed_all(old, chunks))

    new = fakes.HashEmbedder(model="new")
    index = HybridIndex(KEY, store, new)
    vectors = await _embed_all(new, chunks)
    assert await index.insert(chunks, vectors) is InsertStatus.CACHE_INVALIDATED
    assert len(index) == 0
    assert await index.insert(chunks, vectors) is InsertStatus.INSERTED
    assert len(index) == 2

    snap = CacheSnapshot.model_validate_json(await store.get(KEY))
    assert (snap.embedding_provider, snap.embedding_model) == ("fake", "new")
    assert set(snap.chunks) == {"a", "b"}
    assert set(snap.embeddings) == {"a", "b"}


@pytest.mark.asyncio
async def test_insert_reuses_valid_snapshot_vectors(fakes):
    store = MemoryStore()
    emb = fakes.HashEmbedder(model="m1")
    chunks = docs()
    await HybridIndex(KEY, store, emb).insert(chunks, await _embed_all(emb, chunks))

    index = HybridIndex(KEY, store, fakes.HashEmbedder(model="m1"))
    assert await index.insert(chunks) is InsertStatus.REUSED
    assert index.has_embeddings


@pytest.mark.asyncio
async def test_legacy_snapshot_without_identity_is_discarded(hash_embedder):
    store = MemoryStore()
    chunks = docs()
    legacy = CacheSnapshot(
        embeddings={"a": [1.0], "b": [0.0]},
        chunks={c.id: c for c in chunks},
        content_hash="whatever",
        timestamp=0.0,
    )
    await store.put(KEY, legacy.model_dump_json().encode())
    index = HybridIndex(KEY, store, hash_embedder)
    assert await index.restore(chunks) is CacheStatus.INVALIDATED
    assert await store.get(KEY) is None


@pytest.mark.asyncio
async def test_malformed_snapshot_is_a_plain_miss(hash_embedder, tmp_path):
    store = FileStore(tmp_path)
    await store.put(KEY, b"{not json")
    index = HybridIndex(KEY, store, hash_embedder)
    assert await index.restore(docs()) is CacheStatus.MISS
    assert not store.path_for(KEY).exists()


@pytest.mark.asyncio
async def test_clear_drops_everything(hash_embedder):
    store = MemoryStore()
    chunks = docs()
    index = HybridIndex(KEY, store, hash_embedder)
    await index.insert(chunks, await _embed_all(hash_embedder, chunks))
    await index.clear()
    assert len(index) == 0 and not index.has_embeddings
    assert await store.get(KEY) is None
    assert await index.search("alpha") == []


@pytest.mark.asyncio
async def test_scenario_literal_paragraph_search(scenario_html, hash_embedder):
    chunks = Segmenter().segment(parse_html(scenario_html).find("body"))
    index = HybridIndex(KEY, MemoryStore(), hash_embedder)
    await index.insert(chunks, await _embed_all(hash_embedder, chunks))

    for chunk in chunks:
        results = await index.search(chunk.raw_text)
        assert results, chunk.raw_text
        assert results[0].chunk.id == chunk.id
        assert results[0].score >= 0.7
