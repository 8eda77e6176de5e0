import pytest
from rank_bm25 import BM25Plus

from pagewise.index.schema import Chunk, Locator
from pagewise.ingest.filter import (
    filter_chunks,
    lexical_scores,
    quality_score,
    remove_boilerplate,
)

VARIED = " ".join(f"word{i}" for i in range(25))  # ~165 chars, no repetition


def mk(cid, raw, level=0, tag="div"):
    return Chunk(
        id=cid,
        text=raw,
        raw_text=raw,
        heading_level=level,
        semantic_tag=tag,
        locator=Locator(xpath=f"/html[1]/body[1]/p[{len(cid)}]"),
    )


def test_quality_rewards_headings_and_optimal_length():
    assert quality_score(mk("a", VARIED, level=2)) == 20
    assert quality_score(mk("a", VARIED, level=5)) == 10
    assert quality_score(mk("a", VARIED, tag="article")) == 15


def test_quality_length_bands():
    assert quality_score(mk("a", "short but fine text here")) == -10
    assert quality_score(mk("a", " ".join(f"w{i}" for i in range(20)))) == 5   # 50-99 chars
    long_text = " ".join(f"token{i}" for i in range(120))                          # 501-1000 chars
    assert 500 < len(long_text) <= 1000
    assert quality_score(mk("a", long_text)) == 5
    huge = " ".join(f"token{i}" for i in range(200))
    assert len(huge) > 1000
    assert quality_score(mk("a", huge)) == -5


def test_quality_penalizes_noise_links_and_repetition():
    noisy = VARIED + " cookie subscribe"
    assert quality_score(mk("a", noisy)) == 10 - 5 - 5

    links = "[x](y) " * 20
    # +10 length, -15 link density, -10 repetition
    assert quality_score(mk("a", links.strip())) == -15

    assert quality_score(mk("a", "spam spam spam spam eggs")) == -10 - 10


def test_lexical_scores_are_positive_and_corpus_relative():
    chunks = [
        mk("a", "lighthouse keeper logbook entries describe storms"),
        mk("b", "lighthouse lamp maintenance schedule"),
    ]
    scores = lexical_scores(chunks)
    assert set(scores) == {"a", "b"}
    assert all(s > 0 for s in scores.values())
    assert lexical_scores([]) == {}


def test_lexical_scores_match_bm25_self_query():
    chunks = [
        mk("a", "lighthouse keeper logbook entries describe storms storms"),
        mk("b", "lighthouse lamp maintenance schedule"),
        mk("c", "harbor tide tables"),
    ]
    docs = [c.raw_text.lower().split() for c in chunks]
    bm25 = BM25Plus(docs, k1=1.5, b=0.75, delta=0.0)
    scores = lexical_scores(chunks)
    for i, c in enumerate(chunks):
        assert scores[c.id] == pytest.approx(bm25.get_scores(sorted(set(docs[i])))[i])


def test_common_term_weighs_less_than_rare_one():
    scores = lexical_scores([mk("x", "lighthouse"), mk("y", "lighthouse"), mk("z", "harbor")])
    assert scores["x"] == pytest.approx(scores["y"])
    assert scores["x"] < scores["z"]


def test_chunk_without_terms_scores_zero():
    scores = lexical_scores([mk("a", "an ox is up"), mk("b", "lighthouse lamp")])
    assert scores["a"] == 0.0
    assert scores["b"] > 0
    assert lexical_scores([mk("a", "ox")]) == {"a": 0.0}


def test_duplicates_by_normalized_text_leave_one():
    same = "The reservoir opens to visitors at dawn."
    chunks = [mk("first", same), mk("second", "  " + same.upper() + " ")]
    kept = filter_chunks(chunks)
    assert len(kept) == 1


def test_scores_written_back_on_survivors():
    kept = filter_chunks([mk("a", VARIED, level=1)])
    c = kept[0]
    assert c.quality_score == 20
    assert c.lexical_score is not None and c.lexical_score > 0
    assert c.total_score == pytest.approx(c.quality_score + c.lexical_score)


def test_min_quality_drops_low_scoring_chunks():
    chunks = [mk("good", VARIED, level=2), mk("bad", "tiny text")]
    kept = filter_chunks(chunks, min_quality_score=0)
    assert [c.id for c in kept] == ["good"]
    assert chunks[1].quality_score is None


def test_max_chunks_keeps_best_in_document_order():
    chunks = [
        mk("low", "brief note"),
        mk("high", VARIED, level=1),
        mk("mid", VARIED.replace("word1 ", "other ")),
    ]
    kept = filter_chunks(chunks, max_chunks=2)
    assert [c.id for c in kept] == ["high", "mid"]


def test_boilerplate_pass():
    chunks = [
        mk("short", "Menu"),
        mk("footer", "We use cookies. Read our privacy policy and terms of service."),
        mk("one-hit", "Our cookie recipe uses brown butter and a pinch of sea salt."),
        mk("body", VARIED),
    ]
    kept = [c.id for c in remove_boilerplate(chunks)]
    assert kept == ["one-hit", "body"]
