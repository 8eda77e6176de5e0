from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import yaml
from lxml.html import HtmlElement

from .answer.citations import CitationMapper
from .answer.prompt import build_answer_prompt, build_context, usable_results
from .embeddings import make_embedder
from .errors import EmbedderUnavailable, GeneratorUnavailable
from .index.hybrid import CacheStatus, HybridIndex, InsertStatus
from .index.schema import Answer, Chunk, SearchResult
from .index.store import KeyValueStore, make_store
from .ingest.dom import parse_html, tag_excluder
from .ingest.filter import filter_chunks, remove_boilerplate
from .ingest.locator import resolve
from .ingest.main_content import MainContentOracle, find_main_content
from .ingest.segment import Segmenter
from .llm.base import ChunkCallback, Generator
from .llm.factory import make_generator
from .logging_utils import session_logger
from .providers import parse_provider
from .utils.log import Logger

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "segmenter": {
        "min_content_chars": 30,
        "min_uncovered_chars": 50,
        "group_size": 5,
        "excluded_tags": ["iframe", "frame", "object", "embed"],
    },
    "filter": {
        "min_quality_score": -5,
        "min_lexical_score": None,
        "max_chunks": None,
        "remove_duplicates": True,
    },
    "retrieval": {"limit": 10, "threshold": 0.7, "hybrid": True},
    "embeddings": {"kind": "local", "backend": "fastembed", "model": "BAAI/bge-small-en-v1.5"},
    "llm": {
        "kind": "remote",
        "backend": "ollama",
        "model": "llama3.1:8b",
        "endpoint": None,
        "keep_alive": "30m",
        "offline": True,
        "temperature": 0.2,
    },
    "answer": {"top_k": 15, "threshold": 0.5, "min_context_chars": 100, "history_turns": 10},
    "store": {"backend": "file", "dir": ".pagewise/cache"},
    "app": {"log_dir": "logs"},
}


def _merge(base: dict, override: dict) -> dict:
    out = deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: str | Path | None = None) -> dict:
    """Built-in defaults, overlaid with the YAML file at ``path`` when given."""
    if path is None:
        return deepcopy(DEFAULT_CONFIG)
    with open(path, "r", encoding="utf-8") as f:
        return _merge(DEFAULT_CONFIG, yaml.safe_load(f) or {})


def session_key_for_url(url: str) -> str:
    parts = urlparse(url or "")
    host = parts.hostname or "local"
    path = parts.path or "/"
    digest = hashlib.sha1(path.encode("utf-8")).hexdigest()[:10]
    return f"pagewise-{host}-{digest}"


def _ms(t: float) -> int:
    return int((time.perf_counter() - t) * 1000)


class PageSession:
    """
    Indexing session for a single page.

    Owns the chunk corpus and the hybrid index. ``ensure_index`` builds at
    most once; callers arriving while a build runs await the same task.
    """

    def __init__(
        self,
        document: HtmlElement,
        url: str = "",
        embedder=None,
        generator: Optional[Generator] = None,
        store: Optional[KeyValueStore] = None,
        cfg: Optional[dict] = None,
        main_content_oracle: Optional[MainContentOracle] = None,
    ) -> None:
        self.cfg = _merge(DEFAULT_CONFIG, cfg or {})
        self.document = document
        self.url = url
        self.session_key = session_key_for_url(url)
        self.log = session_logger(__name__, self.session_key, url)
        self.embedder = embedder
        self.generator = generator
        self.store = store if store is not None else make_store(self.cfg["store"])
        self.oracle = main_content_oracle
        self.index = HybridIndex(self.session_key, self.store, embedder)
        self.mapper = CitationMapper(embedder)
        self.chunks: List[Chunk] = []
        self._build_task: Optional[asyncio.Future] = None
        self._lock = asyncio.Lock()

        log_dir = self.cfg["app"].get("log_dir")
        self.query_log = Logger(Path(log_dir) / "queries.log.jsonl") if log_dir else None

    @classmethod
    def from_html(cls, markup: str | bytes, url: str = "", **kw: Any) -> "PageSession":
        return cls(parse_html(markup, url), url=url, **kw)

    # -- indexing --------------------------------------------------------
    def segment(self) -> List[Chunk]:
        """Main content -> chunks -> boilerplate pass -> scored, filtered corpus."""
        seg_cfg = self.cfg["segmenter"]
        root = find_main_content(self.document, oracle=self.oracle)
        segmenter = Segmenter(
            url=self.url,
            min_content_chars=int(seg_cfg["min_content_chars"]),
            min_uncovered_chars=int(seg_cfg["min_uncovered_chars"]),
            group_size=int(seg_cfg["group_size"]),
            excluded=tag_excluder(seg_cfg["excluded_tags"]),
        )
        chunks = remove_boilerplate(segmenter.segment(root))
        f_cfg = self.cfg["filter"]
        return filter_chunks(
            chunks,
            min_quality_score=f_cfg.get("min_quality_score"),
            min_lexical_score=f_cfg.get("min_lexical_score"),
            max_chunks=f_cfg.get("max_chunks"),
            remove_duplicates=bool(f_cfg.get("remove_duplicates", True)),
        )

    async def _embed(self, chunks: List[Chunk]) -> Optional[Dict[str, List[float]]]:
        if self.embedder is None:
            return None
        try:
            vectors = await self.embedder.embed_batch([c.text for c in chunks])
        except EmbedderUnavailable as e:
            self.log.warning("Embedder unavailable, indexing lexical-only: %s", e)
            return None
        return {c.id: v for c, v in zip(chunks, vectors)}

    async def _build(self) -> List[Chunk]:
        async with self._lock:
            t0 = time.perf_counter()
            chunks = self.segment()
            self.chunks = chunks
            if not chunks:
                self.log.warning("Nothing indexable on %s", self.url or self.session_key)
                await self.index.clear()
                return []

            cache = await self.index.restore(chunks)
            if cache is not CacheStatus.HIT:
                embeddings = await self._embed(chunks)
                persist = embeddings is not None or self.embedder is None
                status = await self.index.insert(chunks, embeddings, persist=persist)
                if status is InsertStatus.CACHE_INVALIDATED:
                    status = await self.index.insert(chunks, embeddings, persist=persist)
                self.log.debug("Insert for %s: %s", self.session_key, status.value)

            self.log.info(
                "Indexed %d chunks for %s (cache=%s) in %d ms",
                len(chunks),
                self.url or self.session_key,
                cache.value,
                _ms(t0),
                extra={"chunks": len(chunks), "elapsed_ms": _ms(t0)},
            )
            return chunks

    async def ensure_index(self) -> List[Chunk]:
        task = self._build_task
        if task is None:
            task = self._build_task = asyncio.ensure_future(self._build())
        try:
            return await asyncio.shield(task)
        except Exception:
            # forget a failed build so the next caller retries
            if self._build_task is task:
                self._build_task = None
            raise

    async def reindex(self) -> List[Chunk]:
        async with self._lock:
            await self.index.clear()
            self.chunks = []
            self._build_task = None
        return await self.ensure_index()

    def close(self) -> None:
        """Drop the in-flight build; work already issued finishes but its result is ignored."""
        task, self._build_task = self._build_task, None
        if task is not None:
            task.add_done_callback(self._discard_build)

    def _discard_build(self, task: asyncio.Future) -> None:
        # nobody awaits a dropped build; retrieve its outcome so asyncio stays quiet
        if not task.cancelled() and task.exception() is not None:
            self.log.debug("Dropped build failed: %r", task.exception())

    # -- queries ---------------------------------------------------------
    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        hybrid: Optional[bool] = None,
    ) -> List[SearchResult]:
        await self.ensure_index()
        if not self.chunks:
            return []
        r_cfg = self.cfg["retrieval"]
        return await self.index.search(
            query,
            limit=int(limit if limit is not None else r_cfg["limit"]),
            threshold=float(threshold if threshold is not None else r_cfg["threshold"]),
            hybrid=bool(hybrid if hybrid is not None else r_cfg["hybrid"]),
        )

    async def ask(
        self,
        question: str,
        history: Optional[Sequence[Dict[str, str]]] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Answer:
        """
        Retrieve, generate and cite.

        Never raises for missing context or an unavailable generator: the
        returned Answer simply has ``answer=None`` and no citations.
        """
        a_cfg = self.cfg["answer"]
        timers: Dict[str, int] = {}
        t0 = time.perf_counter()

        top_k = int(a_cfg["top_k"])
        results = await self.search(question, limit=top_k, threshold=float(a_cfg["threshold"]))
        sources = usable_results(results, top_k=top_k)
        timers["search_ms"] = _ms(t0)
        context = build_context(sources)
        ans = Answer(question=question, results=sources)
        # validation copies dicts passed in; write to the model's own
        trace: Dict[str, Any] = ans.trace
        trace.update(session=self.session_key, source_ids=[r.chunk.id for r in sources])
        if len(context) < int(a_cfg["min_context_chars"]):
            trace["skipped"] = "insufficient_context"
        elif self.generator is None:
            trace["skipped"] = "no_generator"
        else:
            prompt = build_answer_prompt(
                question, context, history=history, max_turns=int(a_cfg["history_turns"])
            )
            t1 = time.perf_counter()
            try:
                ans.answer = await self.generator.generate(
                    prompt, {"temperature": self.cfg["llm"].get("temperature")}, on_chunk=on_chunk
                )
            except GeneratorUnavailable as e:
                self.log.warning("Generator unavailable, returning sources only: %s", e)
                trace["skipped"] = "generator_unavailable"
            timers["generate_ms"] = _ms(t1)

            if ans.answer:
                t2 = time.perf_counter()
                ans.citations = await self.mapper.map(ans.answer, sources)
                timers["citations_ms"] = _ms(t2)

        timers["total_ms"] = _ms(t0)
        trace["timers_ms"] = timers
        self.log.info(
            "ask: %d sources, %d citations%s",
            len(sources),
            len(ans.citations),
            f" (skipped: {trace['skipped']})" if "skipped" in trace else "",
            extra={"query": question[:200], "elapsed_ms": timers["total_ms"]},
        )
        if self.query_log is not None:
            self.query_log.write(
                {
                    "question": question,
                    "trace": trace,
                    "citations": [c.model_dump() for c in ans.citations],
                }
            )
        return ans

    def resolve(self, result: SearchResult | Chunk) -> Optional[HtmlElement]:
        """Find the element a result came from; None when the page changed underneath it."""
        chunk = result.chunk if isinstance(result, SearchResult) else result
        el = resolve(chunk.locator, self.document)
        if el is None:
            self.log.info("Could not locate source of %s", chunk.id)
        return el


def build_session(markup: str | bytes, url: str, cfg: dict, **kw: Any) -> PageSession:
    """Session wired from config: embedder, generator and store."""
    try:
        embedder = make_embedder(parse_provider(cfg["embeddings"]))
    except RuntimeError as e:
        logger.warning("No embedder (%s); search will be lexical-only", e)
        embedder = None
    llm_cfg = cfg["llm"]
    generator = make_generator(
        parse_provider(llm_cfg),
        offline=bool(llm_cfg.get("offline", True)),
        keep_alive=llm_cfg.get("keep_alive"),
    )
    return PageSession.from_html(markup, url, embedder=embedder, generator=generator, cfg=cfg, **kw)
