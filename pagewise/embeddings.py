from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, List, Optional, Protocol, Tuple, Union

import numpy as np
import requests

from .errors import EmbedderUnavailable
from .llm.ollama import _normalize_endpoint, _timeouts
from .providers import LocalProvider, RemoteApiProvider

logger = logging.getLogger(__name__)

BATCH_SIZE = 10


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]: ...

    async def embed_batch(self, texts: List[str]) -> List[List[float]]: ...

    def identity(self) -> Tuple[str, str]: ...


class BaseEmbedder:
    """
    Shared plumbing for embedders: lazy model load behind a single
    initialization task, batching, and worker-thread execution of the
    blocking backend call.

    One instance is meant to be shared by every session that uses the same
    model; the first caller triggers loading and later callers await it.
    """

    provider = "local"

    def __init__(self, model: str, batch_size: int = BATCH_SIZE) -> None:
        self.model_name = model
        self.batch_size = max(1, batch_size)
        self._init_task: Optional[asyncio.Task] = None
        self._ready = False

    def identity(self) -> Tuple[str, str]:
        return (self.provider, self.model_name)

    @property
    def identity_key(self) -> str:
        p, m = self.identity()
        return f"{p}:{m}"

    # subclasses implement these two (blocking)
    def _load(self) -> None:
        pass

    def _encode(self, texts: List[str]) -> List[List[float]]:
        raise NotImplementedError

    async def init(self) -> None:
        if self._ready:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._do_init())
        try:
            await asyncio.shield(self._init_task)
        except EmbedderUnavailable:
            # let a later call retry the load
            self._init_task = None
            raise

    async def _do_init(self) -> None:
        try:
            await asyncio.to_thread(self._load)
        except EmbedderUnavailable:
            raise
        except Exception as e:
            raise EmbedderUnavailable(f"{self.identity_key}: model load failed: {e}") from e
        self._ready = True
        logger.info("Embedder ready: %s", self.identity_key)

    async def embed(self, text: str) -> List[float]:
        out = await self.embed_batch([text])
        return out[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        await self.init()
        vectors: List[List[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]
            try:
                vecs = await asyncio.to_thread(self._encode, batch)
            except EmbedderUnavailable:
                raise
            except Exception as e:
                raise EmbedderUnavailable(f"{self.identity_key}: embedding failed: {e}") from e
            vectors.extend(vecs)
        return vectors


class FastEmbedEmbedder(BaseEmbedder):
    provider = "fastembed"

    def __init__(self, model: str = "BAAI/bge-small-en-v1.5", **kw: Any) -> None:
        super().__init__(model, **kw)
        self.model = None

    def _load(self) -> None:
        from fastembed import TextEmbedding

        self.model = TextEmbedding(model_name=self.model_name)

    def _encode(self, texts: List[str]) -> List[List[float]]:
        return [np.asarray(v, dtype="float32").tolist() for v in self.model.embed(texts)]


class SentenceTransformerEmbedder(BaseEmbedder):
    provider = "sentence-transformers"

    def __init__(self, model: str = "sentence-transformers/all-MiniLM-L6-v2", **kw: Any) -> None:
        super().__init__(model, **kw)
        self.model = None

    def _load(self) -> None:
        from sentence_transformers import SentenceTransformer

        self.model = SentenceTransformer(self.model_name)

    def _encode(self, texts: List[str]) -> List[List[float]]:
        embs = self.model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        return np.asarray(embs, dtype="float32").tolist()


class OllamaEmbedder(BaseEmbedder):
    provider = "ollama"

    def __init__(self, model: str = "nomic-embed-text", endpoint: Optional[str] = None, **kw: Any) -> None:
        super().__init__(model, **kw)
        self.base = _normalize_endpoint(endpoint)

    def _encode(self, texts: List[str]) -> List[List[float]]:
        out = []
        for text in texts:
            try:
                r = requests.post(
                    f"{self.base}/api/embeddings",
                    json={"model": self.model_name, "prompt": text},
                    timeout=_timeouts(),
                )
                r.raise_for_status()
            except requests.exceptions.RequestException as e:
                raise EmbedderUnavailable(f"ollama at {self.base}: {e}") from e
            data = r.json() or {}
            if isinstance(data.get("embedding"), list) and data["embedding"]:
                out.append([float(x) for x in data["embedding"]])
            elif isinstance(data.get("embeddings"), list) and data["embeddings"]:
                out.append([float(x) for x in data["embeddings"][0]])
            else:
                raise EmbedderUnavailable(f"ollama at {self.base}: reply carried no embedding")
        return out


def make_embedder(spec: Union[LocalProvider, RemoteApiProvider]) -> BaseEmbedder:
    backend = (spec.backend or "").lower()
    if isinstance(spec, LocalProvider):
        if backend == "fastembed":
            return FastEmbedEmbedder(model=spec.model)
        if backend in ("sentence-transformers", "sentence_transformers", "st"):
            return SentenceTransformerEmbedder(model=spec.model)
        raise RuntimeError(f"Unsupported local embedding backend: {spec.backend}")
    if backend == "ollama":
        return OllamaEmbedder(model=spec.model, endpoint=spec.endpoint or os.getenv("OLLAMA_HOST"))
    raise RuntimeError(f"Unsupported remote embedding backend: {spec.backend}")
