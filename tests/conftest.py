import hashlib
import re
import sys
from pathlib import Path

import numpy as np
import pytest

# Repo root = one level above tests/
REPO_ROOT = Path(__file__).resolve().parents[1]

# Ensure repo root is on sys.path so `import pagewise` and `import cli` work from a checkout.
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from pagewise.errors import EmbedderUnavailable, GeneratorUnavailable  # noqa: E402
from pagewise.llm.base import Generator  # noqa: E402


class HashEmbedder:
    """Bag-of-words hashing: same words, same vector. Counts calls for cache tests."""

    def __init__(self, model: str = "hash-1024", dim: int = 1024):
        self.model = model
        self.dim = dim
        self.batch_calls = 0
        self.query_calls = 0

    def identity(self):
        return ("fake", self.model)

    def vector(self, text: str):
        v = np.zeros(self.dim, dtype="float32")
        for tok in re.findall(r"[a-z0-9]+", text.lower()):
            v[int(hashlib.md5(tok.encode("utf-8")).hexdigest(), 16) % self.dim] += 1.0
        return v.tolist()

    async def embed(self, text):
        self.query_calls += 1
        return self.vector(text)

    async def embed_batch(self, texts):
        self.batch_calls += 1
        return [self.vector(t) for t in texts]


class TableEmbedder:
    """Returns hand-picked vectors for known strings."""

    def __init__(self, table, default=None, model="table"):
        self.table = dict(table)
        self.default = default
        self.model = model

    def identity(self):
        return ("fake", self.model)

    def _lookup(self, text):
        if text in self.table:
            return list(self.table[text])
        if self.default is None:
            raise KeyError(text)
        return list(self.default)

    async def embed(self, text):
        return self._lookup(text)

    async def embed_batch(self, texts):
        return [self._lookup(t) for t in texts]


class DownEmbedder:
    def identity(self):
        return ("fake", "down")

    async def embed(self, text):
        raise EmbedderUnavailable("backend offline")

    async def embed_batch(self, texts):
        raise EmbedderUnavailable("backend offline")


class FakeGenerator(Generator):
    def __init__(self, reply: str):
        self.reply = reply
        self.prompts = []

    async def generate(self, prompt, options=None, on_chunk=None):
        self.prompts.append(prompt)
        if on_chunk is not None:
            for word in self.reply.split(" "):
                on_chunk(word + " ")
        return self.reply


class DownGenerator(Generator):
    async def generate(self, prompt, options=None, on_chunk=None):
        raise GeneratorUnavailable("connection refused")


@pytest.fixture
def hash_embedder():
    return HashEmbedder()


@pytest.fixture
def fakes():
    """Access to the fake collaborators without importing conftest."""

    class _F:
        pass

    f = _F()
    f.HashEmbedder = HashEmbedder
    f.TableEmbedder = TableEmbedder
    f.DownEmbedder = DownEmbedder
    f.FakeGenerator = FakeGenerator
    f.DownGenerator = DownGenerator
    return f


SCENARIO_HTML = """
<html><body>
<h1>Intro</h1><p>Quantum lattice gardens bloom every spring.</p>
<h2>Details</h2><p>Copper turbines hum beneath the old harbor.</p>
</body></html>
"""


@pytest.fixture
def scenario_html():
    return SCENARIO_HTML


@pytest.fixture
def session_cfg(tmp_path):
    return {"app": {"log_dir": str(tmp_path / "logs")}}
