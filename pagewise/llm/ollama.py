# pagewise/llm/ollama.py
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from typing import Any, Dict, Optional

import requests

from ..errors import GeneratorUnavailable
from .base import ChunkCallback, Generator

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA = "http://localhost:11434"


def _timeouts() -> tuple[float, float]:
    """Return (connect_timeout, read_timeout) in seconds; env-overridable."""
    # generous read timeout: the first call may wait for the model to load
    ct = float(os.getenv("OLLAMA_CONNECT_TIMEOUT", "10"))
    rt = float(os.getenv("OLLAMA_READ_TIMEOUT", "600"))
    return (ct, rt)


def _normalize_endpoint(ep: Optional[str]) -> str:
    """explicit endpoint > OLLAMA_HOST > default; ensure scheme; strip trailing slash."""
    cand = (ep or os.getenv("OLLAMA_HOST") or DEFAULT_OLLAMA).strip()
    if not re.match(r"^https?://", cand):
        cand = "http://" + cand
    return cand.rstrip("/")


def _ollama_options(options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    options = options or {}
    if options.get("temperature") is not None:
        out["temperature"] = float(options["temperature"])
    if options.get("max_tokens") is not None:
        # Ollama uses num_predict for token limit
        out["num_predict"] = int(options["max_tokens"])
    return out


class OllamaGenerator(Generator):
    """
    Answer generator backed by Ollama's /api/generate.

        gen = OllamaGenerator(model="llama3.1:8b", endpoint="http://localhost:11434", keep_alive="30m")
        text = await gen.generate(prompt, {"temperature": 0.2}, on_chunk=print)

    With ``on_chunk`` the request streams and each partial response is passed
    to the callback as it arrives.
    """

    def __init__(
        self,
        model: str,
        endpoint: Optional[str] = None,
        keep_alive: Optional[str] = None,
        **_: Any,
    ) -> None:
        self.model = model
        self.base = _normalize_endpoint(endpoint)
        self.keep_alive = keep_alive

    def _payload(self, prompt: str, options: Optional[Dict[str, Any]], stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self.model, "prompt": prompt, "stream": stream}
        if self.keep_alive:
            payload["keep_alive"] = self.keep_alive
        opts = _ollama_options(options)
        if opts:
            payload["options"] = opts
        return payload

    def _generate_blocking(
        self, prompt: str, options: Optional[Dict[str, Any]], on_chunk: Optional[ChunkCallback]
    ) -> str:
        url = f"{self.base}/api/generate"
        stream = on_chunk is not None
        try:
            r = requests.post(url, json=self._payload(prompt, options, stream), timeout=_timeouts(), stream=stream)
            r.raise_for_status()
            if not stream:
                return (r.json() or {}).get("response", "")
            parts = []
            for line in r.iter_lines():
                if not line:
                    continue
                data = json.loads(line)
                piece = data.get("response", "")
                if piece:
                    parts.append(piece)
                    on_chunk(piece)
                if data.get("done"):
                    break
            return "".join(parts)
        except (requests.exceptions.RequestException, ValueError) as e:
            raise GeneratorUnavailable(f"ollama at {self.base}: {e}") from e

    async def generate(
        self,
        prompt: str,
        options: Optional[Dict[str, Any]] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> str:
        logger.debug("ollama generate model=%s prompt_chars=%d", self.model, len(prompt))
        return await asyncio.to_thread(self._generate_blocking, prompt, options, on_chunk)
