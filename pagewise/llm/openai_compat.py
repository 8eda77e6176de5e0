from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, Optional

import requests

from ..errors import GeneratorUnavailable
from .base import ChunkCallback, Generator
from .ollama import _timeouts

logger = logging.getLogger(__name__)


class OpenAICompatGenerator(Generator):
    """Any server speaking the OpenAI ``/v1/chat/completions`` protocol."""

    def __init__(self, model: str, endpoint: str, api_key: Optional[str] = None, **_: Any) -> None:
        self.model = model
        self.base = endpoint.rstrip("/")
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")

    def _headers(self) -> Dict[str, str]:
        h = {"Content-Type": "application/json"}
        if self.api_key:
            h["Authorization"] = f"Bearer {self.api_key}"
        return h

    def _generate_blocking(
        self, prompt: str, options: Optional[Dict[str, Any]], on_chunk: Optional[ChunkCallback]
    ) -> str:
        options = options or {}
        stream = on_chunk is not None
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": stream,
        }
        if options.get("temperature") is not None:
            payload["temperature"] = float(options["temperature"])
        if options.get("max_tokens") is not None:
            payload["max_tokens"] = int(options["max_tokens"])
        try:
            r = requests.post(
                f"{self.base}/v1/chat/completions",
                json=payload,
                headers=self._headers(),
                timeout=_timeouts(),
                stream=stream,
            )
            r.raise_for_status()
            if not stream:
                data = r.json() or {}
                return data["choices"][0]["message"]["content"] or ""
            parts = []
            for line in r.iter_lines(decode_unicode=True):
                if not line or not line.startswith("data:"):
                    continue
                body = line[len("data:"):].strip()
                if body == "[DONE]":
                    break
                delta = json.loads(body)["choices"][0].get("delta", {}).get("content")
                if delta:
                    parts.append(delta)
                    on_chunk(delta)
            return "".join(parts)
        except (requests.exceptions.RequestException, ValueError, KeyError, IndexError) as e:
            raise GeneratorUnavailable(f"{self.base}: {e}") from e

    async def generate(
        self,
        prompt: str,
        options: Optional[Dict[str, Any]] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> str:
        return await asyncio.to_thread(self._generate_blocking, prompt, options, on_chunk)
