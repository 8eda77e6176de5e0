from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class LocalProvider(BaseModel):
    """Model runs in-process (fastembed / sentence-transformers)."""

    kind: Literal["local"] = "local"
    backend: str = "fastembed"
    model: str = "BAAI/bge-small-en-v1.5"


class RemoteApiProvider(BaseModel):
    """Model served over HTTP (Ollama, OpenAI-compatible)."""

    kind: Literal["remote"] = "remote"
    backend: str = "ollama"
    model: str
    endpoint: Optional[str] = None
    api_key: Optional[str] = None


ProviderSpec = Annotated[Union[LocalProvider, RemoteApiProvider], Field(discriminator="kind")]


class _ProviderHolder(BaseModel):
    provider: ProviderSpec


def parse_provider(data: dict) -> Union[LocalProvider, RemoteApiProvider]:
    """Build a provider variant from a config mapping (``kind`` selects the variant)."""
    data = dict(data or {})
    data.setdefault("kind", "local")
    return _ProviderHolder(provider=data).provider
