from typing import Optional, Union

from ..providers import LocalProvider, RemoteApiProvider
from .base import Generator
from .ollama import OllamaGenerator, _normalize_endpoint
from .openai_compat import OpenAICompatGenerator


def _is_local(endpoint: str) -> bool:
    return endpoint.startswith("http://localhost") or endpoint.startswith("http://127.0.0.1")


def make_generator(
    spec: Union[LocalProvider, RemoteApiProvider],
    offline: bool = True,
    keep_alive: Optional[str] = None,
) -> Generator:
    backend = (spec.backend or "ollama").lower()
    if backend == "ollama":
        endpoint = _normalize_endpoint(getattr(spec, "endpoint", None))
    else:
        endpoint = (getattr(spec, "endpoint", None) or "").rstrip("/")
        if not endpoint:
            raise RuntimeError(f"Backend {backend!r} needs an endpoint.")

    # Offline guard: only allow localhost endpoints
    if offline and not _is_local(endpoint):
        raise RuntimeError(f"Offline mode: refusing non-local endpoint: {endpoint}")

    if backend == "ollama":
        return OllamaGenerator(model=spec.model, endpoint=endpoint, keep_alive=keep_alive)
    if backend in ("openai", "openai-compat"):
        return OpenAICompatGenerator(model=spec.model, endpoint=endpoint, api_key=getattr(spec, "api_key", None))

    raise RuntimeError(f"Unsupported backend: {backend}")
