from __future__ import annotations


class PagewiseError(Exception):
    """Base class for errors raised by pagewise."""


class EmbedderUnavailable(PagewiseError):
    """The embedding backend could not produce vectors (not loaded, unreachable, bad reply)."""


class GeneratorUnavailable(PagewiseError):
    """The answer generator could not produce text."""


class MalformedCacheSnapshot(PagewiseError):
    """A stored snapshot could not be decoded. Callers treat it as a cache miss."""
