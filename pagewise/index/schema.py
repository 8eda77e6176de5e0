from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

ContentType = Literal["heading", "paragraph", "list", "mixed"]


class Locator(BaseModel):
    css_selector: Optional[str] = None
    xpath: str


class Chunk(BaseModel):
    id: str
    text: str                  # heading-path prefixed, what gets embedded / searched
    raw_text: str              # content only, used for fingerprints and citations
    heading_path: List[str] = Field(default_factory=list)
    heading_level: int = 0
    semantic_tag: str = "div"
    content_type: ContentType = "mixed"
    parent_chunk_id: Optional[str] = None
    locator: Locator
    visible: bool = True
    url: str = ""
    # written by ingest.filter only
    quality_score: Optional[float] = None
    lexical_score: Optional[float] = None
    total_score: Optional[float] = None


class EmbeddingRecord(BaseModel):
    chunk_id: str
    vector: List[float]
    fingerprint: str


class Hit(BaseModel):
    chunk_id: str
    score: float


class SearchResult(BaseModel):
    chunk: Chunk
    score: float


class CacheSnapshot(BaseModel):
    embeddings: Dict[str, List[float]] = Field(default_factory=dict)
    chunks: Dict[str, Chunk] = Field(default_factory=dict)
    content_hash: str
    # None on snapshots written before identity tracking existed
    embedding_provider: Optional[str] = None
    embedding_model: Optional[str] = None
    timestamp: float


class Citation(BaseModel):
    start: int
    end: int
    source_indices: List[int]
    confidence: float


class Answer(BaseModel):
    question: str
    answer: Optional[str] = None
    results: List[SearchResult] = Field(default_factory=list)
    citations: List[Citation] = Field(default_factory=list)
    trace: dict = Field(default_factory=dict)
