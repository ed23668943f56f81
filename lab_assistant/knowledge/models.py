"""Data models for chunking, retrieval and answer selection."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class ChunkingConfig(BaseModel):
    """Window parameters for the document chunker.

    Validation of the relationship between ``chunk_size`` and ``overlap``
    happens in the chunker so that it raises ``ChunkingConfigError``.
    """

    chunk_size: int = 1000
    overlap: int = 200
    min_chunk_size: int = 100


class ChunkSpan(BaseModel):
    """A chunk of document text with its offsets.

    ``start_index`` and ``end_index`` are the window bounds in the source
    text, so consecutive spans cover the document. ``content`` is the text
    inside that window with leading and trailing whitespace removed.
    """

    content: str
    start_index: int
    end_index: int
    sequence: int
    section: str = "Main Content"


class RetrievalOptions(BaseModel):
    max_chunks: int = Field(5, ge=1)
    similarity_threshold: float = 0.7
    category: Optional[str] = None
    tags: Optional[list[str]] = None


class RetrievedChunk(BaseModel):
    """Chunk fields carried in a retrieval result."""

    id: int
    content: str
    start_index: int
    end_index: int
    section: str
    sequence: int


class RetrievalResult(BaseModel):
    """Scored chunk joined to its parent document."""

    document_id: int
    title: str
    chunk: RetrievedChunk
    score: float = Field(..., description="Normalized similarity score (0-1)")
    document_metadata: dict[str, Any] = Field(default_factory=dict)


class RetrievalOutcome(BaseModel):
    """Results plus diagnostics about which path produced them."""

    results: list[RetrievalResult] = Field(default_factory=list)
    used_fallback: bool = False
    error: Optional[str] = None


class Reference(BaseModel):
    title: str
    snippet: Optional[str] = None
    score: Optional[float] = None
    document_id: Optional[int] = None


class AnswerSource(BaseModel):
    """Where an answer came from, as shown to the user."""

    type: Literal["database", "rag_llm", "llm"]
    label: str
    description: str
    confidence: str
    matched_question: Optional[str] = None


class ChatTurn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class AnswerRequest(BaseModel):
    question: str
    recent_messages: list[ChatTurn] = Field(default_factory=list)
    debug: bool = False
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class AnswerResult(BaseModel):
    answer: str
    title: str
    summary: Optional[str] = None
    references: list[Any] = Field(default_factory=list)
    source: AnswerSource
    debug_info: Optional[dict[str, Any]] = None
