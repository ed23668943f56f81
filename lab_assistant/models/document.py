"""RAG document and chunk models."""

from datetime import datetime
from typing import Any, Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lab_assistant.core.config import get_settings
from lab_assistant.models.base import BaseModel

EMBEDDING_DIM = get_settings().embedding_dimensions


class RagDocument(BaseModel):
    """Source document whose content is split into retrievable chunks."""

    __tablename__ = "rag_documents"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    tags: Mapped[list[str]] = mapped_column(JSONB, default=list)
    author: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    chunk_count: Mapped[int] = mapped_column(Integer, default=0)
    last_updated: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=True,
    )

    chunks: Mapped[list["RagChunk"]] = relationship(
        "RagChunk",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="RagChunk.sequence",
    )

    @property
    def document_metadata(self) -> dict[str, Any]:
        """Metadata block exposed with retrieval results."""
        return {
            "category": self.category,
            "tags": list(self.tags or []),
            "author": self.author,
            "chunk_count": self.chunk_count,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    def __repr__(self) -> str:
        return f"<RagDocument(id={self.id}, title={self.title!r})>"


class RagChunk(BaseModel):
    """Embedded slice of a document."""

    __tablename__ = "rag_chunks"

    id: Mapped[int] = mapped_column(primary_key=True)
    document_id: Mapped[int] = mapped_column(
        ForeignKey("rag_documents.id", ondelete="CASCADE"),
        index=True,
    )

    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(Vector(EMBEDDING_DIM), nullable=False)

    # Character offsets into the parent document content
    start_index: Mapped[int] = mapped_column(Integer, nullable=False)
    end_index: Mapped[int] = mapped_column(Integer, nullable=False)
    section: Mapped[str] = mapped_column(String(500), default="Main Content")
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    document: Mapped["RagDocument"] = relationship("RagDocument", back_populates="chunks")

    __table_args__ = (
        Index("ix_rag_chunks_document_sequence", "document_id", "sequence"),
    )

    def __repr__(self) -> str:
        return (
            f"<RagChunk(id={self.id}, document_id={self.document_id}, "
            f"sequence={self.sequence})>"
        )
