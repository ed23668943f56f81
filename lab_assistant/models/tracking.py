"""Retrieval audit trail models."""

from typing import Any, Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import Float, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lab_assistant.models.base import BaseModel
from lab_assistant.models.document import EMBEDDING_DIM


class RetrievalQuery(BaseModel):
    """One generation event that used retrieved chunks."""

    __tablename__ = "rag_queries"

    id: Mapped[int] = mapped_column(primary_key=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    question_embedding: Mapped[Optional[list[float]]] = mapped_column(
        Vector(EMBEDDING_DIM),
        nullable=True,
    )
    # [{"document_id", "chunk_index", "relevance_score"}]
    retrieved_chunks: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list)
    response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    usage_metrics: Mapped[list["UsageMetric"]] = relationship(
        "UsageMetric",
        back_populates="query",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<RetrievalQuery(id={self.id})>"


class UsageMetric(BaseModel):
    """Per-chunk usage record for a retrieval query."""

    __tablename__ = "rag_usage_metrics"

    id: Mapped[int] = mapped_column(primary_key=True)
    document_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("rag_documents.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    chunk_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("rag_chunks.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    query_id: Mapped[int] = mapped_column(
        ForeignKey("rag_queries.id", ondelete="CASCADE"),
        index=True,
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    relevance_score: Mapped[float] = mapped_column(Float, default=0.5)

    query: Mapped["RetrievalQuery"] = relationship("RetrievalQuery", back_populates="usage_metrics")

    def __repr__(self) -> str:
        return f"<UsageMetric(id={self.id}, chunk_id={self.chunk_id})>"
