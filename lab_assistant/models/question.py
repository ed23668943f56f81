"""Curated and unanswered question models."""

from typing import Any, Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from lab_assistant.models.base import BaseModel
from lab_assistant.models.document import EMBEDDING_DIM


class CuratedQuestion(BaseModel):
    """Approved question/answer pair reused verbatim for near-duplicates.

    Rows are created by the curation workflow; the answering path only reads them.
    """

    __tablename__ = "curated_questions"

    id: Mapped[int] = mapped_column(primary_key=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    question_embedding: Mapped[list[float]] = mapped_column(
        Vector(EMBEDDING_DIM),
        nullable=False,
    )
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    references: Mapped[list[Any]] = mapped_column(JSONB, default=list)
    module: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<CuratedQuestion(id={self.id}, title={self.title!r})>"


class UnansweredQuestion(BaseModel):
    """Generated answer parked for human review."""

    __tablename__ = "unanswered_questions"

    id: Mapped[int] = mapped_column(primary_key=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    question_embedding: Mapped[Optional[list[float]]] = mapped_column(
        Vector(EMBEDDING_DIM),
        nullable=True,
    )
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    references: Mapped[list[Any]] = mapped_column(JSONB, default=list)

    user_id: Mapped[str] = mapped_column(String(100), default="system")
    user_name: Mapped[str] = mapped_column(String(200), default="AI Assistant")
    used_rag: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending | approved | rejected

    def __repr__(self) -> str:
        return f"<UnansweredQuestion(id={self.id}, used_rag={self.used_rag})>"
