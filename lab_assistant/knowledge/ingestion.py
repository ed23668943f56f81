"""Document ingestion: validate, chunk, embed and store.

Embeddings for every chunk are generated before anything is written, so an
embedding failure leaves the database untouched. Callers own the commit.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import defer

from lab_assistant.knowledge.chunker import DocumentChunker, validate_chunking_config
from lab_assistant.knowledge.embeddings import EmbeddingProvider
from lab_assistant.knowledge.errors import ChunkingConfigError, DocumentValidationError
from lab_assistant.knowledge.models import ChunkingConfig, ChunkSpan
from lab_assistant.models.document import RagChunk, RagDocument

logger = logging.getLogger(__name__)


def validate_document(payload: Mapping[str, Any]) -> None:
    """Check a document payload before any chunking or embedding work.

    Raises:
        DocumentValidationError: Listing every problem found.
    """
    errors: list[str] = []

    title = payload.get("title")
    if not isinstance(title, str) or not title.strip():
        errors.append("Title is required and must be a non-empty string")

    content = payload.get("content")
    if not isinstance(content, str) or not content.strip():
        errors.append("Content is required and must be a non-empty string")

    category = payload.get("category")
    if category is not None and not isinstance(category, str):
        errors.append("Category must be a string")

    tags = payload.get("tags")
    if tags is not None and (
        not isinstance(tags, (list, tuple)) or not all(isinstance(tag, str) for tag in tags)
    ):
        errors.append("Tags must be a list of strings")

    if errors:
        raise DocumentValidationError(errors)


class DocumentIngestor:
    """Turns documents into stored, embedded chunks."""

    def __init__(
        self,
        chunker: DocumentChunker,
        embeddings: EmbeddingProvider,
        max_concurrency: int = 4,
        min_rechunk_size: int = 100,
    ) -> None:
        self.chunker = chunker
        self.embeddings = embeddings
        self.max_concurrency = max_concurrency
        self.min_rechunk_size = min_rechunk_size

    async def ingest(
        self,
        session: AsyncSession,
        title: str,
        content: str,
        chunking: ChunkingConfig,
        category: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        author: Optional[str] = None,
        source: Optional[str] = None,
    ) -> RagDocument:
        """Create a document and its chunks.

        Raises:
            DocumentValidationError: Payload is invalid.
            ChunkingConfigError: Chunking config is invalid.
            EmbeddingError: Any chunk failed to embed. Nothing is written.
        """
        validate_document(
            {"title": title, "content": content, "category": category, "tags": tags}
        )
        spans, vectors = await self._chunk_and_embed(content, chunking)

        document = RagDocument(
            title=title.strip(),
            content=content,
            category=category,
            tags=list(tags or []),
            author=author,
            source=source,
            chunk_count=len(spans),
            last_updated=datetime.now(timezone.utc),
        )
        session.add(document)
        await session.flush()

        session.add_all(_build_chunks(document.id, spans, vectors))
        await session.flush()

        logger.info(
            "Ingested document id=%s title=%r chunks=%d",
            document.id,
            document.title,
            len(spans),
        )
        return document

    async def rechunk(
        self,
        session: AsyncSession,
        document_id: int,
        chunking: ChunkingConfig,
    ) -> Optional[RagDocument]:
        """Replace a document's chunks using a new chunking config.

        Returns None when the document does not exist.
        """
        if chunking.chunk_size < self.min_rechunk_size:
            raise ChunkingConfigError(
                f"chunk_size must be at least {self.min_rechunk_size} characters"
            )
        validate_chunking_config(chunking)

        result = await session.execute(
            select(RagDocument)
            .where(RagDocument.id == document_id)
            .execution_options(populate_existing=True)
        )
        document = result.scalar_one_or_none()
        if document is None:
            return None

        spans, vectors = await self._chunk_and_embed(document.content, chunking)

        await session.execute(delete(RagChunk).where(RagChunk.document_id == document_id))
        session.add_all(_build_chunks(document_id, spans, vectors))
        document.chunk_count = len(spans)
        document.last_updated = datetime.now(timezone.utc)
        await session.flush()

        logger.info("Re-chunked document id=%s into %d chunks", document_id, len(spans))
        return document

    async def delete_chunk(
        self,
        session: AsyncSession,
        document_id: int,
        sequence: int,
    ) -> Optional[RagDocument]:
        """Delete one chunk and close the gap in the remaining sequence numbers.

        Returns None when the document or the chunk does not exist.
        """
        document = await session.get(RagDocument, document_id)
        if document is None:
            return None

        result = await session.execute(
            select(RagChunk).where(
                RagChunk.document_id == document_id,
                RagChunk.sequence == sequence,
            )
        )
        chunk = result.scalar_one_or_none()
        if chunk is None:
            return None

        await session.delete(chunk)
        await session.flush()

        remaining = await session.execute(
            select(RagChunk)
            .where(RagChunk.document_id == document_id)
            .options(defer(RagChunk.embedding))
            .order_by(RagChunk.sequence)
        )
        chunks = list(remaining.scalars().all())
        for position, item in enumerate(chunks):
            item.sequence = position

        document.chunk_count = len(chunks)
        document.last_updated = datetime.now(timezone.utc)
        await session.flush()
        return document

    async def delete_document(self, session: AsyncSession, document_id: int) -> bool:
        """Delete a document together with all of its chunks."""
        document = await session.get(RagDocument, document_id)
        if document is None:
            return False

        await session.execute(delete(RagChunk).where(RagChunk.document_id == document_id))
        await session.delete(document)
        await session.flush()
        logger.info("Deleted document id=%s", document_id)
        return True

    async def _chunk_and_embed(
        self,
        content: str,
        chunking: ChunkingConfig,
    ) -> tuple[list[ChunkSpan], list[list[float]]]:
        spans = self.chunker.chunk(content, chunking)
        vectors = await self.embeddings.embed_many(
            [span.content for span in spans],
            max_concurrency=self.max_concurrency,
        )
        return spans, vectors


def _build_chunks(
    document_id: int,
    spans: Sequence[ChunkSpan],
    vectors: Sequence[Sequence[float]],
) -> list[RagChunk]:
    return [
        RagChunk(
            document_id=document_id,
            content=span.content,
            embedding=list(vector),
            start_index=span.start_index,
            end_index=span.end_index,
            section=span.section,
            sequence=span.sequence,
        )
        for span, vector in zip(spans, vectors)
    ]
