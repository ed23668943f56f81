"""Chunk retrieval with vector search and a recency fallback.

The primary path ranks chunks by vector similarity, keeps those above the
relevance threshold, joins their parent documents and applies metadata
filters. If the vector search raises or times out, the engine serves the
most recent chunks instead, each with a fixed degraded score.
"""

import asyncio
import logging
import time
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import defer

from lab_assistant.knowledge.embeddings import EmbeddingProvider
from lab_assistant.knowledge.errors import RetrievalError
from lab_assistant.knowledge.models import (
    RetrievalOptions,
    RetrievalOutcome,
    RetrievalResult,
    RetrievedChunk,
)
from lab_assistant.knowledge.vector_search import VectorSearchBackend, savepoint
from lab_assistant.models.document import RagChunk, RagDocument
from lab_assistant.observability import MetricsBackend, get_metrics_backend

logger = logging.getLogger(__name__)


class RetrievalEngine:
    """Hybrid chunk retriever.

    Args:
        search_backend: Vector search implementation.
        num_candidates: Candidate pool size passed to the vector search.
        fallback_score: Score assigned to every fallback result.
        timeout_seconds: Upper bound on the vector search call. A timeout
            triggers the fallback like any other search error.
        session_factory: When set, the fallback query runs in a fresh
            session so a cancelled search cannot leave it on a broken
            connection.
        metrics: Metrics backend.
    """

    def __init__(
        self,
        search_backend: VectorSearchBackend,
        num_candidates: int = 100,
        fallback_score: float = 0.5,
        timeout_seconds: float | None = 5.0,
        metrics: MetricsBackend | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.search_backend = search_backend
        self.num_candidates = num_candidates
        self.fallback_score = fallback_score
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics or get_metrics_backend()
        self.session_factory = session_factory

    async def retrieve(
        self,
        session: AsyncSession,
        query_embedding: Sequence[float],
        options: RetrievalOptions,
    ) -> RetrievalOutcome:
        """Return the most relevant chunks for ``query_embedding``.

        Raises:
            RetrievalError: Only when the fallback path fails as well.
        """
        start = time.perf_counter()
        try:
            results = await asyncio.wait_for(
                self._search_primary(session, query_embedding, options),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            reason = _describe(e)
            logger.warning("Vector search failed, serving recent chunks instead: %s", reason)
            try:
                results = await self._fallback(session, options.max_chunks)
            except Exception as fallback_error:
                duration_ms = (time.perf_counter() - start) * 1000
                self.metrics.observe_retrieval("failed", 0, duration_ms)
                logger.error(
                    "Fallback retrieval failed after vector search error (%s): %s",
                    reason,
                    fallback_error,
                )
                raise RetrievalError(
                    f"Retrieval unavailable: {reason}; fallback: {fallback_error}"
                ) from fallback_error

            duration_ms = (time.perf_counter() - start) * 1000
            self.metrics.observe_retrieval("fallback", len(results), duration_ms)
            return RetrievalOutcome(results=results, used_fallback=True, error=reason)

        duration_ms = (time.perf_counter() - start) * 1000
        self.metrics.observe_retrieval("primary", len(results), duration_ms)
        logger.debug("Retrieved %d chunks in %.2fms", len(results), duration_ms)
        return RetrievalOutcome(results=results)

    async def search_documents(
        self,
        session: AsyncSession,
        embeddings: EmbeddingProvider,
        query: str,
        limit: int = 10,
        category: str | None = None,
        tags: list[str] | None = None,
    ) -> RetrievalOutcome:
        """Semantic search for the document admin screens (no relevance floor)."""
        query_embedding = await embeddings.embed(query)
        options = RetrievalOptions(
            max_chunks=limit,
            similarity_threshold=0.0,
            category=category,
            tags=tags,
        )
        return await self.retrieve(session, query_embedding, options)

    async def _search_primary(
        self,
        session: AsyncSession,
        query_embedding: Sequence[float],
        options: RetrievalOptions,
    ) -> list[RetrievalResult]:
        async with savepoint(session):
            hits = await self.search_backend.search(
                session,
                RagChunk,
                "embedding",
                query_embedding,
                self.num_candidates,
                options.max_chunks * 2,
            )

        hits = [(chunk, score) for chunk, score in hits if score >= options.similarity_threshold]
        if not hits:
            return []

        documents = await self._load_documents(session, {chunk.document_id for chunk, _ in hits})

        results: list[RetrievalResult] = []
        for chunk, score in hits:
            document = documents.get(chunk.document_id)
            if document is None:
                continue
            if options.category and document.category != options.category:
                continue
            if options.tags and not set(options.tags) & set(document.tags or []):
                continue
            results.append(_to_result(chunk, document, score))

        results.sort(key=lambda result: result.score, reverse=True)
        return results[: options.max_chunks]

    async def _fallback(self, session: AsyncSession, max_chunks: int) -> list[RetrievalResult]:
        if self.session_factory is None:
            return await self._search_recent(session, max_chunks)
        async with self.session_factory() as fallback_session:
            return await self._search_recent(fallback_session, max_chunks)

    async def _search_recent(self, session: AsyncSession, max_chunks: int) -> list[RetrievalResult]:
        result = await session.execute(
            select(RagChunk, RagDocument)
            .join(RagDocument, RagChunk.document_id == RagDocument.id)
            .options(defer(RagDocument.content))
            .order_by(RagChunk.created_at.desc(), RagChunk.id.desc())
            .limit(max_chunks)
        )
        return [
            _to_result(chunk, document, self.fallback_score)
            for chunk, document in result.all()
        ]

    @staticmethod
    async def _load_documents(
        session: AsyncSession,
        document_ids: set[int],
    ) -> dict[int, RagDocument]:
        result = await session.execute(
            select(RagDocument)
            .where(RagDocument.id.in_(document_ids))
            .options(defer(RagDocument.content))
        )
        return {document.id: document for document in result.scalars().all()}


def _describe(error: Exception) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "vector search timed out"
    return str(error) or error.__class__.__name__


def _to_result(chunk: RagChunk, document: RagDocument, score: float) -> RetrievalResult:
    return RetrievalResult(
        document_id=document.id,
        title=document.title,
        chunk=RetrievedChunk(
            id=chunk.id,
            content=chunk.content,
            start_index=chunk.start_index,
            end_index=chunk.end_index,
            section=chunk.section,
            sequence=chunk.sequence,
        ),
        score=score,
        document_metadata=document.document_metadata,
    )
