"""Similarity search over curated question/answer pairs."""

from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from lab_assistant.knowledge.vector_search import VectorSearchBackend, savepoint
from lab_assistant.models.question import CuratedQuestion


class CuratedQuestionStore:
    """Finds curated questions close to a query embedding."""

    def __init__(
        self,
        search_backend: VectorSearchBackend,
        num_candidates: int = 200,
        limit: int = 10,
    ) -> None:
        self.search_backend = search_backend
        self.num_candidates = num_candidates
        self.limit = limit

    async def search(
        self,
        session: AsyncSession,
        query_embedding: Sequence[float],
    ) -> list[tuple[CuratedQuestion, float]]:
        async with savepoint(session):
            return await self.search_backend.search(
                session,
                CuratedQuestion,
                "question_embedding",
                query_embedding,
                self.num_candidates,
                self.limit,
            )

    async def best_match(
        self,
        session: AsyncSession,
        query_embedding: Sequence[float],
        threshold: float,
    ) -> tuple[CuratedQuestion, float] | None:
        """Highest-scoring question at or above ``threshold``, if any."""
        candidates = [
            (question, score)
            for question, score in await self.search(session, query_embedding)
            if score >= threshold
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda candidate: candidate[1])
