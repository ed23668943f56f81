"""Best-effort usage tracking for generated answers.

Writes one RetrievalQuery per generation event and one UsageMetric per
chunk that was used as context. Tracking never raises into the answer path.
"""

import asyncio
import logging
import math
from typing import Any, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lab_assistant.knowledge.models import RetrievalResult
from lab_assistant.models.tracking import RetrievalQuery, UsageMetric
from lab_assistant.observability import MetricsBackend, get_metrics_backend

logger = logging.getLogger(__name__)

DEFAULT_RELEVANCE_SCORE = 0.5


def _score_or_default(score: Any) -> float:
    try:
        value = float(score)
    except (TypeError, ValueError):
        return DEFAULT_RELEVANCE_SCORE
    if math.isnan(value) or math.isinf(value):
        return DEFAULT_RELEVANCE_SCORE
    return value


class UsageTracker:
    """Records retrieval usage in its own database session."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        metrics: MetricsBackend | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.metrics = metrics or get_metrics_backend()
        self._pending: set[asyncio.Task[None]] = set()

    async def track(
        self,
        question: str,
        question_embedding: Optional[Sequence[float]],
        used_chunks: Sequence[RetrievalResult],
        response: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        """Persist the usage trail. Failures are logged and swallowed."""
        try:
            async with self.session_factory() as session:
                query = RetrievalQuery(
                    question=question,
                    question_embedding=list(question_embedding) if question_embedding else None,
                    retrieved_chunks=[
                        {
                            "document_id": result.document_id,
                            "chunk_index": result.chunk.sequence,
                            "relevance_score": _score_or_default(result.score),
                        }
                        for result in used_chunks
                    ],
                    response=response,
                    user_id=user_id,
                    session_id=session_id,
                )
                session.add(query)
                await session.flush()

                for result in used_chunks:
                    session.add(
                        UsageMetric(
                            document_id=result.document_id,
                            chunk_id=result.chunk.id,
                            query_id=query.id,
                            user_id=user_id,
                            session_id=session_id,
                            relevance_score=_score_or_default(result.score),
                        )
                    )
                await session.commit()
        except Exception as e:
            self.metrics.observe_tracking(False)
            logger.error("Failed to record usage for question %r: %s", question[:50], e)
            return

        self.metrics.observe_tracking(True)
        logger.debug("Recorded usage for %d chunks", len(used_chunks))

    def dispatch(
        self,
        question: str,
        question_embedding: Optional[Sequence[float]],
        used_chunks: Sequence[RetrievalResult],
        response: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> asyncio.Task[None]:
        """Schedule ``track`` in the background and return immediately."""
        task = asyncio.create_task(
            self.track(question, question_embedding, used_chunks, response, user_id, session_id)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every dispatched write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)
