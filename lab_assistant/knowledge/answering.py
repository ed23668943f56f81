"""Answer selection.

Each question ends in one of three outcomes:

* ``database``: a curated question is a near-duplicate, and its stored answer
  is returned verbatim.
* ``rag_llm``: relevant chunks were retrieved and passed to the generation
  model as context.
* ``llm``: nothing relevant was found, and the model answers unaided.

Embedding and generation failures abort the request. Curated-store and
retrieval failures only push the question down to the next outcome.
"""

import logging
import time
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from lab_assistant.knowledge.curated import CuratedQuestionStore
from lab_assistant.knowledge.embeddings import EmbeddingProvider
from lab_assistant.knowledge.errors import QuestionValidationError, RetrievalError
from lab_assistant.knowledge.generation import (
    PLAIN_SYSTEM_PROMPT,
    GenerationService,
    build_context,
    build_rag_system_prompt,
)
from lab_assistant.knowledge.models import (
    AnswerRequest,
    AnswerResult,
    AnswerSource,
    Reference,
    RetrievalOptions,
    RetrievalOutcome,
    RetrievalResult,
)
from lab_assistant.knowledge.retriever import RetrievalEngine
from lab_assistant.knowledge.tracking import UsageTracker
from lab_assistant.knowledge.vector_search import savepoint
from lab_assistant.models.question import CuratedQuestion, UnansweredQuestion
from lab_assistant.observability import MetricsBackend, get_metrics_backend
from lab_assistant.services.app_settings import AnswerSettings, load_answer_settings

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 200


def format_confidence(score: float) -> str:
    return f"{round(score * 100)}%"


class AnswerSelector:
    """Chooses between curated, RAG-generated and plain generated answers."""

    def __init__(
        self,
        embeddings: EmbeddingProvider,
        curated_store: CuratedQuestionStore,
        retriever: RetrievalEngine,
        generator: GenerationService,
        tracker: UsageTracker,
        default_settings: AnswerSettings | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        metrics: MetricsBackend | None = None,
    ) -> None:
        self.embeddings = embeddings
        self.curated_store = curated_store
        self.retriever = retriever
        self.generator = generator
        self.tracker = tracker
        self.default_settings = default_settings or AnswerSettings()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.metrics = metrics or get_metrics_backend()

    async def answer(self, session: AsyncSession, request: AnswerRequest) -> AnswerResult:
        """Answer one question.

        Args:
            session: Database session. Unanswered questions are flushed into
                it; the caller commits.
            request: Question, recent chat turns and caller identity.

        Raises:
            QuestionValidationError: The question is blank.
            EmbeddingError: The question could not be embedded.
            GenerationError: The generation service failed.
        """
        question = request.question.strip() if request.question else ""
        if not question:
            raise QuestionValidationError("Question is required")

        started = time.perf_counter()
        settings = await load_answer_settings(session, self.default_settings)
        question_embedding = await self.embeddings.embed(question)

        debug_info: dict[str, Any] = {
            "thresholds": {
                "duplicate": settings.duplicate_threshold,
                "relevance": settings.relevance_threshold,
            },
            "curated_best_score": None,
            "chunks_found": 0,
            "used_fallback": False,
            "retrieval_error": None,
        }

        match = await self._find_curated(session, question_embedding, settings, debug_info)
        if match is not None:
            curated, score = match
            result = AnswerResult(
                answer=curated.answer,
                title=curated.title,
                summary=curated.summary,
                references=list(curated.references or []),
                source=AnswerSource(
                    type="database",
                    label="Matched Question",
                    description="This answer was found from a similar question in our database",
                    confidence=format_confidence(score),
                    matched_question=curated.question,
                ),
            )
            return self._finish(result, request, debug_info, started)

        outcome = await self._retrieve(session, question_embedding, settings, debug_info)

        if outcome.results:
            result = await self._answer_with_context(
                session, request, question, question_embedding, outcome.results
            )
        else:
            result = await self._answer_plain(session, request, question, question_embedding)

        return self._finish(result, request, debug_info, started)

    async def _find_curated(
        self,
        session: AsyncSession,
        question_embedding: list[float],
        settings: AnswerSettings,
        debug_info: dict[str, Any],
    ) -> Optional[tuple[CuratedQuestion, float]]:
        try:
            match = await self.curated_store.best_match(
                session, question_embedding, settings.duplicate_threshold
            )
        except Exception as e:
            logger.error("Curated question search failed, continuing without it: %s", e)
            debug_info["curated_error"] = str(e)
            return None

        if match is not None:
            debug_info["curated_best_score"] = match[1]
            debug_info["matched_question"] = match[0].question
        return match

    async def _retrieve(
        self,
        session: AsyncSession,
        question_embedding: list[float],
        settings: AnswerSettings,
        debug_info: dict[str, Any],
    ) -> RetrievalOutcome:
        if not settings.enable_rag:
            debug_info["retrieval_error"] = "disabled"
            return RetrievalOutcome()

        options = RetrievalOptions(
            max_chunks=settings.max_context_chunks,
            similarity_threshold=settings.relevance_threshold,
        )
        try:
            outcome = await self.retriever.retrieve(session, question_embedding, options)
        except RetrievalError as e:
            logger.error("Retrieval failed, answering without context: %s", e)
            debug_info["retrieval_error"] = str(e)
            return RetrievalOutcome(error=str(e))

        debug_info["chunks_found"] = len(outcome.results)
        debug_info["used_fallback"] = outcome.used_fallback
        debug_info["retrieval_error"] = outcome.error
        debug_info["chunks"] = [
            {
                "document_id": result.document_id,
                "title": result.title,
                "sequence": result.chunk.sequence,
                "section": result.chunk.section,
                "score": result.score,
            }
            for result in outcome.results
        ]
        return outcome

    async def _answer_with_context(
        self,
        session: AsyncSession,
        request: AnswerRequest,
        question: str,
        question_embedding: list[float],
        results: list[RetrievalResult],
    ) -> AnswerResult:
        system_prompt = build_rag_system_prompt(build_context(results))
        answer = await self.generator.complete(
            system_prompt,
            question,
            history=request.recent_messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        references = [
            Reference(
                title=result.title,
                snippet=result.chunk.content[:SNIPPET_LENGTH],
                score=result.score,
                document_id=result.document_id,
            ).model_dump()
            for result in results
        ]
        await self._save_unanswered(
            session, question, question_embedding, answer, references, used_rag=True
        )
        self.tracker.dispatch(
            question,
            question_embedding,
            results,
            answer,
            user_id=request.user_id,
            session_id=request.session_id,
        )

        return AnswerResult(
            answer=answer,
            title="",
            references=references,
            source=AnswerSource(
                type="rag_llm",
                label="AI Generated (with Documentation)",
                description="This answer was generated by our AI model using relevant documentation",
                confidence=format_confidence(results[0].score),
            ),
        )

    async def _answer_plain(
        self,
        session: AsyncSession,
        request: AnswerRequest,
        question: str,
        question_embedding: list[float],
    ) -> AnswerResult:
        answer = await self.generator.complete(
            PLAIN_SYSTEM_PROMPT,
            question,
            history=request.recent_messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        await self._save_unanswered(
            session, question, question_embedding, answer, [], used_rag=False
        )
        return AnswerResult(
            answer=answer,
            title="",
            source=AnswerSource(
                type="llm",
                label="AI Generated",
                description="This answer was generated by our AI model",
                confidence="N/A",
            ),
        )

    async def _save_unanswered(
        self,
        session: AsyncSession,
        question: str,
        question_embedding: list[float],
        answer: str,
        references: list[dict[str, Any]],
        used_rag: bool,
    ) -> None:
        try:
            async with savepoint(session):
                session.add(
                    UnansweredQuestion(
                        question=question,
                        question_embedding=question_embedding,
                        answer=answer,
                        references=references,
                        user_id="system",
                        user_name="AI Assistant",
                        used_rag=used_rag,
                    )
                )
                await session.flush()
        except Exception as e:
            logger.error("Failed to store unanswered question: %s", e)

    def _finish(
        self,
        result: AnswerResult,
        request: AnswerRequest,
        debug_info: dict[str, Any],
        started: float,
    ) -> AnswerResult:
        self.metrics.observe_answer(result.source.type)
        logger.info(
            "Answered question source=%s confidence=%s",
            result.source.type,
            result.source.confidence,
        )
        if request.debug:
            debug_info["path"] = result.source.type
            debug_info["processing_time_ms"] = round((time.perf_counter() - started) * 1000, 2)
            result.debug_info = debug_info
        return result
