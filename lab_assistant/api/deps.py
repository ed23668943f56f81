"""Service container and FastAPI dependencies.

Services are built once during application startup and stored on
``app.state.services``. Endpoints receive them through ``get_services``.
"""

import logging
from dataclasses import dataclass

from fastapi import Request
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lab_assistant.core.config import Settings
from lab_assistant.knowledge.answering import AnswerSelector
from lab_assistant.knowledge.chunker import DocumentChunker
from lab_assistant.knowledge.curated import CuratedQuestionStore
from lab_assistant.knowledge.embeddings import (
    EmbeddingCache,
    EmbeddingProvider,
    OpenAIEmbeddingClient,
)
from lab_assistant.knowledge.generation import GenerationClient
from lab_assistant.knowledge.ingestion import DocumentIngestor
from lab_assistant.knowledge.retriever import RetrievalEngine
from lab_assistant.knowledge.tracking import UsageTracker
from lab_assistant.knowledge.vector_search import build_vector_search
from lab_assistant.observability import MetricsBackend
from lab_assistant.services.app_settings import AnswerSettings

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Long-lived services shared by all requests."""

    settings: Settings
    embeddings: EmbeddingProvider
    retriever: RetrievalEngine
    ingestor: DocumentIngestor
    selector: AnswerSelector
    tracker: UsageTracker
    answer_defaults: AnswerSettings


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    metrics: MetricsBackend,
) -> AppServices:
    """Wire the production services from settings."""
    openai_client = AsyncOpenAI(
        api_key=settings.openai_api_key,
        timeout=settings.openai_timeout_seconds,
        max_retries=settings.openai_max_retries,
    )
    cache = EmbeddingCache(
        max_entries=settings.embedding_cache_max_entries,
        ttl_seconds=settings.embedding_cache_ttl_seconds,
    )
    embeddings = EmbeddingProvider(
        OpenAIEmbeddingClient(openai_client, settings.openai_embedding_model, metrics),
        cache,
        dimensions=settings.embedding_dimensions,
    )
    search_backend = build_vector_search(settings.vector_search_backend)
    retriever = RetrievalEngine(
        search_backend,
        num_candidates=settings.vector_search_num_candidates,
        fallback_score=settings.fallback_score,
        timeout_seconds=settings.vector_search_timeout_seconds,
        metrics=metrics,
        session_factory=session_factory,
    )
    curated_store = CuratedQuestionStore(
        search_backend,
        num_candidates=settings.curated_search_num_candidates,
        limit=settings.curated_search_limit,
    )
    tracker = UsageTracker(session_factory, metrics)
    answer_defaults = AnswerSettings.from_settings(settings)
    selector = AnswerSelector(
        embeddings,
        curated_store,
        retriever,
        GenerationClient(openai_client, settings.openai_model, metrics),
        tracker,
        default_settings=answer_defaults,
        temperature=settings.generation_temperature,
        max_tokens=settings.generation_max_tokens,
        metrics=metrics,
    )
    ingestor = DocumentIngestor(
        DocumentChunker(),
        embeddings,
        max_concurrency=settings.embedding_max_concurrency,
        min_rechunk_size=settings.min_rechunk_size,
    )

    logger.info(
        "Services ready: vector_search=%s embedding_model=%s chat_model=%s",
        settings.vector_search_backend,
        settings.openai_embedding_model,
        settings.openai_model,
    )
    return AppServices(
        settings=settings,
        embeddings=embeddings,
        retriever=retriever,
        ingestor=ingestor,
        selector=selector,
        tracker=tracker,
        answer_defaults=answer_defaults,
    )


def get_services(request: Request) -> AppServices:
    """Return the services built at startup."""
    return request.app.state.services
