"""Pytest configuration and fixtures for the lab assistant tests."""

from typing import AsyncGenerator, Optional, Sequence

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON, StaticPool, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from lab_assistant.api.deps import AppServices
from lab_assistant.core.config import get_settings
from lab_assistant.core.database import Base, get_db
from lab_assistant.main import app as main_app


# -------------------------------------------------------------------------
# SQLite compatibility - Convert JSONB and vector columns to JSON
# -------------------------------------------------------------------------

@event.listens_for(Base.metadata, "before_create")
def _convert_postgres_types(target, connection, **kw):
    """Convert JSONB and pgvector columns to JSON for SQLite compatibility."""
    if connection.dialect.name == "sqlite":
        for table in target.tables.values():
            for column in table.columns:
                if isinstance(column.type, (JSONB, Vector)):
                    column.type = JSON()

# Import all models to ensure they're registered with Base
from lab_assistant.models import (  # noqa: E402
    AppSetting,
    ChatMessage,
    ChatSession,
    CuratedQuestion,
    RagChunk,
    RagDocument,
    RetrievalQuery,
    UnansweredQuestion,
    UsageMetric,
)
from lab_assistant.knowledge.answering import AnswerSelector  # noqa: E402
from lab_assistant.knowledge.chunker import DocumentChunker  # noqa: E402
from lab_assistant.knowledge.curated import CuratedQuestionStore  # noqa: E402
from lab_assistant.knowledge.embeddings import EmbeddingCache, EmbeddingProvider  # noqa: E402
from lab_assistant.knowledge.ingestion import DocumentIngestor  # noqa: E402
from lab_assistant.knowledge.retriever import RetrievalEngine  # noqa: E402
from lab_assistant.knowledge.vector_search import ExactVectorSearch  # noqa: E402
from lab_assistant.observability import MetricsCollector  # noqa: E402
from lab_assistant.services.app_settings import AnswerSettings  # noqa: E402
from tests.fakes import FakeEmbeddingClient, FakeGenerator, RecordingTracker  # noqa: E402


# -------------------------------------------------------------------------
# Database Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# -------------------------------------------------------------------------
# Service Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def embedding_client() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


@pytest.fixture
def embeddings(embedding_client: FakeEmbeddingClient) -> EmbeddingProvider:
    """Embedding provider over the fake client with a fresh cache."""
    return EmbeddingProvider(embedding_client, EmbeddingCache(), dimensions=embedding_client.dimensions)


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def tracker() -> RecordingTracker:
    return RecordingTracker()


@pytest.fixture
def retriever(metrics: MetricsCollector) -> RetrievalEngine:
    return RetrievalEngine(ExactVectorSearch(), metrics=metrics)


@pytest.fixture
def make_selector(embeddings, generator, tracker, metrics):
    """Build an AnswerSelector, optionally over a different vector index."""

    def _make(search_backend=None, default_settings: Optional[AnswerSettings] = None) -> AnswerSelector:
        backend = search_backend or ExactVectorSearch()
        return AnswerSelector(
            embeddings,
            CuratedQuestionStore(backend),
            RetrievalEngine(backend, metrics=metrics),
            generator,
            tracker,
            default_settings=default_settings,
            metrics=metrics,
        )

    return _make


@pytest.fixture
def ingestor(embeddings: EmbeddingProvider) -> DocumentIngestor:
    return DocumentIngestor(DocumentChunker(), embeddings)


@pytest.fixture
def services(embeddings, retriever, ingestor, tracker, make_selector) -> AppServices:
    """Service container wired with fakes and the exact vector search."""
    settings = get_settings()
    return AppServices(
        settings=settings,
        embeddings=embeddings,
        retriever=retriever,
        ingestor=ingestor,
        selector=make_selector(),
        tracker=tracker,
        answer_defaults=AnswerSettings.from_settings(settings),
    )


# -------------------------------------------------------------------------
# App Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def app(db_session: AsyncSession, services: AppServices) -> FastAPI:
    """Create a FastAPI app instance with test database and services."""

    async def override_get_db():
        yield db_session

    main_app.dependency_overrides[get_db] = override_get_db
    main_app.state.services = services
    yield main_app
    main_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# -------------------------------------------------------------------------
# Knowledge Base Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def add_document(db_session: AsyncSession):
    """Insert a document with pre-embedded chunks.

    ``chunks`` is a sequence of ``(content, embedding)`` pairs.
    """

    async def _add(
        title: str,
        chunks: Sequence[tuple[str, list[float]]],
        category: Optional[str] = None,
        tags: Optional[list[str]] = None,
    ) -> RagDocument:
        content = "\n\n".join(text for text, _ in chunks)
        document = RagDocument(
            title=title,
            content=content,
            category=category,
            tags=tags or [],
            chunk_count=len(chunks),
        )
        db_session.add(document)
        await db_session.flush()

        offset = 0
        for sequence, (text, embedding) in enumerate(chunks):
            db_session.add(
                RagChunk(
                    document_id=document.id,
                    content=text,
                    embedding=embedding,
                    start_index=offset,
                    end_index=offset + len(text),
                    sequence=sequence,
                )
            )
            offset += len(text) + 2
        await db_session.commit()
        return document

    return _add


@pytest.fixture
def add_curated_question(db_session: AsyncSession):
    async def _add(question: str, embedding: list[float], answer: str, title: str = "Curated") -> CuratedQuestion:
        curated = CuratedQuestion(
            question=question,
            question_embedding=embedding,
            answer=answer,
            title=title,
            summary=f"Summary of {title}",
            references=[{"title": "Docs", "url": "https://example.com/docs"}],
        )
        db_session.add(curated)
        await db_session.commit()
        return curated

    return _add
