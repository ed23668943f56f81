"""Document management endpoints: ingestion, chunk maintenance and search."""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import defer

from lab_assistant.api.deps import AppServices, get_services
from lab_assistant.core.database import get_db
from lab_assistant.knowledge.errors import (
    ChunkingConfigError,
    DocumentValidationError,
    EmbeddingError,
    RetrievalError,
)
from lab_assistant.knowledge.models import ChunkingConfig, RetrievalResult
from lab_assistant.models.document import RagChunk, RagDocument
from lab_assistant.services.app_settings import load_answer_settings

router = APIRouter()
logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------


class DocumentCreate(BaseModel):
    """Document upload.

    Fields are loosely typed so that validation errors are reported
    together by the ingestion validator.
    """

    title: Any = None
    content: Any = None
    category: Any = None
    tags: Any = None
    author: Optional[str] = None
    source: Optional[str] = None
    chunk_size: Optional[int] = None
    overlap: Optional[int] = None


class DocumentResponse(BaseModel):
    id: int
    title: str
    category: str | None
    tags: list[str]
    author: str | None
    source: str | None
    chunk_count: int
    last_updated: datetime | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DocumentDetailResponse(DocumentResponse):
    content: str


class DocumentListResponse(BaseModel):
    items: list[DocumentResponse]
    total: int


class ChunkResponse(BaseModel):
    id: int
    sequence: int
    content: str
    start_index: int
    end_index: int
    section: str

    class Config:
        from_attributes = True


class RechunkRequest(BaseModel):
    chunk_size: int
    overlap: int = 200
    min_chunk_size: Optional[int] = None


class SearchRequest(BaseModel):
    query: Optional[str] = None
    limit: int = Field(10, ge=1, le=50)
    category: Optional[str] = None
    tags: Optional[list[str]] = None


class SearchResponse(BaseModel):
    results: list[RetrievalResult]
    used_fallback: bool


# -------------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------------


async def _get_document_or_404(db: AsyncSession, document_id: int) -> RagDocument:
    result = await db.execute(
        select(RagDocument)
        .where(RagDocument.id == document_id)
        .execution_options(populate_existing=True)
    )
    document = result.scalar_one_or_none()
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Document not found",
        )
    return document


async def _chunking(
    db: AsyncSession,
    services: AppServices,
    chunk_size: int | None,
    overlap: int | None,
    min_chunk_size: int | None = None,
) -> ChunkingConfig:
    """Fill unset window parameters from the stored settings snapshot."""
    snapshot = await load_answer_settings(db, services.answer_defaults)
    chunk_size = chunk_size if chunk_size is not None else snapshot.chunk_size
    if min_chunk_size is None:
        min_chunk_size = min(snapshot.min_chunk_size, chunk_size)
    return ChunkingConfig(
        chunk_size=chunk_size,
        overlap=overlap if overlap is not None else snapshot.chunk_overlap,
        min_chunk_size=min_chunk_size,
    )


# -------------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------------


@router.post("", response_model=DocumentDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_document(
    request: DocumentCreate,
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> DocumentDetailResponse:
    """Create a document, chunk it and embed every chunk."""
    try:
        document = await services.ingestor.ingest(
            db,
            title=request.title,
            content=request.content,
            chunking=await _chunking(db, services, request.chunk_size, request.overlap),
            category=request.category,
            tags=request.tags,
            author=request.author,
            source=request.source,
        )
    except DocumentValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Invalid document", "errors": e.errors},
        )
    except ChunkingConfigError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )
    except EmbeddingError as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"AI service error: {e.message}",
        )

    await db.commit()
    await db.refresh(document)
    return DocumentDetailResponse.model_validate(document)


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    category: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> DocumentListResponse:
    """List documents, newest first."""
    query = select(RagDocument)
    count_query = select(func.count(RagDocument.id))
    if category:
        query = query.where(RagDocument.category == category)
        count_query = count_query.where(RagDocument.category == category)

    total = (await db.execute(count_query)).scalar_one()
    result = await db.execute(
        query.order_by(RagDocument.created_at.desc(), RagDocument.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return DocumentListResponse(
        items=[DocumentResponse.model_validate(document) for document in result.scalars().all()],
        total=total,
    )


@router.post("/search", response_model=SearchResponse)
async def search_documents(
    request: SearchRequest,
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> SearchResponse:
    """Semantic search across document chunks."""
    query = (request.query or "").strip()
    if not query:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Query is required",
        )

    try:
        outcome = await services.retriever.search_documents(
            db,
            services.embeddings,
            query,
            limit=request.limit,
            category=request.category,
            tags=request.tags,
        )
    except EmbeddingError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"AI service error: {e.message}",
        )
    except RetrievalError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Search unavailable: {e.message}",
        )

    return SearchResponse(results=outcome.results, used_fallback=outcome.used_fallback)


@router.get("/{document_id}", response_model=DocumentDetailResponse)
async def get_document(
    document_id: int,
    db: AsyncSession = Depends(get_db),
) -> DocumentDetailResponse:
    document = await _get_document_or_404(db, document_id)
    return DocumentDetailResponse.model_validate(document)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: int,
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> Response:
    """Delete a document and all of its chunks."""
    deleted = await services.ingestor.delete_document(db, document_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Document not found",
        )
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{document_id}/chunks", response_model=list[ChunkResponse])
async def list_chunks(
    document_id: int,
    db: AsyncSession = Depends(get_db),
) -> list[ChunkResponse]:
    await _get_document_or_404(db, document_id)
    result = await db.execute(
        select(RagChunk)
        .where(RagChunk.document_id == document_id)
        .options(defer(RagChunk.embedding))
        .order_by(RagChunk.sequence)
    )
    return [ChunkResponse.model_validate(chunk) for chunk in result.scalars().all()]


@router.post("/{document_id}/rechunk", response_model=DocumentResponse)
async def rechunk_document(
    document_id: int,
    request: RechunkRequest,
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> DocumentResponse:
    """Replace a document's chunks using new window settings."""
    try:
        chunking = await _chunking(
            db, services, request.chunk_size, request.overlap, request.min_chunk_size
        )
        document = await services.ingestor.rechunk(db, document_id, chunking)
    except ChunkingConfigError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )
    except EmbeddingError as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"AI service error: {e.message}",
        )

    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Document not found",
        )

    await db.commit()
    await db.refresh(document)
    return DocumentResponse.model_validate(document)


@router.delete("/{document_id}/chunks/{sequence}", response_model=DocumentResponse)
async def delete_chunk(
    document_id: int,
    sequence: int,
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> DocumentResponse:
    """Delete one chunk and renumber the chunks after it."""
    document = await services.ingestor.delete_chunk(db, document_id, sequence)
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Chunk not found",
        )

    await db.commit()
    await db.refresh(document)
    return DocumentResponse.model_validate(document)
