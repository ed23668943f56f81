"""Chat endpoint answering questions within a chat session."""

import logging
import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lab_assistant.api.deps import AppServices, get_services
from lab_assistant.core.database import get_db
from lab_assistant.knowledge.errors import (
    EmbeddingError,
    GenerationError,
    QuestionValidationError,
)
from lab_assistant.knowledge.models import AnswerRequest, AnswerSource, ChatTurn
from lab_assistant.models.chat import ChatMessage, ChatSession

router = APIRouter()
logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------


class ChatRequest(BaseModel):
    """Question sent from the chat UI."""

    question: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    debug: bool = False


class ChatResponse(BaseModel):
    answer: str
    title: str
    summary: Optional[str] = None
    references: list[Any]
    source: AnswerSource
    debug_info: Optional[dict[str, Any]] = None
    session_id: str


# -------------------------------------------------------------------------
# Chat history helpers
# -------------------------------------------------------------------------


async def get_recent_messages(db: AsyncSession, chat_session: ChatSession) -> list[ChatTurn]:
    """Last ``context_window`` exchanges in chronological order."""
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.chat_session_id == chat_session.id)
        .order_by(ChatMessage.id.desc())
        .limit(chat_session.context_window * 2)
    )
    history = list(reversed(result.scalars().all()))
    return [
        ChatTurn(role=message.role, content=message.content)
        for message in history
        if message.role in ("user", "assistant")
    ]


# -------------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------------


@router.post("", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> ChatResponse:
    """Answer a question and append both turns to the chat session.

    Raises:
        HTTPException: 400 for a blank question or unknown session,
            503 when the embedding or generation service fails.
    """
    question = (request.question or "").strip()
    if not question:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Question is required",
        )

    chat_session: ChatSession | None = None
    recent_messages: list[ChatTurn] = []
    if request.session_id:
        result = await db.execute(
            select(ChatSession).where(ChatSession.session_id == request.session_id)
        )
        chat_session = result.scalar_one_or_none()
        if chat_session is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid session",
            )
        recent_messages = await get_recent_messages(db, chat_session)

    session_id = chat_session.session_id if chat_session else str(uuid.uuid4())

    try:
        answer = await services.selector.answer(
            db,
            AnswerRequest(
                question=question,
                recent_messages=recent_messages,
                debug=request.debug,
                user_id=request.user_id,
                session_id=session_id,
            ),
        )
    except QuestionValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )
    except (EmbeddingError, GenerationError) as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"AI service error: {e.message}",
        )

    if chat_session is None:
        chat_session = ChatSession(
            session_id=session_id,
            user_id=request.user_id,
            context_window=services.settings.chat_context_window,
        )
        db.add(chat_session)
        await db.flush()

    db.add(
        ChatMessage(
            chat_session_id=chat_session.id,
            role="user",
            content=question,
        )
    )
    db.add(
        ChatMessage(
            chat_session_id=chat_session.id,
            role="assistant",
            content=answer.answer,
            message_metadata={
                "title": answer.title,
                "summary": answer.summary,
                "references": answer.references,
                "source": answer.source.model_dump(),
            },
        )
    )
    await db.commit()

    return ChatResponse(
        answer=answer.answer,
        title=answer.title,
        summary=answer.summary,
        references=answer.references,
        source=answer.source,
        debug_info=answer.debug_info,
        session_id=session_id,
    )
