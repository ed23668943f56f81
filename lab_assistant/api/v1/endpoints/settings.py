"""Effective answer settings."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from lab_assistant.api.deps import AppServices, get_services
from lab_assistant.core.database import get_db
from lab_assistant.services.app_settings import AnswerSettings, load_answer_settings

router = APIRouter()


@router.get("", response_model=AnswerSettings)
async def get_answer_settings(
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> AnswerSettings:
    """Return the snapshot the next question would be answered with."""
    return await load_answer_settings(db, services.answer_defaults)
