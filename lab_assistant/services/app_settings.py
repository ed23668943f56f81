"""Answer-selection settings snapshot.

Values come from the ``app_settings`` table layered over the defaults in
``Settings``. Missing or invalid rows fall back to the defaults.
"""

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lab_assistant.core.config import Settings
from lab_assistant.models.app_setting import AppSetting

logger = logging.getLogger(__name__)


class AnswerSettings(BaseModel):
    """Read-only configuration used while answering one question."""

    duplicate_threshold: float = Field(0.98, ge=0.0, le=1.0)
    relevance_threshold: float = Field(0.7, ge=0.0, le=1.0)
    chunk_size: int = Field(1000, ge=1)
    chunk_overlap: int = Field(200, ge=0)
    min_chunk_size: int = Field(100, ge=0)
    max_context_chunks: int = Field(5, ge=1)
    enable_rag: bool = True
    enable_feedback_collection: bool = True
    enable_sentiment_analysis: bool = True
    sentiment_analysis_threshold: float = Field(0.3, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_chunk_window(self) -> "AnswerSettings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        if self.min_chunk_size > self.chunk_size:
            raise ValueError("min_chunk_size must not exceed chunk_size")
        return self

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnswerSettings":
        return cls(
            duplicate_threshold=settings.duplicate_threshold,
            relevance_threshold=settings.relevance_threshold,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            min_chunk_size=settings.min_chunk_size,
            max_context_chunks=settings.max_context_chunks,
        )


async def load_answer_settings(
    session: AsyncSession,
    defaults: AnswerSettings | None = None,
) -> AnswerSettings:
    """Build a snapshot from stored overrides.

    A database error yields the defaults; the caller never sees it.
    """
    defaults = defaults or AnswerSettings()

    try:
        result = await session.execute(select(AppSetting.key, AppSetting.value))
        rows = result.all()
    except Exception as e:
        logger.warning("Could not load app settings, using defaults: %s", e)
        return defaults

    overrides = {
        key: value
        for key, value in rows
        if key in AnswerSettings.model_fields and value is not None
    }
    while overrides:
        try:
            return AnswerSettings.model_validate({**defaults.model_dump(), **overrides})
        except ValidationError as e:
            invalid = {error["loc"][0] for error in e.errors() if error["loc"]} & overrides.keys()
        if not invalid:
            break
        for key in invalid:
            logger.warning("Ignoring invalid value for setting %s: %r", key, overrides.pop(key))

    # Values that conflict with each other are applied one at a time
    snapshot = defaults
    for key, value in overrides.items():
        snapshot = _apply(snapshot, key, value)
    return snapshot


def _apply(snapshot: AnswerSettings, key: str, value: Any) -> AnswerSettings:
    data = snapshot.model_dump()
    data[key] = value
    try:
        return AnswerSettings.model_validate(data)
    except ValidationError:
        logger.warning("Ignoring invalid value for setting %s: %r", key, value)
        return snapshot
