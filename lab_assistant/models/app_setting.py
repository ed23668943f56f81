"""Runtime-tunable settings stored in the database."""

from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from lab_assistant.models.base import BaseModel


class AppSetting(BaseModel):
    """Key/value override for an answer-selection setting."""

    __tablename__ = "app_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    key: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    value: Mapped[Any] = mapped_column(JSONB, nullable=True)

    def __repr__(self) -> str:
        return f"<AppSetting(key={self.key!r})>"
