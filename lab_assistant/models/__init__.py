"""Database models."""

from lab_assistant.models.app_setting import AppSetting
from lab_assistant.models.base import BaseModel
from lab_assistant.models.chat import ChatMessage, ChatSession
from lab_assistant.models.document import RagChunk, RagDocument
from lab_assistant.models.question import CuratedQuestion, UnansweredQuestion
from lab_assistant.models.tracking import RetrievalQuery, UsageMetric

__all__ = [
    "AppSetting",
    "BaseModel",
    "ChatMessage",
    "ChatSession",
    "CuratedQuestion",
    "RagChunk",
    "RagDocument",
    "RetrievalQuery",
    "UnansweredQuestion",
    "UsageMetric",
]
