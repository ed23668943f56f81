"""API v1 router aggregating all endpoint routers.

Chat:
  /api/v1/chat

Documents:
  /api/v1/documents (create, list, detail, delete)
  /api/v1/documents/{id}/chunks, /rechunk, /chunks/{sequence}
  /api/v1/documents/search

Settings:
  /api/v1/settings
"""

from fastapi import APIRouter

from lab_assistant.api.v1.endpoints import chat, documents, settings

api_router = APIRouter()

# -------------------------------------------------------------------------
# Question answering
# -------------------------------------------------------------------------
api_router.include_router(chat.router, prefix="/chat", tags=["chat"])

# -------------------------------------------------------------------------
# Knowledge base documents
# -------------------------------------------------------------------------
api_router.include_router(documents.router, prefix="/documents", tags=["documents"])

# -------------------------------------------------------------------------
# Settings (read-only)
# -------------------------------------------------------------------------
api_router.include_router(settings.router, prefix="/settings", tags=["settings"])
