"""Test doubles for the external services and vector index."""

import hashlib
import math
from typing import Any, Sequence

import numpy as np

from lab_assistant.knowledge.errors import GenerationError
from lab_assistant.knowledge.models import ChatTurn
from lab_assistant.knowledge.tracking import UsageTracker
from lab_assistant.models.document import EMBEDDING_DIM


def unit_vector(index: int, dimensions: int = EMBEDDING_DIM) -> list[float]:
    vector = [0.0] * dimensions
    vector[index] = 1.0
    return vector


def vector_with_cosine(cosine: float, dimensions: int = EMBEDDING_DIM) -> list[float]:
    """Unit vector whose cosine with ``unit_vector(0)`` is ``cosine``."""
    vector = [0.0] * dimensions
    vector[0] = cosine
    vector[1] = math.sqrt(1.0 - cosine * cosine)
    return vector


class FakeEmbeddingClient:
    """Deterministic embeddings keyed by text.

    Unknown texts get a pseudo-random vector seeded from the text, so two
    different texts are nearly orthogonal. ``vectors`` pins specific texts.
    """

    def __init__(self, dimensions: int = EMBEDDING_DIM) -> None:
        self.dimensions = dimensions
        self.vectors: dict[str, list[float]] = {}
        self.calls: list[str] = []
        self.fail = False

    def vector_for(self, text: str) -> list[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        rng = np.random.default_rng(seed)
        return rng.standard_normal(self.dimensions).tolist()

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        return self.vector_for(text)


class FakeGenerator:
    """Records prompts and returns a canned answer."""

    def __init__(self, reply: str = "Generated answer") -> None:
        self.reply = reply
        self.calls: list[dict[str, Any]] = []
        self.fail = False

    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        history: Sequence[ChatTurn] = (),
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_message": user_message,
                "history": list(history),
            }
        )
        if self.fail:
            raise GenerationError("model unavailable")
        return self.reply


class FailingVectorSearch:
    """Vector index that is always down."""

    def __init__(self) -> None:
        self.calls = 0

    async def search(self, session, model, path, query_vector, num_candidates, limit):
        self.calls += 1
        raise RuntimeError("vector index unavailable")


class RecordingTracker(UsageTracker):
    """Tracker that records dispatches instead of writing them."""

    def __init__(self) -> None:
        super().__init__(session_factory=None)
        self.dispatched: list[dict[str, Any]] = []

    def dispatch(
        self,
        question,
        question_embedding,
        used_chunks,
        response,
        user_id=None,
        session_id=None,
    ):
        self.dispatched.append(
            {
                "question": question,
                "used_chunks": list(used_chunks),
                "response": response,
                "user_id": user_id,
                "session_id": session_id,
            }
        )
        return None
