"""Embedding generation behind a bounded, expiring cache.

The provider talks to OpenAI's embeddings endpoint by default. Identical
texts are served from an LRU cache until their TTL runs out.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from threading import Lock
from typing import TYPE_CHECKING, Callable, Optional, Protocol, Sequence

import numpy as np

from lab_assistant.knowledge.errors import EmbeddingDimensionError, EmbeddingError
from lab_assistant.observability import MetricsBackend, get_metrics_backend

if TYPE_CHECKING:
    from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class EmbeddingClient(Protocol):
    """External embedding service."""

    async def embed(self, text: str) -> list[float]:
        ...


class EmbeddingCache:
    """Thread-safe LRU cache with per-entry time-to-live.

    Keys are exact text strings. Entries are evicted least-recently-used once
    ``max_entries`` is reached, and expire ``ttl_seconds`` after being stored
    regardless of how often they are read.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        ttl_seconds: float = 86400,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        self._entries: OrderedDict[str, tuple[float, list[float]]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, text: str) -> Optional[list[float]]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(text)
            if entry is None:
                self._misses += 1
                return None
            stored_at, vector = entry
            if now - stored_at >= self.ttl_seconds:
                del self._entries[text]
                self._misses += 1
                return None
            self._entries.move_to_end(text)
            self._hits += 1
            return vector

    def set(self, text: str, vector: list[float]) -> None:
        now = self._clock()
        with self._lock:
            if text in self._entries:
                self._entries.move_to_end(text)
            self._entries[text] = (now, vector)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class OpenAIEmbeddingClient:
    """Embedding client using OpenAI's embeddings API."""

    def __init__(
        self,
        client: "AsyncOpenAI",
        model: str = "text-embedding-ada-002",
        metrics: MetricsBackend | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.metrics = metrics or get_metrics_backend()

    async def embed(self, text: str) -> list[float]:
        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await self.client.embeddings.create(model=self.model, input=text)
            status_code = 200
        except Exception as e:
            status_code = getattr(e, "status_code", None) or 500
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.metrics.observe_external_api("openai", "embeddings", status_code, duration_ms)
            logger.info(
                "OpenAI API embeddings status=%s duration_ms=%.2f",
                status_code,
                duration_ms,
            )

        return list(response.data[0].embedding)


class EmbeddingProvider:
    """Cached access to an embedding service with a fixed output dimension."""

    def __init__(
        self,
        client: EmbeddingClient,
        cache: EmbeddingCache,
        dimensions: int = 1536,
    ) -> None:
        self.client = client
        self.cache = cache
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        """Return the embedding for ``text``.

        Raises:
            EmbeddingError: If the embedding service fails. Not retried here.
            EmbeddingDimensionError: If the service returns a vector of the wrong size.
        """
        cached = self.cache.get(text)
        if cached is not None:
            logger.debug("Embedding cache hit for text: %s...", text[:50])
            return cached

        try:
            vector = await self.client.embed(text)
        except Exception as e:
            logger.error("Embedding generation failed: %s", e)
            raise EmbeddingError(f"Embedding generation failed: {e}") from e

        vector = [float(v) for v in vector]
        if len(vector) != self.dimensions:
            raise EmbeddingDimensionError(
                f"Expected {self.dimensions}-dim embedding, got {len(vector)}"
            )

        self.cache.set(text, vector)
        return vector

    async def embed_many(
        self,
        texts: Sequence[str],
        max_concurrency: int = 4,
    ) -> list[list[float]]:
        """Embed several texts with at most ``max_concurrency`` calls in flight.

        Output order matches input order. The first failure cancels the rest
        and is raised to the caller.
        """
        if not texts:
            return []

        semaphore = asyncio.Semaphore(max(1, max_concurrency))

        async def _embed(text: str) -> list[float]:
            async with semaphore:
                return await self.embed(text)

        tasks = [asyncio.create_task(_embed(text)) for text in texts]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine similarity ``dot / (|a| * |b|)``.

    Raises:
        ValueError: On empty, mismatched-length or zero-norm input.
    """
    a = np.asarray(vec_a, dtype=np.float64)
    b = np.asarray(vec_b, dtype=np.float64)

    if a.ndim != 1 or b.ndim != 1 or a.size == 0 or b.size == 0:
        raise ValueError("Vectors must be non-empty and one-dimensional")
    if a.shape != b.shape:
        raise ValueError(f"Vectors must have the same length ({a.size} != {b.size})")

    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        raise ValueError("Cosine similarity is undefined for zero vectors")

    return float(np.dot(a, b) / norm)


def normalized_score(cosine: float) -> float:
    """Map cosine similarity from [-1, 1] onto a [0, 1] score."""
    return max(0.0, min(1.0, (1.0 + cosine) / 2.0))
