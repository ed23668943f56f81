"""Tests for the embedding cache, provider and similarity helpers."""

import asyncio

import pytest

from lab_assistant.knowledge.embeddings import (
    EmbeddingCache,
    EmbeddingProvider,
    cosine_similarity,
    normalized_score,
)
from lab_assistant.knowledge.errors import EmbeddingDimensionError, EmbeddingError
from tests.fakes import FakeEmbeddingClient


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestEmbeddingCache:
    """LRU eviction, TTL expiry and stats."""

    def test_get_returns_stored_vector(self):
        cache = EmbeddingCache()
        cache.set("hello", [0.1, 0.2])

        assert cache.get("hello") == [0.1, 0.2]
        assert cache.get("missing") is None
        assert cache.stats()["hits"] == 1
        assert cache.stats()["misses"] == 1

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = EmbeddingCache(ttl_seconds=60, clock=clock)
        cache.set("hello", [1.0])

        clock.now = 59
        assert cache.get("hello") == [1.0]

        clock.now = 60
        assert cache.get("hello") is None
        assert len(cache) == 0

    def test_least_recently_used_evicted(self):
        cache = EmbeddingCache(max_entries=2)
        cache.set("a", [1.0])
        cache.set("b", [2.0])
        cache.get("a")
        cache.set("c", [3.0])

        assert cache.get("b") is None
        assert cache.get("a") == [1.0]
        assert cache.get("c") == [3.0]
        assert cache.stats()["evictions"] == 1

    def test_clear_resets_entries_and_counters(self):
        cache = EmbeddingCache()
        cache.set("a", [1.0])
        cache.get("a")

        cache.clear()

        assert len(cache) == 0
        assert cache.stats() == {
            "size": 0,
            "max_entries": 1000,
            "hits": 0,
            "misses": 0,
            "evictions": 0,
        }

    def test_invalid_max_entries(self):
        with pytest.raises(ValueError):
            EmbeddingCache(max_entries=0)


class TestEmbeddingProvider:
    """Caching, error wrapping and bounded fan-out."""

    async def test_second_call_served_from_cache(self, embedding_client: FakeEmbeddingClient):
        provider = EmbeddingProvider(embedding_client, EmbeddingCache())

        first = await provider.embed("What is an index?")
        second = await provider.embed("What is an index?")

        assert first == second
        assert embedding_client.calls == ["What is an index?"]

    async def test_client_failure_raises_embedding_error(self, embedding_client: FakeEmbeddingClient):
        embedding_client.fail = True
        provider = EmbeddingProvider(embedding_client, EmbeddingCache())

        with pytest.raises(EmbeddingError):
            await provider.embed("anything")

    async def test_failure_is_not_cached(self, embedding_client: FakeEmbeddingClient):
        cache = EmbeddingCache()
        provider = EmbeddingProvider(embedding_client, cache)
        embedding_client.fail = True
        with pytest.raises(EmbeddingError):
            await provider.embed("retry me")

        embedding_client.fail = False
        await provider.embed("retry me")

        assert len(embedding_client.calls) == 2
        assert len(cache) == 1

    async def test_wrong_dimension_rejected(self):
        client = FakeEmbeddingClient(dimensions=8)
        provider = EmbeddingProvider(client, EmbeddingCache(), dimensions=16)

        with pytest.raises(EmbeddingDimensionError):
            await provider.embed("short vector")

    async def test_embed_many_preserves_order(self, embedding_client: FakeEmbeddingClient):
        provider = EmbeddingProvider(embedding_client, EmbeddingCache())
        texts = [f"chunk {i}" for i in range(10)]

        vectors = await provider.embed_many(texts, max_concurrency=3)

        assert vectors == [embedding_client.vector_for(text) for text in texts]

    async def test_embed_many_bounds_concurrency(self):
        class SlowClient(FakeEmbeddingClient):
            def __init__(self) -> None:
                super().__init__(dimensions=4)
                self.in_flight = 0
                self.peak = 0

            async def embed(self, text: str) -> list[float]:
                self.in_flight += 1
                self.peak = max(self.peak, self.in_flight)
                await asyncio.sleep(0.01)
                self.in_flight -= 1
                return await super().embed(text)

        client = SlowClient()
        provider = EmbeddingProvider(client, EmbeddingCache(), dimensions=4)

        await provider.embed_many([f"text {i}" for i in range(12)], max_concurrency=3)

        assert client.peak <= 3
        assert len(client.calls) == 12

    async def test_embed_many_propagates_failure(self, embedding_client: FakeEmbeddingClient):
        embedding_client.fail = True
        provider = EmbeddingProvider(embedding_client, EmbeddingCache())

        with pytest.raises(EmbeddingError):
            await provider.embed_many(["a", "b", "c"])

    async def test_embed_many_empty(self, embedding_client: FakeEmbeddingClient):
        provider = EmbeddingProvider(embedding_client, EmbeddingCache())

        assert await provider.embed_many([]) == []
        assert embedding_client.calls == []


class TestCosineSimilarity:
    """Similarity math."""

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_symmetric(self):
        a = [0.3, -1.2, 4.0]
        b = [2.0, 0.5, -0.7]

        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_orthogonal_and_opposite(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    @pytest.mark.parametrize(
        "a,b",
        [
            ([], []),
            ([1.0, 2.0], [1.0]),
            ([0.0, 0.0], [1.0, 1.0]),
        ],
    )
    def test_invalid_input_raises(self, a, b):
        with pytest.raises(ValueError):
            cosine_similarity(a, b)

    def test_normalized_score_range(self):
        assert normalized_score(1.0) == pytest.approx(1.0)
        assert normalized_score(0.0) == pytest.approx(0.5)
        assert normalized_score(-1.0) == pytest.approx(0.0)
        assert normalized_score(0.98) == pytest.approx(0.99)
