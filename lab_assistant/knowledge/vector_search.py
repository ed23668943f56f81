"""Vector similarity search backends.

Both backends return ``(row, score)`` pairs with the score normalized to
[0, 1] from cosine similarity, best first.
"""

import contextlib
import logging
from typing import Any, Protocol, Sequence

import numpy as np
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from lab_assistant.knowledge.embeddings import normalized_score

logger = logging.getLogger(__name__)


class VectorSearchBackend(Protocol):
    """Nearest-neighbour search over an embedding column."""

    async def search(
        self,
        session: AsyncSession,
        model: type[Any],
        path: str,
        query_vector: Sequence[float],
        num_candidates: int,
        limit: int,
    ) -> list[tuple[Any, float]]:
        ...


class PgVectorSearch:
    """Approximate search using pgvector's cosine distance operator.

    ``num_candidates`` sets the HNSW candidate list size for the
    current transaction.
    """

    async def search(
        self,
        session: AsyncSession,
        model: type[Any],
        path: str,
        query_vector: Sequence[float],
        num_candidates: int,
        limit: int,
    ) -> list[tuple[Any, float]]:
        column = getattr(model, path)
        distance = column.cosine_distance(list(query_vector)).label("distance")

        if session.get_bind().dialect.name == "postgresql":
            ef_search = max(int(num_candidates), int(limit))
            await session.execute(text(f"SET LOCAL hnsw.ef_search = {ef_search}"))

        result = await session.execute(
            select(model, distance)
            .where(column.is_not(None))
            .order_by(distance)
            .limit(limit)
        )
        return [
            (row[0], normalized_score(1.0 - float(row[1])))
            for row in result.all()
        ]


class ExactVectorSearch:
    """Brute-force cosine ranking in numpy over every stored embedding."""

    async def search(
        self,
        session: AsyncSession,
        model: type[Any],
        path: str,
        query_vector: Sequence[float],
        num_candidates: int,
        limit: int,
    ) -> list[tuple[Any, float]]:
        column = getattr(model, path)
        result = await session.execute(select(model).where(column.is_not(None)))
        rows = [row for row in result.scalars().all() if getattr(row, path) is not None]
        if not rows:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        matrix = np.asarray([np.asarray(getattr(row, path), dtype=np.float64) for row in rows])
        if matrix.shape[1] != query.shape[0]:
            raise ValueError(
                f"Query dimension {query.shape[0]} does not match stored {matrix.shape[1]}"
            )

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        valid = norms > 0
        cosines = np.full(len(rows), -1.0)
        cosines[valid] = (matrix[valid] @ query) / norms[valid]

        order = np.argsort(-cosines, kind="stable")[:limit]
        return [
            (rows[i], normalized_score(float(cosines[i])))
            for i in order
            if valid[i]
        ]


def savepoint(session: AsyncSession):
    """Savepoint on PostgreSQL so a failed search leaves the outer transaction usable."""
    if session.get_bind().dialect.name == "postgresql":
        return session.begin_nested()
    return contextlib.nullcontext()


def build_vector_search(backend: str) -> VectorSearchBackend:
    """Return the search backend named in settings."""
    if backend == "exact":
        return ExactVectorSearch()
    if backend != "pgvector":
        logger.warning("Unknown vector search backend %r, using pgvector", backend)
    return PgVectorSearch()
