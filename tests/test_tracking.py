"""Tests for best-effort usage tracking."""

import pytest
from sqlalchemy import select

from lab_assistant.knowledge.models import RetrievalResult, RetrievedChunk
from lab_assistant.knowledge.tracking import UsageTracker
from lab_assistant.models.document import RagChunk
from lab_assistant.models.tracking import RetrievalQuery, UsageMetric
from lab_assistant.observability import MetricsCollector
from tests.fakes import unit_vector


@pytest.fixture
async def used_chunks(db_session, add_document) -> list[RetrievalResult]:
    document = await add_document(
        "Replication",
        [("Replica sets elect a primary.", unit_vector(0)), ("Secondaries replicate.", unit_vector(1))],
    )
    result = await db_session.execute(
        select(RagChunk).where(RagChunk.document_id == document.id).order_by(RagChunk.sequence)
    )
    return [
        RetrievalResult(
            document_id=document.id,
            title=document.title,
            chunk=RetrievedChunk(
                id=chunk.id,
                content=chunk.content,
                start_index=chunk.start_index,
                end_index=chunk.end_index,
                section=chunk.section,
                sequence=chunk.sequence,
            ),
            score=score,
        )
        for chunk, score in zip(result.scalars().all(), [0.91, float("nan")])
    ]


class TestUsageTracker:
    async def test_track_writes_query_and_metrics(self, session_factory, used_chunks):
        metrics = MetricsCollector()
        tracker = UsageTracker(session_factory, metrics)

        await tracker.track(
            "How do elections work?",
            unit_vector(0),
            used_chunks,
            "A majority vote picks the primary.",
            user_id="u1",
            session_id="s1",
        )

        async with session_factory() as session:
            query = (await session.execute(select(RetrievalQuery))).scalar_one()
            usage = (
                await session.execute(select(UsageMetric).order_by(UsageMetric.id))
            ).scalars().all()

        assert query.question == "How do elections work?"
        assert query.response == "A majority vote picks the primary."
        assert query.retrieved_chunks == [
            {"document_id": used_chunks[0].document_id, "chunk_index": 0, "relevance_score": 0.91},
            {"document_id": used_chunks[0].document_id, "chunk_index": 1, "relevance_score": 0.5},
        ]
        assert [m.chunk_id for m in usage] == [r.chunk.id for r in used_chunks]
        assert [m.relevance_score for m in usage] == [0.91, 0.5]
        assert all(m.query_id == query.id and m.user_id == "u1" for m in usage)
        assert "usage_tracking_total{status=\"success\"} 1" in metrics.render_prometheus()

    async def test_track_swallows_database_errors(self, used_chunks):
        metrics = MetricsCollector()

        def broken_factory():
            raise RuntimeError("connection refused")

        tracker = UsageTracker(broken_factory, metrics)

        await tracker.track("question", None, used_chunks, "answer")

        assert "usage_tracking_total{status=\"error\"} 1" in metrics.render_prometheus()

    async def test_dispatch_runs_in_background(self, session_factory, used_chunks):
        tracker = UsageTracker(session_factory, MetricsCollector())

        task = tracker.dispatch("question", None, used_chunks, "answer")
        assert tracker.pending == 1

        await tracker.drain()

        assert task.done()
        assert tracker.pending == 0
        async with session_factory() as session:
            count = len((await session.execute(select(UsageMetric))).scalars().all())
        assert count == 2
