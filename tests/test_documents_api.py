"""Tests for document management endpoints (/api/v1/documents/*)."""

import pytest
from httpx import AsyncClient

from lab_assistant.models.app_setting import AppSetting
from tests.fakes import unit_vector


BODY = "## Backups\n" + " ".join(
    f"Snapshot {i} captures the cluster state so it can be restored later." for i in range(30)
)


@pytest.fixture
async def created_document(client: AsyncClient) -> dict:
    response = await client.post(
        "/api/v1/documents",
        json={
            "title": "Backup Guide",
            "content": BODY,
            "category": "Operations",
            "tags": ["backup"],
            "chunk_size": 400,
            "overlap": 50,
        },
    )
    assert response.status_code == 201
    return response.json()


class TestCreateDocument:
    async def test_create_returns_document(self, created_document: dict):
        assert created_document["title"] == "Backup Guide"
        assert created_document["category"] == "Operations"
        assert created_document["tags"] == ["backup"]
        assert created_document["chunk_count"] > 1
        assert created_document["content"] == BODY

    async def test_validation_errors_listed(self, client: AsyncClient, embedding_client):
        response = await client.post(
            "/api/v1/documents",
            json={"title": "", "content": 42, "tags": "not-a-list"},
        )

        assert response.status_code == 400
        assert len(response.json()["detail"]["errors"]) == 3
        assert embedding_client.calls == []

    async def test_invalid_chunking_returns_400(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/documents",
            json={"title": "T", "content": BODY, "chunk_size": 200, "overlap": 300},
        )

        assert response.status_code == 400

    async def test_stored_chunk_settings_used(self, client: AsyncClient, db_session):
        db_session.add(AppSetting(key="chunk_size", value=500))
        db_session.add(AppSetting(key="chunk_overlap", value=50))
        await db_session.commit()

        response = await client.post("/api/v1/documents", json={"title": "T", "content": "a" * 2500})

        assert response.status_code == 201
        assert response.json()["chunk_count"] == 6

    async def test_startup_chunk_settings_by_default(self, client: AsyncClient):
        response = await client.post("/api/v1/documents", json={"title": "T", "content": "a" * 2500})

        assert response.json()["chunk_count"] == 3

    async def test_embedding_failure_returns_503(self, client: AsyncClient, embedding_client):
        embedding_client.fail = True

        response = await client.post("/api/v1/documents", json={"title": "T", "content": BODY})

        assert response.status_code == 503
        listing = await client.get("/api/v1/documents")
        assert listing.json()["total"] == 0


class TestReadDocuments:
    async def test_list_filters_by_category(self, client: AsyncClient, created_document: dict):
        await client.post("/api/v1/documents", json={"title": "Other", "content": "Short text.", "category": "Dev"})

        response = await client.get("/api/v1/documents", params={"category": "Operations"})

        data = response.json()
        assert data["total"] == 1
        assert [item["title"] for item in data["items"]] == ["Backup Guide"]

    async def test_get_missing_returns_404(self, client: AsyncClient):
        response = await client.get("/api/v1/documents/999")

        assert response.status_code == 404

    async def test_chunks_ordered_by_sequence(self, client: AsyncClient, created_document: dict):
        response = await client.get(f"/api/v1/documents/{created_document['id']}/chunks")

        chunks = response.json()
        assert len(chunks) == created_document["chunk_count"]
        assert [c["sequence"] for c in chunks] == list(range(len(chunks)))
        assert chunks[0]["section"] == "Backups"
        assert "embedding" not in chunks[0]


class TestChunkMaintenance:
    async def test_rechunk(self, client: AsyncClient, created_document: dict):
        response = await client.post(
            f"/api/v1/documents/{created_document['id']}/rechunk",
            json={"chunk_size": 1000, "overlap": 100},
        )

        assert response.status_code == 200
        assert response.json()["chunk_count"] < created_document["chunk_count"]

    async def test_rechunk_uses_stored_overlap(
        self, client: AsyncClient, db_session, created_document: dict
    ):
        db_session.add(AppSetting(key="chunk_overlap", value=0))
        await db_session.commit()

        response = await client.post(
            f"/api/v1/documents/{created_document['id']}/rechunk",
            json={"chunk_size": 400},
        )

        assert response.status_code == 200
        chunks = (await client.get(f"/api/v1/documents/{created_document['id']}/chunks")).json()
        for previous, current in zip(chunks, chunks[1:]):
            assert current["start_index"] == previous["end_index"]

    async def test_rechunk_min_size_above_chunk_size_returns_400(
        self, client: AsyncClient, created_document: dict
    ):
        response = await client.post(
            f"/api/v1/documents/{created_document['id']}/rechunk",
            json={"chunk_size": 400, "overlap": 50, "min_chunk_size": 600},
        )

        assert response.status_code == 400

    async def test_rechunk_too_small_returns_400(self, client: AsyncClient, created_document: dict):
        response = await client.post(
            f"/api/v1/documents/{created_document['id']}/rechunk",
            json={"chunk_size": 50, "overlap": 10},
        )

        assert response.status_code == 400

    async def test_delete_chunk_resequences(self, client: AsyncClient, created_document: dict):
        doc_id = created_document["id"]

        response = await client.delete(f"/api/v1/documents/{doc_id}/chunks/0")

        assert response.status_code == 200
        assert response.json()["chunk_count"] == created_document["chunk_count"] - 1
        chunks = (await client.get(f"/api/v1/documents/{doc_id}/chunks")).json()
        assert [c["sequence"] for c in chunks] == list(range(len(chunks)))

    async def test_delete_missing_chunk_returns_404(self, client: AsyncClient, created_document: dict):
        response = await client.delete(f"/api/v1/documents/{created_document['id']}/chunks/500")

        assert response.status_code == 404

    async def test_delete_document(self, client: AsyncClient, created_document: dict):
        doc_id = created_document["id"]

        response = await client.delete(f"/api/v1/documents/{doc_id}")

        assert response.status_code == 204
        assert (await client.get(f"/api/v1/documents/{doc_id}")).status_code == 404
        assert (await client.delete(f"/api/v1/documents/{doc_id}")).status_code == 404


class TestSearch:
    async def test_blank_query_returns_400(self, client: AsyncClient):
        response = await client.post("/api/v1/documents/search", json={"query": " "})

        assert response.status_code == 400

    async def test_search_returns_scored_results(
        self, client: AsyncClient, embedding_client, add_document
    ):
        embedding_client.vectors["restore a snapshot"] = unit_vector(0)
        await add_document("Restore", [("Restoring snapshots.", unit_vector(0))], category="Operations")
        await add_document("Charts", [("Building charts.", unit_vector(4))], category="Analytics")

        response = await client.post(
            "/api/v1/documents/search",
            json={"query": "restore a snapshot", "limit": 5},
        )

        data = response.json()
        assert data["used_fallback"] is False
        assert [r["title"] for r in data["results"]] == ["Restore", "Charts"]
        assert data["results"][0]["score"] == pytest.approx(1.0)

    async def test_search_category_filter(self, client: AsyncClient, add_document):
        await add_document("Restore", [("Restoring snapshots.", unit_vector(0))], category="Operations")
        await add_document("Charts", [("Building charts.", unit_vector(4))], category="Analytics")

        response = await client.post(
            "/api/v1/documents/search",
            json={"query": "charts", "category": "Analytics"},
        )

        assert [r["title"] for r in response.json()["results"]] == ["Charts"]


class TestSettings:
    async def test_defaults(self, client: AsyncClient):
        response = await client.get("/api/v1/settings")

        data = response.json()
        assert data["duplicate_threshold"] == 0.98
        assert data["relevance_threshold"] == 0.7
        assert data["enable_rag"] is True

    async def test_stored_override_and_invalid_value(self, client: AsyncClient, db_session):
        db_session.add(AppSetting(key="relevance_threshold", value=0.6))
        db_session.add(AppSetting(key="max_context_chunks", value="lots"))
        db_session.add(AppSetting(key="unknown_key", value=1))
        await db_session.commit()

        data = (await client.get("/api/v1/settings")).json()

        assert data["relevance_threshold"] == 0.6
        assert data["max_context_chunks"] == 5

    async def test_chunk_window_overrides_applied_together(self, client: AsyncClient, db_session):
        db_session.add(AppSetting(key="chunk_size", value=150))
        db_session.add(AppSetting(key="chunk_overlap", value=50))
        db_session.add(AppSetting(key="duplicate_threshold", value=1.2))
        await db_session.commit()

        data = (await client.get("/api/v1/settings")).json()

        assert data["chunk_size"] == 150
        assert data["chunk_overlap"] == 50
        assert data["duplicate_threshold"] == 0.98
