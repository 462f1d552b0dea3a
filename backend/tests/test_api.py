from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from conftest import FakeAIClient
from quality_engine.db.quality_store import QualityStoreError
from quality_engine.main import app, get_quality_service

COMMITS = [
    {"sha": "a" * 40, "message": "feat: add pagination to the list endpoint", "category": "feature"},
    {"sha": "b" * 40, "message": "test: cover the pagination edge cases", "author": {"name": "dev"}},
]


@pytest.fixture
def client(make_service):
    service = make_service(ai_client=FakeAIClient())
    app.dependency_overrides[get_quality_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_healthz(client):
    with patch("quality_engine.main.check_db_connection", return_value=True):
        response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["database"] == "ok"


def test_analyze_returns_camel_case_result(client):
    response = client.post("/api/quality/analyze", json={"commits": COMMITS, "repositoryId": "octo/repo"})

    assert response.status_code == 200
    body = response.json()
    assert body["qualityScore"] == 0.5
    assert body["analysisMethod"] == "basic"
    assert body["metadata"]["commitsAnalyzed"] == 2
    assert body["metadata"]["cacheKey"] == "quality-octo-repo-weekly-2024-03-15-0"


def test_analyze_validates_the_request(client):
    response = client.post("/api/quality/analyze", json={"commits": [{"message": "no sha"}]})
    assert response.status_code == 422


def test_trends_after_analysis(client):
    client.post("/api/quality/analyze", json={"commits": COMMITS, "repositoryId": "repo"})

    response = client.get("/api/quality/trends", params={"repositoryId": "repo", "days": 7})

    assert response.status_code == 200
    body = response.json()
    assert body["direction"] == "insufficient_data"
    assert body["historicalData"][0]["score"] == 0.5


def test_multi_repo_trends(client):
    response = client.get("/api/quality/trends/multi", params=[("repositoryIds", "a"), ("repositoryIds", "b")])

    assert response.status_code == 200
    assert response.json()["summary"]["noData"] == 2


def test_cache_key(client):
    response = client.post("/api/quality/cache-key", json={"commits": COMMITS * 3, "repositoryId": "octo/repo", "timeframe": "monthly"})
    assert response.json() == {"cacheKey": "quality-octo-repo-monthly-2024-03-15-10"}


def test_clear_cache_and_stats(client):
    client.post("/api/quality/analyze", json={"commits": COMMITS, "repositoryId": "repo"})

    stats = client.get("/api/quality/stats", params={"repositoryId": "repo"}).json()
    assert stats["totalAnalyses"] == 1

    response = client.delete("/api/quality/cache", params={"repositoryId": "repo", "olderThanHours": 0})
    assert response.json() == {"repositoryId": "repo", "deleted": 0}


def test_store_errors_become_500(make_service):
    store = MagicMock()
    store.stats.side_effect = QualityStoreError("database is locked")
    store.delete_older_than.side_effect = QualityStoreError("database is locked")
    app.dependency_overrides[get_quality_service] = lambda: make_service(store=store)
    try:
        client = TestClient(app)
        assert client.get("/api/quality/stats").status_code == 500
        response = client.delete("/api/quality/cache", params={"repositoryId": "repo"})
        assert response.status_code == 500
        assert "database is locked" in response.json()["detail"]
    finally:
        app.dependency_overrides.clear()


def test_cleanup_old_data(client):
    client.post("/api/quality/analyze", json={"commits": COMMITS, "repositoryId": "repo"})

    response = client.delete("/api/quality/history", params={"days": 90})

    assert response.status_code == 200
    assert response.json() == {"deleted": 0}


def test_similar_analyses(client):
    client.post("/api/quality/analyze", json={"commits": COMMITS, "repositoryId": "repo"})

    response = client.get("/api/quality/similar", params={"repositoryId": "repo", "commitCount": 3})

    assert response.status_code == 200
    body = response.json()
    assert body["repositoryId"] == "repo"
    assert body["analyses"][0]["payload"]["metadata"]["commitsAnalyzed"] == 2
    assert body["analyses"][0]["payload"]["metrics"]["frequency"]["peakDay"] is None
