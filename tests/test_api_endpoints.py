"""Tests for the BitBucket API endpoints."""

import pytest
from fastapi.testclient import TestClient

from main import app
from api.endpoints.bitbucket import get_bitbucket_connector

CLOUD_REPOS_URL = "https://api.bitbucket.org/2.0/repositories/acme?pagelen=100"


def cloud_prs_url(slug):
    return f"https://api.bitbucket.org/2.0/repositories/acme/{slug}/pullrequests?state=MERGED&pagelen=50"


@pytest.fixture
def client(connector):
    """Test client using the synthetic-server connector."""
    app.dependency_overrides[get_bitbucket_connector] = lambda: connector
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def registered_prs(fake_bitbucket, cloud_merged_pr):
    fake_bitbucket.add(cloud_prs_url("repo-a"), json={"values": [cloud_merged_pr]})
    fake_bitbucket.add(cloud_prs_url("repo-b"), status=500, json={"error": {"message": "boom"}})
    fake_bitbucket.add(cloud_prs_url("repo-c"), json={"values": [dict(cloud_merged_pr, id=9, author={
        "display_name": "Grace Hopper"})]})


class TestHealth:

    def test_health_reports_dialect(self, cloud_env, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["bitbucket_configured"] is True
        assert data["bitbucket_dialect"] == "cloud"


class TestRepositoriesEndpoint:

    def test_lists_repositories(self, cloud_env, client, fake_bitbucket, cloud_repositories):
        fake_bitbucket.add(CLOUD_REPOS_URL, json={"values": cloud_repositories})

        response = client.get("/api/bitbucket/repositories", params={"workspace": "acme"})

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 3
        assert data["data"][0]["full_name"] == "acme/repo-a"

    def test_upstream_error_is_502(self, cloud_env, client, fake_bitbucket):
        fake_bitbucket.add(CLOUD_REPOS_URL, status=401, json={"error": {"message": "Bad token"}})

        response = client.get("/api/bitbucket/repositories", params={"workspace": "acme"})

        assert response.status_code == 502
        assert "401" in response.json()["detail"]

    def test_missing_configuration_is_500(self, monkeypatch, client):
        monkeypatch.delenv("BITBUCKET_DOMAIN", raising=False)
        monkeypatch.delenv("BITBUCKET_API_TOKEN", raising=False)

        response = client.get("/api/bitbucket/repositories")

        assert response.status_code == 500
        assert "BITBUCKET_DOMAIN" in response.json()["detail"]


class TestPullRequestsEndpoint:

    def test_returns_results_and_timestamp(self, cloud_env, client, registered_prs, cloud_repositories, connector):
        response = client.post("/api/bitbucket/pull-requests", json={"repositories": cloud_repositories})

        assert response.status_code == 200
        data = response.json()
        assert len(data["data"]) == 3
        assert data["data"][1]["pullRequests"] == []
        assert data["data"][0]["pullRequests"][0]["state"] == "MERGED"
        assert data["lastUpdated"] == connector.get_cached_timestamp(cloud_repositories)

    def test_cached_until_refresh(self, cloud_env, client, registered_prs, cloud_repositories, fake_bitbucket):
        client.post("/api/bitbucket/pull-requests", json={"repositories": cloud_repositories})
        client.post("/api/bitbucket/pull-requests", json={"repositories": cloud_repositories})
        assert fake_bitbucket.request_count == 3

        client.post("/api/bitbucket/pull-requests", json={"repositories": cloud_repositories, "refresh": True})
        assert fake_bitbucket.request_count == 6

    def test_invalidate(self, cloud_env, client, registered_prs, cloud_repositories, connector):
        client.post("/api/bitbucket/pull-requests", json={"repositories": cloud_repositories})

        response = client.post("/api/bitbucket/cache/invalidate", json={"repositories": cloud_repositories})

        assert response.status_code == 200
        assert connector.get_cached_timestamp(cloud_repositories) is None

    def test_by_author(self, cloud_env, client, registered_prs, cloud_repositories):
        response = client.post("/api/bitbucket/pull-requests/by-author", json={
            "repositories": cloud_repositories, "author": "Grace Hopper",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["data"][0]["id"] == 9


class TestAnalyticsEndpoint:

    def test_summary(self, cloud_env, client, registered_prs, cloud_repositories):
        response = client.post("/api/bitbucket/analytics", json={"repositories": cloud_repositories})

        assert response.status_code == 200
        analytics = response.json()["analytics"]
        assert analytics["totalMerged"] == 2
        assert analytics["authors"] == ["Ada Lovelace", "Grace Hopper"]
        assert analytics["byMonth"] == [{"month": "January 2024", "monthKey": "2024-01", "count": 2}]

    def test_author_filter(self, cloud_env, client, registered_prs, cloud_repositories):
        response = client.post("/api/bitbucket/analytics", json={
            "repositories": cloud_repositories, "authors": ["Ada Lovelace"],
        })

        assert response.json()["analytics"]["totalMerged"] == 1
