"""Shared fixtures for the BitBucket dashboard tests."""

import pytest
import httpx

from connectors.bitbucket import BitBucketConnector
from core.cache import PullRequestCache

CLOUD_DOMAIN = "https://api.bitbucket.org"
SERVER_DOMAIN = "https://bitbucket.example.com"
API_TOKEN = "test-token-123"


def _route_key(url):
    parsed = httpx.URL(url)
    return parsed.path, tuple(sorted(parsed.params.multi_items()))


class FakeBitBucket:
    """Synthetic BitBucket server behind httpx.MockTransport.

    Routes match on path and query parameters (in any order). Unknown URLs
    answer 404 with a BitBucket-style JSON error.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, url, json=None, status=200, text=None, headers=None):
        self.routes[_route_key(url)] = (status, json, text, headers)

    def handler(self, request):
        self.requests.append(request)
        route = self.routes.get(_route_key(str(request.url)))
        if route is None:
            return httpx.Response(404, json={"errors": [{"message": f"No route for {request.url.path}"}]})
        status, payload, text, headers = route
        if text is not None:
            return httpx.Response(status, text=text, headers=headers)
        return httpx.Response(status, json=payload, headers=headers)

    def client(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def request_count(self):
        return len(self.requests)

    @property
    def paths(self):
        return [request.url.path for request in self.requests]


class FakeClock:
    """Clock that moves forward one second per reading."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        self.now += 1
        return self.now


@pytest.fixture
def cloud_env(monkeypatch):
    """Environment for BitBucket Cloud."""
    monkeypatch.setenv("BITBUCKET_DOMAIN", CLOUD_DOMAIN)
    monkeypatch.setenv("BITBUCKET_API_TOKEN", API_TOKEN)


@pytest.fixture
def server_env(monkeypatch):
    """Environment for a self-hosted BitBucket Server."""
    monkeypatch.setenv("BITBUCKET_DOMAIN", SERVER_DOMAIN)
    monkeypatch.setenv("BITBUCKET_API_TOKEN", API_TOKEN)


@pytest.fixture
def fake_bitbucket():
    return FakeBitBucket()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connector(fake_bitbucket, clock):
    """Connector wired to the synthetic server with its own cache."""
    return BitBucketConnector(
        http_client=fake_bitbucket.client(),
        cache=PullRequestCache({}),
        clock=clock,
    )


@pytest.fixture
def cloud_repositories():
    """Three Cloud repositories in the acme workspace."""
    return [
        {
            "uuid": "{11111111-1111-1111-1111-111111111111}",
            "full_name": "acme/repo-a",
            "name": "repo-a",
            "slug": "repo-a",
            "description": "First repository",
            "is_private": True,
            "links": {"html": {"href": "https://bitbucket.org/acme/repo-a"}},
        },
        {
            "uuid": "{22222222-2222-2222-2222-222222222222}",
            "full_name": "acme/repo-b",
            "name": "repo-b",
            "slug": "repo-b",
            "description": None,
            "is_private": False,
        },
        {
            "uuid": "{33333333-3333-3333-3333-333333333333}",
            "full_name": "acme/repo-c",
            "name": "repo-c",
            "slug": "repo-c",
            "description": "Third repository",
            "is_private": True,
        },
    ]


@pytest.fixture
def server_repository():
    """BitBucket Server 1.0 repository record (no full_name)."""
    return {
        "slug": "billing",
        "name": "Billing",
        "project": {"key": "PAY", "name": "Payments"},
        "public": False,
        "links": {"self": [{"href": "https://bitbucket.example.com/projects/PAY/repos/billing/browse"}]},
    }


@pytest.fixture
def cloud_merged_pr():
    """Merged pull request in Cloud shape."""
    return {
        "id": 7,
        "title": "Add invoice export",
        "state": "MERGED",
        "author": {"display_name": "Ada Lovelace"},
        "created_on": "2024-01-05T10:00:00.000000+00:00",
        "updated_on": "2024-01-20T15:30:00.000000+00:00",
        "links": {"html": {"href": "https://bitbucket.org/acme/repo-a/pull-requests/7"}},
    }


@pytest.fixture
def server_pull_requests():
    """One page of Server 1.0 pull requests in mixed states."""
    return [
        {
            "id": 101,
            "title": "Merged feature",
            "state": "MERGED",
            "closed": True,
            "author": {"user": {"displayName": "Grace Hopper", "name": "ghopper"}},
            "createdDate": 1704448800000,
            "closedDate": 1705761000000,
            "links": {"self": [{"href": "https://bitbucket.example.com/projects/PAY/repos/billing/pull-requests/101"}]},
        },
        {
            "id": 102,
            "title": "Still open",
            "state": "OPEN",
            "closed": False,
            "author": {"user": {"name": "ltorvalds"}},
            "createdDate": 1704448800000,
        },
        {
            "id": 103,
            "title": "Declined change",
            "state": "DECLINED",
            "closed": True,
            "author": {"user": {"displayName": "Grace Hopper"}},
            "createdDate": 1704448800000,
            "closedDate": 1705000000000,
        },
        {
            "id": 104,
            "title": "Legacy closed without state",
            "closed": True,
            "author": {},
            "createdDate": 1706000000000,
            "closedDate": 1707000000000,
        },
    ]
