"""
BitBucket connector for repository and merged pull request data
"""
import json
import time
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from config import BitBucketSettings, get_bitbucket_settings
from core.cache import PullRequestCache, make_cache_key, repository_ids
from core.exceptions import BitBucketRequestError, ConfigurationError
from connectors.bitbucket_shapes import (
    is_merged,
    normalize_pull_request,
    repository_identifier,
    resolve_repository_identity,
)
from connectors.pagination import (
    Paginator,
    derive_next_pull_requests_url,
    derive_next_repositories_url,
)
from models.bitbucket import Dialect, PullRequestState, RepositoryPullRequests
from utils.logging import get_logger

logger = get_logger(__name__)

_PATH_MARKERS = ("/2.0/repositories", "/rest/api")


def api_root(domain: str) -> str:
    """Scheme and host (plus any context path) of a configured domain, without API paths"""
    root = domain.split("?", 1)[0].rstrip("/")
    for marker in _PATH_MARKERS:
        if marker in root:
            root = root[:root.index(marker)]
    return root


def domain_has_collection_path(domain: str) -> bool:
    return any(marker in domain for marker in _PATH_MARKERS)


class BitBucketConnector:
    """BitBucket connector covering both Cloud (API 2.0) and Server (REST 1.0/2.0)"""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        cache: Optional[PullRequestCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        if http_client is None:
            http_client = httpx.AsyncClient(timeout=get_bitbucket_settings().bitbucket_request_timeout)
        self.http_client = http_client
        self.cache = cache if cache is not None else PullRequestCache()
        self.clock = clock
        self._last_timestamp = 0

    async def __aenter__(self) -> "BitBucketConnector":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # Transport

    async def fetch_request(self, url: str, method: str = "GET", json: Any = None) -> Any:
        """Authenticated JSON request against the BitBucket API"""
        bitbucket = get_bitbucket_settings()
        bitbucket.require_domain()
        api_token = bitbucket.require_token()

        logger.debug("Making request", method=method, url=url, token_length=len(api_token))
        response = await self.http_client.request(
            method,
            url,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Accept": "application/json",
            },
            json=json,
        )
        logger.debug("Response status", status=response.status_code, reason=response.reason_phrase)

        if not response.is_success:
            body = self._read_error_body(response, bitbucket.bitbucket_error_body_limit)
            logger.error(
                "BitBucket request failed",
                url=url,
                status=response.status_code,
                body=body,
            )
            raise BitBucketRequestError(url, response.status_code, response.reason_phrase, body)

        try:
            return response.json()
        except ValueError:
            raise BitBucketRequestError(
                url,
                response.status_code,
                response.reason_phrase,
                f"Response was not valid JSON: {response.text[:bitbucket.bitbucket_error_body_limit]}",
            )

    @staticmethod
    def _read_error_body(response: httpx.Response, limit: int) -> str:
        try:
            text = response.text
        except (UnicodeDecodeError, httpx.HTTPError) as e:
            logger.warning("Could not read error response body", error=str(e))
            return ""

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return json.dumps(json.loads(text), indent=2)
            except ValueError:
                pass
        return text[:limit]

    # Repositories

    def _repositories_urls(
        self, domain: str, dialect: Dialect, workspace: Optional[str], page_size: int
    ) -> Tuple[str, Optional[str]]:
        """Initial listing URL and, for Server, the API 1.0 fallback URL"""
        root = api_root(domain)
        fallback_url = f"{root}/rest/api/1.0/repos?limit={page_size}"

        if workspace:
            encoded = quote(workspace, safe="")
            if dialect is Dialect.CLOUD:
                return f"{root}/2.0/repositories/{encoded}?pagelen={page_size}", None
            return (
                f"{root}/rest/api/2.0/repositories/{encoded}?pagelen={page_size}",
                f"{root}/rest/api/1.0/projects/{encoded}/repos?limit={page_size}",
            )

        if domain_has_collection_path(domain):
            separator = "&" if "?" in domain else "?"
            start_url = f"{domain}{separator}pagelen={page_size}"
        elif dialect is Dialect.SERVER:
            start_url = f"{root}/rest/api/2.0/repositories?pagelen={page_size}"
        else:
            start_url = f"{root}/2.0/repositories?pagelen={page_size}"

        return start_url, fallback_url if dialect is Dialect.SERVER else None

    async def get_all_repositories(self, workspace: Optional[str] = None) -> List[Dict[str, Any]]:
        """Fetch every repository visible in the workspace (or the whole instance)"""
        bitbucket = get_bitbucket_settings()
        domain = bitbucket.require_domain()
        dialect = Dialect.from_domain(domain)
        page_size = bitbucket.bitbucket_repositories_page_size

        start_url, fallback_url = self._repositories_urls(domain, dialect, workspace, page_size)
        logger.info(
            "Fetching BitBucket repositories",
            dialect=dialect.value,
            workspace=workspace,
            url=start_url,
        )

        paginator = self._paginator("repositories", derive_next_repositories_url, bitbucket, page_size)
        return await paginator.collect(start_url, fallback_url)

    # Pull requests

    def _pull_request_urls(
        self, domain: str, dialect: Dialect, project: str, slug: str, page_size: int
    ) -> Tuple[str, Optional[str]]:
        root = api_root(domain)
        project = quote(project, safe="{}")
        slug = quote(slug, safe="{}")

        if dialect is Dialect.CLOUD:
            return (
                f"{root}/2.0/repositories/{project}/{slug}/pullrequests"
                f"?state={PullRequestState.MERGED.value}&pagelen={page_size}",
                None,
            )
        # REST 1.0 has no merged-only filter; state=ALL overrides its OPEN default
        return (
            f"{root}/rest/api/2.0/repositories/{project}/{slug}/pullrequests"
            f"?state={PullRequestState.MERGED.value}&pagelen={page_size}",
            f"{root}/rest/api/1.0/projects/{project}/repos/{slug}/pull-requests"
            f"?state=ALL&limit={page_size}",
        )

    async def get_merged_pull_requests(self, repository: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Fetch all merged pull requests of one repository.

        Identity and transport errors propagate to the caller.
        """
        bitbucket = get_bitbucket_settings()
        domain = bitbucket.require_domain()
        dialect = Dialect.from_domain(domain)
        page_size = bitbucket.bitbucket_pull_requests_page_size

        project, slug = resolve_repository_identity(repository)
        start_url, fallback_url = self._pull_request_urls(domain, dialect, project, slug, page_size)
        logger.info(
            "Fetching merged pull requests",
            repository=f"{project}/{slug}",
            dialect=dialect.value,
            url=start_url,
        )

        paginator = self._paginator("pull requests", derive_next_pull_requests_url, bitbucket, page_size)
        records = await paginator.collect(start_url, fallback_url)

        merged = [normalize_pull_request(record) for record in records if is_merged(record)]
        logger.info(
            "Fetched merged pull requests",
            repository=f"{project}/{slug}",
            received=len(records),
            merged=len(merged),
        )
        return merged

    async def get_merged_pull_requests_for_repositories(
        self, repositories: List[Dict[str, Any]], use_cache: bool = True
    ) -> List[RepositoryPullRequests]:
        """Merged pull requests for a repository set, one entry per repository.

        Repositories are fetched one after another. A repository that fails is
        logged and reported with an empty list instead of aborting the batch.
        """
        cache_key = make_cache_key(repositories)

        if use_cache:
            entry = self.cache.get(cache_key)
            if entry is not None:
                logger.info(
                    "Using cached pull requests",
                    repositories=len(entry.results),
                    timestamp=entry.timestamp,
                )
                return entry.results

        results: List[RepositoryPullRequests] = []
        for index, repository in enumerate(repositories, start=1):
            repo_id = repository_identifier(repository)
            logger.info("Loading pull requests", repository=repo_id, progress=f"{index}/{len(repositories)}")
            try:
                pull_requests = await self.get_merged_pull_requests(repository)
            except ConfigurationError:
                raise
            except Exception as e:
                logger.exception("Failed to fetch pull requests for repository", repository=repo_id, error=str(e))
                pull_requests = []
            results.append({"repository": repository, "pullRequests": pull_requests})

        self.cache.set(cache_key, results, repository_ids(repositories), self._next_timestamp())
        return results

    def get_cached_timestamp(self, repositories: List[Dict[str, Any]]) -> Optional[int]:
        """Epoch milliseconds of the cached snapshot for this repository set, if any"""
        return self.cache.timestamp(make_cache_key(repositories))

    def invalidate_cache(self, repositories: List[Dict[str, Any]]) -> None:
        self.cache.delete(make_cache_key(repositories))

    # Helpers

    def _paginator(self, resource: str, derive_next, bitbucket: BitBucketSettings, page_size: int) -> Paginator:
        return Paginator(
            fetch=self.fetch_request,
            derive_next=derive_next,
            resource=resource,
            max_pages=bitbucket.bitbucket_max_pages,
            default_page_size=page_size,
        )

    def _next_timestamp(self) -> int:
        # Strictly increasing even when the clock has not ticked between fetches
        now = int(self.clock() * 1000)
        self._last_timestamp = max(now, self._last_timestamp + 1)
        return self._last_timestamp

    async def close(self):
        """Close the connector and clean up resources"""
        if self.http_client:
            await self.http_client.aclose()
