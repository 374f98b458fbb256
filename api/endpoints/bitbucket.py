"""
BitBucket API endpoints for repositories, merged pull requests and PR analytics
"""
from typing import Dict, Any, List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from connectors.bitbucket import BitBucketConnector
from core.exceptions import BitBucketRequestError, ConfigurationError, IdentityResolutionError
from services.pull_request_analytics import (
    PullRequestAnalyticsService,
    flatten_pull_requests,
    pull_requests_for_author,
)
from utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

# One connector per application so the pull request cache outlives requests
_connector: Optional[BitBucketConnector] = None


def get_bitbucket_connector() -> BitBucketConnector:
    global _connector
    if _connector is None:
        _connector = BitBucketConnector()
    return _connector


async def close_bitbucket_connector():
    global _connector
    if _connector is not None:
        await _connector.close()
        _connector = None


class RepositorySetRequest(BaseModel):
    """A set of raw repository records as returned by /repositories"""
    repositories: List[Dict[str, Any]] = Field(default_factory=list)


class PullRequestsRequest(RepositorySetRequest):
    refresh: bool = Field(default=False, description="Bypass the cache and fetch again")


class AnalyticsRequest(PullRequestsRequest):
    authors: Optional[List[str]] = Field(default=None, description="Only count these authors")


class AuthorPullRequestsRequest(PullRequestsRequest):
    author: str


def _http_error(action: str, error: Exception) -> HTTPException:
    if isinstance(error, ConfigurationError):
        return HTTPException(status_code=500, detail=f"BitBucket is not configured: {error.message}")
    if isinstance(error, IdentityResolutionError):
        return HTTPException(status_code=400, detail=error.message)
    if isinstance(error, BitBucketRequestError):
        return HTTPException(status_code=502, detail=f"Failed to {action}: {error.message}")
    return HTTPException(status_code=500, detail=f"Failed to {action}: {str(error)}")


async def _load_pull_requests(connector: BitBucketConnector, request: PullRequestsRequest) -> List[Dict[str, Any]]:
    return await connector.get_merged_pull_requests_for_repositories(
        request.repositories, use_cache=not request.refresh
    )


@router.get("/repositories", response_model=Dict[str, Any])
async def get_repositories(
    workspace: Optional[str] = Query(None, description="Workspace (Cloud) or project key (Server)"),
    connector: BitBucketConnector = Depends(get_bitbucket_connector)
):
    """List every repository in the workspace"""
    try:
        repositories = await connector.get_all_repositories(workspace)
        return {
            "data": repositories,
            "count": len(repositories),
            "workspace": workspace,
        }
    except Exception as e:
        logger.error("Failed to get repositories", workspace=workspace, error=str(e))
        raise _http_error("fetch repositories", e)


@router.post("/pull-requests", response_model=Dict[str, Any])
async def get_pull_requests(
    request: PullRequestsRequest,
    connector: BitBucketConnector = Depends(get_bitbucket_connector)
):
    """Merged pull requests per repository, served from cache unless refresh is set"""
    try:
        results = await _load_pull_requests(connector, request)
        return {
            "data": results,
            "lastUpdated": connector.get_cached_timestamp(request.repositories),
        }
    except Exception as e:
        logger.error("Failed to get pull requests", repositories=len(request.repositories), error=str(e))
        raise _http_error("fetch pull requests", e)


@router.post("/pull-requests/by-author", response_model=Dict[str, Any])
async def get_author_pull_requests(
    request: AuthorPullRequestsRequest,
    connector: BitBucketConnector = Depends(get_bitbucket_connector)
):
    """One author's merged pull requests across the repository set, newest first"""
    try:
        results = await _load_pull_requests(connector, request)
        pull_requests = pull_requests_for_author(flatten_pull_requests(results), request.author)
        return {
            "author": request.author,
            "data": pull_requests,
            "count": len(pull_requests),
            "lastUpdated": connector.get_cached_timestamp(request.repositories),
        }
    except Exception as e:
        logger.error("Failed to get author pull requests", author=request.author, error=str(e))
        raise _http_error("fetch pull requests", e)


@router.post("/analytics", response_model=Dict[str, Any])
async def get_pull_request_analytics(
    request: AnalyticsRequest,
    connector: BitBucketConnector = Depends(get_bitbucket_connector)
):
    """Merged pull requests by month and author for the repository set"""
    try:
        results = await _load_pull_requests(connector, request)
        summary = PullRequestAnalyticsService().summarize(results, request.authors)
        return {
            "analytics": summary,
            "lastUpdated": connector.get_cached_timestamp(request.repositories),
            "timestamp": datetime.utcnow().isoformat(),
        }
    except Exception as e:
        logger.error("Failed to get pull request analytics", error=str(e))
        raise _http_error("calculate pull request analytics", e)


@router.post("/cache/invalidate", response_model=Dict[str, Any])
async def invalidate_pull_request_cache(
    request: RepositorySetRequest,
    connector: BitBucketConnector = Depends(get_bitbucket_connector)
):
    """Drop the cached pull requests for the repository set"""
    connector.invalidate_cache(request.repositories)
    return {
        "message": "Cache invalidated",
        "repositories": len(request.repositories),
    }
