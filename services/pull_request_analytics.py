"""
Pull request analytics over batch BitBucket results
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from connectors.bitbucket_shapes import repository_identifier
from models.bitbucket import PullRequestState, RepositoryPullRequests
from utils.logging import get_logger

logger = get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def flatten_pull_requests(results: Iterable[RepositoryPullRequests]) -> List[Dict[str, Any]]:
    """All pull requests across a batch result, in repository order"""
    return [pr for entry in results for pr in entry.get("pullRequests", [])]


def unique_authors(pull_requests: Iterable[Dict[str, Any]]) -> List[str]:
    return sorted({pr["author"] for pr in pull_requests if pr.get("author")})


def filter_by_authors(
    pull_requests: Iterable[Dict[str, Any]], authors: Optional[Iterable[str]] = None
) -> List[Dict[str, Any]]:
    """Keep pull requests by the given authors; no authors means keep everything"""
    pull_requests = list(pull_requests)
    if not authors:
        return pull_requests
    wanted = set(authors)
    return [pr for pr in pull_requests if pr.get("author") in wanted]


def pull_requests_for_author(pull_requests: Iterable[Dict[str, Any]], author: str) -> List[Dict[str, Any]]:
    """One author's pull requests, newest first"""
    return sorted(
        (pr for pr in pull_requests if pr.get("author") == author),
        key=lambda pr: pr.get("created_date") or _EPOCH,
        reverse=True,
    )


def merged_by_month(pull_requests: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Count merged pull requests per calendar month of their closure date.

    Pull requests without a closure date cannot be placed in a month and are
    left out.
    """
    months: Dict[str, Dict[str, Any]] = {}
    for pr in pull_requests:
        if pr.get("state") is not PullRequestState.MERGED:
            continue
        closed = pr.get("closed_date")
        if closed is None:
            continue

        month_key = closed.strftime("%Y-%m")
        bucket = months.setdefault(month_key, {
            "month": closed.strftime("%B %Y"),
            "monthKey": month_key,
            "count": 0,
        })
        bucket["count"] += 1

    return [months[key] for key in sorted(months)]


class PullRequestAnalyticsService:
    """Builds the PR analytics payload shown on the dashboard"""

    def summarize(
        self,
        results: List[RepositoryPullRequests],
        authors: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        all_prs = flatten_pull_requests(results)
        selected = filter_by_authors(all_prs, authors)
        selected_ids = {id(pr) for pr in selected}

        per_repository = []
        for entry in results:
            count = sum(1 for pr in entry.get("pullRequests", []) if id(pr) in selected_ids)
            per_repository.append({
                "repository": repository_identifier(entry.get("repository", {})),
                "mergedCount": count,
            })

        summary = {
            "totalMerged": len(selected),
            "authors": unique_authors(all_prs),
            "selectedAuthors": list(authors) if authors else [],
            "byMonth": merged_by_month(selected),
            "byRepository": per_repository,
            "undatedCount": sum(1 for pr in selected if pr.get("closed_date") is None),
        }

        logger.info(
            "Calculated pull request analytics",
            repositories=len(results),
            merged=summary["totalMerged"],
            authors=len(summary["authors"]),
        )
        return summary
