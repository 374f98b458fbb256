"""
Shape sniffing for heterogeneous BitBucket payloads.

Cloud (API 2.0) and Server (REST 1.0 and the 2.0-shaped endpoints some Server
installs expose) disagree on where almost every field lives. Each helper here
tries a ranked list of extractors and returns the first hit. Nothing in this
module performs I/O.
"""
import json
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from core.exceptions import IdentityResolutionError
from models.bitbucket import PullRequestState
from utils.logging import get_logger

logger = get_logger(__name__)

UNKNOWN_AUTHOR = "Unknown"

_REPOSITORIES_HREF = re.compile(r"/repositories/([^/?#]+)/([^/?#]+)")
_PROJECT_REPOS_HREF = re.compile(r"/projects/([^/?#]+)/repos/([^/?#]+)")


def _dig(record: Any, *path: Any) -> Any:
    """Follow a path of keys/indexes, returning None on the first miss"""
    current = record
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, dict):
            return None
        current = current[key] if isinstance(key, int) else current.get(key)
        if current is None:
            return None
    return current


def first_match(record: Any, extractors: Sequence[Callable[[Any], Any]], default: Any = None) -> Any:
    """Return the first truthy value produced by the ranked extractors"""
    for extractor in extractors:
        value = extractor(record)
        if value:
            return value
    return default


# Repositories

_REPOSITORY_ID_EXTRACTORS = (
    lambda repo: repo.get("full_name"),
    lambda repo: repo.get("uuid"),
    lambda repo: repo.get("slug"),
)


def repository_identifier(repository: Dict[str, Any]) -> str:
    """Stable identifier: full_name, then uuid, then slug"""
    return str(first_match(repository, _REPOSITORY_ID_EXTRACTORS, default=""))


def _self_href(repository: Dict[str, Any]) -> Optional[str]:
    # Cloud: links.self is an object; Server 1.0: a list of objects
    links_self = _dig(repository, "links", "self")
    if isinstance(links_self, list):
        return _dig(links_self, 0, "href")
    if isinstance(links_self, dict):
        return links_self.get("href")
    return None


def _identity_from_full_name(repository: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    full_name = repository.get("full_name")
    if not full_name or "/" not in full_name:
        return None
    project, slug = full_name.split("/", 1)
    if project and slug:
        return project, slug
    return None


def _identity_from_self_link(repository: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    href = _self_href(repository)
    if not href:
        return None
    for pattern in (_REPOSITORIES_HREF, _PROJECT_REPOS_HREF):
        match = pattern.search(href)
        if match:
            return match.group(1), match.group(2)
    return None


def _identity_from_project_key(repository: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    project_key = _dig(repository, "project", "key")
    slug = repository.get("slug")
    if project_key and slug:
        return project_key, slug
    return None


IDENTITY_STRATEGIES = (
    ("full_name", _identity_from_full_name),
    ("links.self.href", _identity_from_self_link),
    ("project.key + slug", _identity_from_project_key),
)


def resolve_repository_identity(repository: Dict[str, Any]) -> Tuple[str, str]:
    """Derive (project or workspace key, repository slug) for a repository record"""
    for _, strategy in IDENTITY_STRATEGIES:
        identity = strategy(repository)
        if identity:
            return identity

    attempted = ", ".join(name for name, _ in IDENTITY_STRATEGIES)
    raise IdentityResolutionError(
        f"Unable to determine project and repository slug (tried {attempted}): "
        f"{json.dumps(repository, default=str)}",
        record=repository,
        strategies=attempted,
    )


# Pages

_PAGE_ITEM_EXTRACTORS = (
    lambda page: page.get("values"),
    lambda page: page.get("repositories"),
)


def extract_page_items(page: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Items of one listing page, whichever key the dialect uses"""
    if not isinstance(page, dict):
        return []
    return list(first_match(page, _PAGE_ITEM_EXTRACTORS, default=[]))


# Pull requests

_AUTHOR_EXTRACTORS = (
    lambda pr: _dig(pr, "author", "display_name"),
    lambda pr: _dig(pr, "author", "user", "displayName"),
    lambda pr: _dig(pr, "author", "user", "name"),
)


def resolve_author_name(pull_request: Dict[str, Any]) -> str:
    return first_match(pull_request, _AUTHOR_EXTRACTORS, default=UNKNOWN_AUTHOR)


def _legacy_self_link(pull_request: Dict[str, Any]) -> Optional[str]:
    links_self = _dig(pull_request, "links", "self")
    if isinstance(links_self, list):
        return _dig(links_self, 0, "href")
    return None


_URL_EXTRACTORS = (
    _legacy_self_link,
    lambda pr: _dig(pr, "links", "html", "href"),
)


def resolve_pull_request_url(pull_request: Dict[str, Any]) -> Optional[str]:
    return first_match(pull_request, _URL_EXTRACTORS)


def normalize_state(pull_request: Dict[str, Any]) -> PullRequestState:
    """Collapse state plus the legacy closed/merged flags into one lifecycle state"""
    raw_state = str(pull_request.get("state") or "").upper()

    if raw_state == PullRequestState.MERGED.value:
        return PullRequestState.MERGED
    if raw_state in (PullRequestState.DECLINED.value, PullRequestState.SUPERSEDED.value):
        return PullRequestState(raw_state)
    if pull_request.get("closed") is True or pull_request.get("merged") is True:
        return PullRequestState.MERGED
    return PullRequestState.OPEN


def is_merged(pull_request: Dict[str, Any]) -> bool:
    return normalize_state(pull_request) is PullRequestState.MERGED


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse epoch milliseconds (Server) or ISO-8601 strings (Cloud)"""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        text = str(value).strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    except (ValueError, OverflowError, OSError) as e:
        logger.debug("Failed to parse BitBucket timestamp", value=value, error=str(e))
        return None


def _closed_timestamp(pull_request: Dict[str, Any], state: PullRequestState) -> Any:
    closed = pull_request.get("closedDate") or pull_request.get("closed_on")
    if closed:
        return closed
    # Cloud has no closure field; updated_on is the last transition for a closed PR
    if state is not PullRequestState.OPEN:
        return pull_request.get("updated_on")
    return None


def normalize_pull_request(pull_request: Dict[str, Any]) -> Dict[str, Any]:
    """Extract the canonical pull request record from either dialect"""
    state = normalize_state(pull_request)
    return {
        'id': pull_request.get('id'),
        'title': pull_request.get('title') or '',
        'state': state,
        'merged': state is PullRequestState.MERGED,
        'author': resolve_author_name(pull_request),
        'created_date': parse_timestamp(pull_request.get('createdDate') or pull_request.get('created_on')),
        'closed_date': parse_timestamp(_closed_timestamp(pull_request, state)),
        'url': resolve_pull_request_url(pull_request),
        'raw_data': pull_request,
    }
