"""
In-memory cache for batch pull request results
"""
import copy
from typing import Dict, Iterable, List, Optional, Any

from connectors.bitbucket_shapes import repository_identifier
from models.bitbucket import CacheEntry, RepositoryPullRequests
from utils.logging import get_logger

logger = get_logger(__name__)


def repository_ids(repositories: Iterable[Dict[str, Any]]) -> List[str]:
    """Sorted identifiers of a repository set"""
    return sorted(repository_identifier(repo) for repo in repositories)


def make_cache_key(repositories: Iterable[Dict[str, Any]]) -> str:
    """Repository fingerprint: order-independent for the same repository set"""
    return ",".join(repository_ids(repositories))


class PullRequestCache:
    """Batch results keyed by repository fingerprint.

    Entries never expire; callers refresh by invalidating. The backing mapping
    can be injected, and snapshots are copied in and out so a caller holding a
    result cannot change what the next caller receives.
    """

    def __init__(self, store: Optional[Dict[str, CacheEntry]] = None):
        self._store = store if store is not None else {}

    def __contains__(self, key: str) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._store.get(key)
        if entry is None:
            return None
        return CacheEntry(
            results=copy.deepcopy(entry.results),
            timestamp=entry.timestamp,
            repository_ids=list(entry.repository_ids),
        )

    def set(
        self,
        key: str,
        results: List[RepositoryPullRequests],
        repository_ids: List[str],
        timestamp: int,
    ) -> CacheEntry:
        entry = CacheEntry(
            results=copy.deepcopy(results),
            timestamp=timestamp,
            repository_ids=list(repository_ids),
        )
        self._store[key] = entry
        logger.debug("Cached pull requests", key=key, repositories=len(results), timestamp=timestamp)
        return entry

    def timestamp(self, key: str) -> Optional[int]:
        entry = self._store.get(key)
        return entry.timestamp if entry else None

    def delete(self, key: str) -> bool:
        removed = self._store.pop(key, None) is not None
        logger.info("Invalidated pull request cache", key=key, removed=removed)
        return removed
