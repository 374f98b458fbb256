"""
BitBucket data models
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List
import enum

CLOUD_API_HOST = "api.bitbucket.org"


class Dialect(enum.Enum):
    """BitBucket API variant spoken by a configured domain"""
    CLOUD = "cloud"
    SERVER = "server"

    @classmethod
    def from_domain(cls, domain: str) -> "Dialect":
        # Anything that is not the Cloud API host is a self-hosted Server
        return cls.CLOUD if CLOUD_API_HOST in domain else cls.SERVER


class PullRequestState(str, enum.Enum):
    """Pull request lifecycle states"""
    OPEN = "OPEN"
    MERGED = "MERGED"
    DECLINED = "DECLINED"
    SUPERSEDED = "SUPERSEDED"


# Batch results are plain dicts so they serialize straight onto the HTTP surface:
# {"repository": {...raw repository...}, "pullRequests": [{...normalized PR...}]}
RepositoryPullRequests = Dict[str, Any]


@dataclass
class CacheEntry:
    """Snapshot of a batch pull request fetch for one exact repository set"""
    results: List[RepositoryPullRequests]
    timestamp: int
    repository_ids: List[str] = field(default_factory=list)
