"""
Exception hierarchy for BitBucket access
"""
from typing import Any, Dict, Optional


class BitBucketError(Exception):
    """Base class for BitBucket errors with metadata support"""

    def __init__(self, message: str, **metadata):
        super().__init__(message)
        self.message = message
        self.metadata = metadata

    def __str__(self):
        if not self.metadata:
            return self.message
        metadata_info = ", ".join(f"{k}={v}" for k, v in self.metadata.items())
        return f"{self.message} | Metadata: {metadata_info}"


class ConfigurationError(BitBucketError):
    """Raised when a required environment value is missing"""


class BitBucketRequestError(BitBucketError):
    """Raised on a non-2xx response from the BitBucket API.

    Keeps the request URL, HTTP status and whatever part of the response body
    could be read, so operators can tell a bad token from a bad path.
    """

    def __init__(
        self,
        url: str,
        status_code: int,
        reason: str = "",
        body: Optional[str] = None,
        summary_limit: int = 200,
    ):
        message = f"Failed to fetch data: {url} - Status: {status_code} {reason}".rstrip()
        if body:
            message = f"{message} - Body: {body[:summary_limit]}"
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.reason = reason
        self.body = body


class IdentityResolutionError(BitBucketError):
    """Raised when (project, slug) cannot be derived from a repository record"""

    def __init__(self, message: str, record: Optional[Dict[str, Any]] = None, **metadata):
        super().__init__(message, **metadata)
        self.record = record
