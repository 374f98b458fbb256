"""
Pagination for BitBucket listings.

BitBucket Cloud hands back a ready-made ``next`` URL, Server 1.0 uses an
``isLastPage``/``nextPageStart`` pair, and some installs return neither. The
``derive_next_*`` functions turn one page's metadata into the next URL to fetch
(or None); ``Paginator`` runs the fetch loop around them.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from core.exceptions import BitBucketRequestError
from connectors.bitbucket_shapes import extract_page_items
from utils.logging import get_logger, log_page_fetched

logger = get_logger(__name__)

SERVER_API_2_MARKER = "/rest/api/2.0/"


@dataclass(frozen=True)
class PageMetadata:
    """Pagination fields of one listing response"""
    next: Optional[str] = None
    links_next: Optional[str] = None
    is_last_page: Optional[bool] = None
    next_page_start: Optional[int] = None
    page: Optional[int] = None
    page_size: Optional[int] = None
    size: Optional[int] = None

    @classmethod
    def from_response(cls, response: Dict[str, Any]) -> "PageMetadata":
        links = response.get("links")
        links_next = None
        if isinstance(links, dict) and isinstance(links.get("next"), dict):
            links_next = links["next"].get("href")
        return cls(
            next=response.get("next") or None,
            links_next=links_next or None,
            is_last_page=response.get("isLastPage"),
            next_page_start=response.get("nextPageStart"),
            page=response.get("page"),
            page_size=response.get("pagelen") or response.get("limit"),
            size=response.get("size"),
        )

    @property
    def next_url(self) -> Optional[str]:
        """Explicit continuation URL, top-level first, then links.next.href"""
        return self.next or self.links_next


def with_query_param(url: str, key: str, value: Any) -> str:
    """Return url with one query parameter set (replacing any existing value)"""
    return str(httpx.URL(url).copy_set_param(key, str(value)))


def _query_int(url: str, key: str) -> Optional[int]:
    raw = httpx.URL(url).params.get(key)
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


def requested_page_size(url: str, metadata: PageMetadata, default_page_size: int) -> int:
    """Page size the server is working with: reported, else requested, else default"""
    if metadata.page_size:
        return metadata.page_size
    return _query_int(url, "pagelen") or _query_int(url, "limit") or default_page_size


def _offset_url(current_url: str, item_count: int) -> str:
    current_start = _query_int(current_url, "start") or 0
    return with_query_param(current_url, "start", current_start + item_count)


def is_guessed_continuation(metadata: PageMetadata) -> bool:
    """True when the page carried no continuation hints, so any next URL is a guess"""
    return metadata.next_url is None and metadata.is_last_page is None and metadata.next_page_start is None


def _guess_continuation(
    current_url: str, metadata: PageMetadata, item_count: int, default_page_size: int
) -> Optional[str]:
    # A full page might mean more data; a short page is the last one
    page_size = requested_page_size(current_url, metadata, default_page_size)
    if item_count == 0 or item_count != page_size:
        return None

    if metadata.page is not None:
        received = (metadata.page - 1) * page_size + item_count
    else:
        received = (_query_int(current_url, "start") or 0) + item_count
    if metadata.size is not None and received >= metadata.size:
        return None

    if metadata.page is not None:
        return with_query_param(current_url, "page", metadata.page + 1)
    return _offset_url(current_url, item_count)


def derive_next_repositories_url(
    current_url: str, metadata: PageMetadata, item_count: int, default_page_size: int = 100
) -> Optional[str]:
    """Next URL for repository listings.

    Priority: explicit ``next``, ``links.next.href``, Server offset pagination
    via ``nextPageStart``, then the full-page heuristic.
    """
    if metadata.next_url:
        return metadata.next_url
    if metadata.is_last_page is True:
        return None
    if metadata.next_page_start is not None:
        return with_query_param(current_url, "start", metadata.next_page_start)
    return _guess_continuation(current_url, metadata, item_count, default_page_size)


def derive_next_pull_requests_url(
    current_url: str, metadata: PageMetadata, item_count: int, default_page_size: int = 50
) -> Optional[str]:
    """Next URL for pull request listings, driven by ``isLastPage``.

    ``isLastPage: false`` continues by page number, then ``nextPageStart``,
    then by offsetting ``start`` with the number of items just received.
    """
    if metadata.next_url:
        return metadata.next_url
    if metadata.is_last_page is True:
        return None
    if metadata.is_last_page is False:
        if metadata.page is not None:
            return with_query_param(current_url, "page", metadata.page + 1)
        if metadata.next_page_start is not None:
            return with_query_param(current_url, "start", metadata.next_page_start)
        if item_count == 0:
            return None
        return _offset_url(current_url, item_count)
    return _guess_continuation(current_url, metadata, item_count, default_page_size)


NextUrlDeriver = Callable[[str, PageMetadata, int, int], Optional[str]]


class Paginator:
    """Sequential page walker with cycle guard, page ceiling and one-shot fallback"""

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[Dict[str, Any]]],
        derive_next: NextUrlDeriver,
        resource: str,
        max_pages: int = 1000,
        default_page_size: int = 100,
    ):
        self.fetch = fetch
        self.derive_next = derive_next
        self.resource = resource
        self.max_pages = max_pages
        self.default_page_size = default_page_size
        self.pages_fetched = 0
        self.used_fallback = False

    async def collect(self, start_url: str, fallback_url: Optional[str] = None) -> List[Dict[str, Any]]:
        """Fetch every page starting at start_url and concatenate the items in page order.

        When a request against a Server API 2.0 endpoint fails and a fallback URL
        is given, the walk restarts from scratch at the fallback URL, once. A
        failing page whose URL was guessed from a full previous page ends the
        walk with the items collected so far.
        """
        items: List[Dict[str, Any]] = []
        seen_urls = set()
        url: Optional[str] = start_url
        page = 1
        guessed = False

        while url and page <= self.max_pages:
            if url in seen_urls:
                logger.warning(
                    f"Detected loop: URL was already fetched. Stopping {self.resource} pagination.",
                    url=url,
                )
                url = None
                break
            seen_urls.add(url)

            try:
                response = await self.fetch(url)
            except (BitBucketRequestError, httpx.HTTPError) as e:
                if fallback_url and not self.used_fallback and SERVER_API_2_MARKER in url:
                    logger.warning(
                        f"API 2.0 {self.resource} request failed, retrying against API 1.0",
                        failed_url=url,
                        fallback_url=fallback_url,
                        error=str(e),
                    )
                    self.used_fallback = True
                    url = fallback_url
                    page = 1
                    items = []
                    seen_urls = set()
                    guessed = False
                    continue
                if guessed:
                    logger.warning(
                        f"Guessed {self.resource} page failed, keeping {len(items)} items already fetched",
                        url=url,
                        error=str(e),
                    )
                    url = None
                    break
                raise

            page_items = extract_page_items(response)
            items.extend(page_items)
            log_page_fetched(self.resource, page, len(page_items), url, total=len(items))

            metadata = PageMetadata.from_response(response)
            logger.debug(
                "Pagination info",
                page=metadata.page,
                pagelen=metadata.page_size,
                next=metadata.next_url,
                isLastPage=metadata.is_last_page,
                nextPageStart=metadata.next_page_start,
            )
            url = self.derive_next(url, metadata, len(page_items), self.default_page_size)
            guessed = is_guessed_continuation(metadata)
            page += 1

        self.pages_fetched = page - 1
        if url and page > self.max_pages:
            logger.warning(
                f"Reached maximum page limit ({self.max_pages}). There may be more {self.resource}.",
                pending_url=url,
            )

        logger.info(
            f"Fetched {len(items)} total {self.resource} across {self.pages_fetched} pages"
        )
        return items
