"""Paginated GET /notifications.

Walks the ``next`` links of the Link header until they run out and returns
every page's records in server order. The whole walk succeeds or fails as a
unit: a notification set missing its later pages would undercount the badge.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import Literal

import aiohttp

from ..errors import AuthRequired, MalformedResponse, RemoteError
from ..links import parse_links
from ..log import get_logger
from ..ratelimit import RateState
from ..records import NotificationRecord

_log = get_logger("github.fetcher")

# Mirrors the fetch() cache modes the poller needs: "no-cache" revalidates
# with the stored ETag (the server may answer 304), "reload" skips it.
CacheMode = Literal["no-cache", "reload"]
NO_CACHE: CacheMode = "no-cache"
RELOAD: CacheMode = "reload"

# Guard against a server that links a page to itself
MAX_PAGES = 100


class PaginatedFetcher:
    """Fetches every page of a notifications listing."""

    def __init__(
        self,
        session: Callable[[], aiohttp.ClientSession],
        api_base: str = "https://api.github.com/",
        site_base: str = "https://github.com/",
    ) -> None:
        self._session = session
        self.api_base = api_base
        self.site_base = site_base
        # Rate metadata of the last successful (or not-modified) walk
        self.metadata: RateState | None = None
        self._etags: dict[str, str] = {}

    async def fetch_all(
        self,
        start_url: str,
        headers: Mapping[str, str],
        cache_mode: CacheMode = NO_CACHE,
    ) -> list[NotificationRecord] | None:
        """Fetch all pages starting at start_url.

        Returns the concatenated records, or None when the server reports
        nothing changed (304) or answers with a non-200 success status.

        Raises:
            AuthRequired: the credential was rejected (401)
            RemoteError: any page failed, or the transport failed
            MalformedResponse: a body wasn't a list, or the walk hit MAX_PAGES
        """
        records: list[NotificationRecord] = []
        url: str | None = start_url
        first_etag: str | None = None
        metadata_for_walk: RateState | None = None
        pages = 0

        while url is not None:
            request_headers = dict(headers)
            if pages == 0 and cache_mode == NO_CACHE and start_url in self._etags:
                request_headers["If-None-Match"] = self._etags[start_url]

            status, page, response_headers = await self._get(url, request_headers)
            pages += 1
            metadata = RateState.from_headers(response_headers)

            if page is None:
                if pages > 1:
                    # Only the first page is conditional; anything else is unexpected
                    raise RemoteError(status, f"page {pages} answered {status} without a body")
                self.metadata = metadata
                _log.debug("not modified (%d): %s", status, url)
                return None

            if pages == 1:
                first_etag = response_headers.get("ETag")
            records.extend(self._parse_page(page))

            links = parse_links(response_headers.get("Link"))
            url = links.get("next")
            if url is not None and pages >= MAX_PAGES:
                raise MalformedResponse(f"still paginating after {pages} pages, next is {url}")
            metadata_for_walk = metadata

        # Commit validator and metadata only once every page arrived
        if first_etag:
            self._etags[start_url] = first_etag
        else:
            self._etags.pop(start_url, None)
        self.metadata = metadata_for_walk
        _log.debug("fetched %d records over %d page(s)", len(records), pages)
        return records

    async def _get(
        self, url: str, headers: dict[str, str]
    ) -> tuple[int, list | None, Mapping[str, str]]:
        """GET one page. Returns (status, decoded body or None, headers)."""
        try:
            async with self._session().request("GET", url, headers=headers) as response:
                status = response.status
                response_headers = response.headers

                if status == 401:
                    raise AuthRequired(f"credential rejected fetching {url}")
                if status == 304 or (200 < status < 300):
                    return status, None, response_headers
                if status != 200:
                    if status == 403 and response_headers.get("X-RateLimit-Remaining") == "0":
                        raise RemoteError(status, "rate limit exhausted")
                    raise RemoteError(status, f"{status} {response.reason or ''}".strip())

                try:
                    body = await response.json()
                except ValueError as e:
                    raise MalformedResponse(f"invalid JSON from {url}: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteError(None, f"request to {url} failed: {e}") from e

        if not isinstance(body, list):
            raise MalformedResponse(f"expected a list of notifications from {url}")
        return status, body, response_headers

    def _parse_page(self, page: list) -> list[NotificationRecord]:
        records = []
        for item in page:
            try:
                records.append(NotificationRecord.from_github(item, self.api_base, self.site_base))
            except MalformedResponse as e:
                _log.warning("skipping item: %s", e)
        return records
