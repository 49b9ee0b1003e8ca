import aiohttp
import asyncio
import logging
import random
import re
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from nexletter.domain.exceptions import GitHubApiError, RateLimitExceededException

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
DEFAULT_PER_PAGE = 100
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=60, connect=10)
MAX_RETRIES = 3
# GitHub does not always send Retry-After with an abuse-detection response
SECONDARY_RATE_LIMIT_WAIT = 60

PRIMARY_RATE_LIMIT = "primary"
SECONDARY_RATE_LIMIT = "secondary"

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')


class GitHubRestClient:
    """
    Client for interacting with the GitHub REST API.
    Handles authentication, Link-header pagination, and rate limit management.

    Rate-limited responses (primary and secondary) are always retried after the
    advised cooldown unless ``max_rate_limit_retries`` is set. Server and
    transport errors are retried ``max_retries`` times with exponential backoff.
    """

    def __init__(
        self,
        token: str,
        max_retries: int = MAX_RETRIES,
        max_rate_limit_retries: Optional[int] = None,
    ):
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "nexletter-fetcher",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        self.api_url = API_URL
        self.max_retries = max_retries
        self.max_rate_limit_retries = max_rate_limit_retries

    async def get(
        self,
        session: aiohttp.ClientSession,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Fetches a single resource and returns its parsed JSON body."""
        data, _ = await self._request(session, self._url(path), params)
        return data

    async def paginate(
        self,
        session: aiohttp.ClientSession,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        items_key: Optional[str] = None,
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Yields one page of items at a time, following ``Link: rel="next"``.

        Args:
            session (aiohttp.ClientSession): Session used for every page request.
            path (str): API path, e.g. ``/repos/{owner}/{repo}/commits``.
            params (Dict[str, Any]): Query parameters for the first page.
            items_key (str): Key holding the item list for wrapped responses
                such as the search API (``"items"``). Plain list bodies need none.

        Yields:
            List[Dict[str, Any]]: The raw items of each page, in API order.
        """
        url: Optional[str] = self._url(path)
        query: Optional[Dict[str, Any]] = dict(params or {})
        query.setdefault("per_page", DEFAULT_PER_PAGE)

        while url:
            data, link_header = await self._request(session, url, query)
            if items_key:
                items = (data or {}).get(items_key, [])
            else:
                items = data or []
            yield items

            url = self._parse_next_link(link_header)
            # The next link already carries the full query string
            query = None

    async def _request(
        self,
        session: aiohttp.ClientSession,
        url: str,
        params: Optional[Dict[str, Any]],
    ) -> Tuple[Any, str]:
        attempt = 0
        rate_limit_hits = 0

        while True:
            try:
                async with session.get(url, params=params, headers=self.headers, timeout=REQUEST_TIMEOUT) as response:
                    if response.status in {403, 429}:
                        body = await response.text()
                        kind = self._rate_limit_kind(response.headers, body)
                        if kind is None:
                            raise GitHubApiError(response.status, self._error_message(body))

                        rate_limit_hits += 1
                        wait = self._rate_limit_wait(response.headers, kind)
                        if self.max_rate_limit_retries is not None and rate_limit_hits > self.max_rate_limit_retries:
                            raise RateLimitExceededException(retry_after=wait)

                        if kind == PRIMARY_RATE_LIMIT:
                            logger.warning(
                                f"GitHub rate limit encountered for GET {url}. "
                                f"Retrying in {wait}s (retry {rate_limit_hits})..."
                            )
                        else:
                            logger.error(
                                f"GitHub secondary rate limit encountered for GET {url}. "
                                f"Retrying in {wait}s (retry {rate_limit_hits})..."
                            )
                        await asyncio.sleep(wait)
                        continue

                    if response.status >= 500:
                        if attempt >= self.max_retries:
                            raise GitHubApiError(response.status, f"Server error after {attempt + 1} attempts.")
                        sleep_time = (2 ** attempt) + random.uniform(0, 1)
                        attempt += 1
                        logger.warning(
                            f"Server error ({response.status}) for GET {url}, "
                            f"retrying in {sleep_time:.1f}s (attempt {attempt}/{self.max_retries})..."
                        )
                        await asyncio.sleep(sleep_time)
                        continue

                    if response.status >= 400:
                        body = await response.text()
                        raise GitHubApiError(response.status, self._error_message(body))

                    data = await response.json()
                    return data, response.headers.get("Link", "")

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt >= self.max_retries:
                    raise
                sleep_time = (2 ** attempt) + random.uniform(0, 1)
                attempt += 1
                logger.warning(
                    f"Request failed for GET {url} (attempt {attempt}/{self.max_retries}): {e}. "
                    f"Retrying in {sleep_time:.1f}s..."
                )
                await asyncio.sleep(sleep_time)

    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.api_url}/{path.lstrip('/')}"

    @staticmethod
    def _rate_limit_kind(headers, body: str) -> Optional[str]:
        """Classifies a 403/429 response, or returns None when it is a plain permission error."""
        if headers.get("X-RateLimit-Remaining") == "0":
            return PRIMARY_RATE_LIMIT
        if headers.get("Retry-After") is not None or "secondary rate limit" in body.lower():
            return SECONDARY_RATE_LIMIT
        return None

    @staticmethod
    def _rate_limit_wait(headers, kind: str) -> int:
        retry_after = headers.get("Retry-After")
        if retry_after is not None:
            try:
                return max(int(retry_after), 1)
            except (TypeError, ValueError):
                pass

        if kind == PRIMARY_RATE_LIMIT:
            reset_at = headers.get("X-RateLimit-Reset")
            if reset_at is not None:
                try:
                    return max(int(reset_at) - int(time.time()), 1)
                except (TypeError, ValueError):
                    pass

        return SECONDARY_RATE_LIMIT_WAIT

    @staticmethod
    def _error_message(body: str) -> str:
        return body[:200] if body else "GitHub API request failed."

    @staticmethod
    def _parse_next_link(link_header: str) -> Optional[str]:
        match = _NEXT_LINK_RE.search(link_header or "")
        return match.group(1) if match else None
