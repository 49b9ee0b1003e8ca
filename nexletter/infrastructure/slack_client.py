import aiohttp
import asyncio
import logging
from typing import Any, Dict, Optional

from nexletter.domain.exceptions import SlackApiError

logger = logging.getLogger(__name__)

API_URL = "https://slack.com/api"
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=60, connect=10)
# Slack suggests this cooldown when a 429 arrives without Retry-After
DEFAULT_RETRY_AFTER = 3


class SlackWebClient:
    """
    Client for the Slack Web API.

    Every method answers with an ``ok`` flag; a false flag is raised as a
    SlackApiError carrying Slack's error code. Rate-limited calls (HTTP 429 or
    ``ratelimited``) are retried after the advised cooldown, without limit
    unless ``max_rate_limit_retries`` is set; once that cap is spent the
    ``SlackApiError("ratelimited")`` reaches the caller.
    """

    def __init__(self, token: str, max_rate_limit_retries: Optional[int] = None):
        self.headers = {
            "Authorization": f"Bearer {token}",
            "User-Agent": "nexletter-fetcher",
        }
        self.api_url = API_URL
        self.max_rate_limit_retries = max_rate_limit_retries

    async def api_call(
        self,
        session: aiohttp.ClientSession,
        method: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Calls one Web API method.

        Args:
            session (aiohttp.ClientSession): Session used for the request.
            method (str): Method name, e.g. ``conversations.history``.
            params (Dict[str, Any]): Arguments; ``None`` values are dropped.

        Returns:
            Dict[str, Any]: The decoded response body.
        """
        form = self._encode(params or {})
        rate_limit_hits = 0

        while True:
            try:
                return await self._call_once(session, method, form)
            except SlackApiError as e:
                if e.error != "ratelimited":
                    raise
                rate_limit_hits += 1
                if self.max_rate_limit_retries is not None and rate_limit_hits > self.max_rate_limit_retries:
                    raise
                wait = e.retry_after if e.retry_after is not None else DEFAULT_RETRY_AFTER
                logger.warning(f"Slack {method} ratelimited. Retrying in {wait}s (retry {rate_limit_hits})...")
                await asyncio.sleep(wait)

    async def _call_once(
        self, session: aiohttp.ClientSession, method: str, form: Dict[str, str]
    ) -> Dict[str, Any]:
        url = f"{self.api_url}/{method}"

        async with session.post(url, data=form, headers=self.headers, timeout=REQUEST_TIMEOUT) as response:
            if response.status == 429:
                retry_after = self._parse_retry_after(response.headers.get("Retry-After"))
                raise SlackApiError("ratelimited", retry_after=retry_after)

            response.raise_for_status()
            data = await response.json()

        if not data.get("ok", False):
            error = data.get("error", "unknown_error")
            retry_after = None
            if error == "ratelimited":
                retry_after = DEFAULT_RETRY_AFTER
            raise SlackApiError(error, retry_after=retry_after)

        warning = data.get("warning")
        if warning:
            logger.debug(f"Slack {method} warning: {warning}")
        return data

    @staticmethod
    def _encode(params: Dict[str, Any]) -> Dict[str, str]:
        form: Dict[str, str] = {}
        for key, value in params.items():
            if value is None:
                continue
            if isinstance(value, bool):
                form[key] = "true" if value else "false"
            else:
                form[key] = str(value)
        return form

    @staticmethod
    def _parse_retry_after(value: Optional[str]) -> float:
        try:
            return float(value) if value is not None else DEFAULT_RETRY_AFTER
        except (TypeError, ValueError):
            return DEFAULT_RETRY_AFTER
