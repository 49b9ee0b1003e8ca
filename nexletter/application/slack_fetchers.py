import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from nexletter.domain.exceptions import SlackApiError
from nexletter.domain.models import ChannelSummary, FetchedMessage, SlackUserInfo
from nexletter.infrastructure.acl import SlackTranslator
from nexletter.infrastructure.slack_client import DEFAULT_RETRY_AFTER, SlackWebClient
from nexletter.infrastructure.tasks import gather_or_cancel
from nexletter.infrastructure.user_cache import DEFAULT_MAX_CONCURRENCY, UserInfoCache

logger = logging.getLogger(__name__)

PAGE_LIMIT = 200
# Seconds between pages, to stay under Slack's per-method budgets
INTER_PAGE_DELAY = 0.35
CHANNEL_TYPES = "public_channel,private_channel"


class SlackFetcher:
    """
    Collects channel history and thread replies from Slack.

    Messages of one page are enriched concurrently, bounded by a message gate;
    thread replies use a separate reply gate so a message holding a slot can
    always make progress on its thread. Profile lookups go through the shared
    UserInfoCache, which has its own gate.
    """

    def __init__(
        self,
        slack_client: SlackWebClient,
        session: aiohttp.ClientSession,
        user_cache: Optional[UserInfoCache[SlackUserInfo]] = None,
        page_delay: float = INTER_PAGE_DELAY,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.slack_client = slack_client
        self.session = session
        self.user_cache = user_cache or UserInfoCache(self._lookup_user, name="Slack user")
        self.page_delay = page_delay
        self._message_gate = asyncio.Semaphore(max_concurrency)
        self._reply_gate = asyncio.Semaphore(max_concurrency)

    async def _lookup_user(self, user_id: str) -> Optional[SlackUserInfo]:
        data = await self.slack_client.api_call(self.session, "users.info", {"user": user_id})
        raw_user = data.get("user")
        if not raw_user:
            return None
        return SlackTranslator.to_user(user_id, raw_user)

    async def fetch_user_info(self, user_id: Optional[str]) -> Optional[SlackUserInfo]:
        if not user_id:
            return None
        return await self.user_cache.resolve(user_id)

    async def list_channels(self) -> List[ChannelSummary]:
        """
        Lists every non-archived public and private channel visible to the token.
        ``is_member`` tells which ones the bot has joined; no filtering is applied.
        """
        channels: List[ChannelSummary] = []
        cursor: Optional[str] = None

        try:
            while True:
                data = await self.slack_client.api_call(self.session, "conversations.list", {
                    "types": CHANNEL_TYPES,
                    "limit": PAGE_LIMIT,
                    "cursor": cursor,
                    "exclude_archived": True,
                })
                channels.extend(SlackTranslator.to_channel(raw) for raw in data.get("channels") or [])
                cursor = self._next_cursor(data)
                if not cursor:
                    break
        except Exception as e:
            logger.error(f"Error in list_channels: {e}")
            return []

        for channel in channels:
            logger.debug(f"Channel: {channel.name} is_member: {channel.is_member}")
        return channels

    async def fetch_permalink(self, channel: str, ts: str) -> Optional[str]:
        data = await self.slack_client.api_call(
            self.session, "chat.getPermalink", {"channel": channel, "message_ts": ts}
        )
        return data.get("permalink")

    async def fetch_replies(self, channel: str, thread_ts: str, oldest: str) -> List[FetchedMessage]:
        """Collects every message of one thread, the parent message included, as Slack returns it."""
        replies: List[FetchedMessage] = []
        cursor: Optional[str] = None

        while True:
            data = await self.slack_client.api_call(self.session, "conversations.replies", {
                "channel": channel,
                "ts": thread_ts,
                "oldest": oldest,
                "limit": PAGE_LIMIT,
                "cursor": cursor,
                "include_all_metadata": True,
            })
            batch = await gather_or_cancel(self._build_reply(raw) for raw in data.get("messages") or [])
            replies.extend(batch)

            cursor = self._next_cursor(data)
            if not cursor:
                break
            await asyncio.sleep(self.page_delay)

        return replies

    async def _build_reply(self, raw_message: Dict[str, Any]) -> FetchedMessage:
        async with self._reply_gate:
            user_info = await self.fetch_user_info(raw_message.get("user"))
            return SlackTranslator.to_message(raw_message, user_info)

    async def fetch_channel_messages(self, channel: str, oldest: str) -> List[FetchedMessage]:
        """
        Collects a channel's history from ``oldest`` onward.

        A ``ratelimited`` page is retried after the advised cooldown. Any other
        error ends pagination for the channel; the pages collected so far are
        returned.
        """
        collected: List[FetchedMessage] = []
        cursor: Optional[str] = None

        while True:
            try:
                data = await self.slack_client.api_call(self.session, "conversations.history", {
                    "channel": channel,
                    "oldest": oldest,
                    "limit": PAGE_LIMIT,
                    "cursor": cursor,
                    "include_all_metadata": True,
                })
                batch = await gather_or_cancel(
                    self._build_message(channel, raw, oldest) for raw in data.get("messages") or []
                )
            except SlackApiError as e:
                if e.error == "ratelimited":
                    retry_after = e.retry_after if e.retry_after is not None else DEFAULT_RETRY_AFTER
                    logger.warning(f"Slack ratelimited on {channel}. Retrying in {retry_after}s...")
                    await asyncio.sleep(retry_after)
                    continue
                logger.error(f"History error for {channel}: {e}. Keeping {len(collected)} messages.")
                break
            except Exception as e:
                logger.error(f"History error for {channel}: {e}. Keeping {len(collected)} messages.")
                break

            collected.extend(batch)
            cursor = self._next_cursor(data)
            if not cursor:
                break
            await asyncio.sleep(self.page_delay)

        return collected

    async def _build_message(self, channel: str, raw_message: Dict[str, Any], oldest: str) -> FetchedMessage:
        async with self._message_gate:
            user_info = await self.fetch_user_info(raw_message.get("user"))
            replies = None
            thread_ts = raw_message.get("thread_ts")
            if thread_ts:
                replies = await self.fetch_replies(channel, thread_ts, oldest)
            permalink = await self.fetch_permalink(channel, raw_message["ts"])
            return SlackTranslator.to_message(raw_message, user_info, permalink=permalink, replies=replies)

    @staticmethod
    def _next_cursor(data: Dict[str, Any]) -> Optional[str]:
        return (data.get("response_metadata") or {}).get("next_cursor") or None
