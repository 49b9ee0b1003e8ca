import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import aiohttp

from nexletter.application.slack_fetchers import SlackFetcher
from nexletter.config import SlackConfig
from nexletter.domain.models import ChannelSummary, FetchedMessage
from nexletter.infrastructure.slack_client import SlackWebClient
from nexletter.infrastructure.tasks import gather_or_cancel
from nexletter.infrastructure.writer import FileWriter

logger = logging.getLogger(__name__)

OUTPUT_FILENAME = "slack_raw.json"
# Channels picked from conversations.list when none are configured
DEFAULT_CHANNEL_COUNT = 3
MAX_CONCURRENT_CHANNELS = 3
CONNECTOR_LIMIT = 10


class SlackFetchService:
    """
    Orchestrates a Slack fetch run over the configured channels, or the first
    few channels visible to the bot when none are configured, and writes the
    per-channel message lists to ``slack_raw.json``.

    Page-level errors are absorbed by SlackFetcher, so one failing channel
    leaves the others intact.
    """

    def __init__(
        self,
        config: SlackConfig,
        slack_client: Optional[SlackWebClient] = None,
        writer: Optional[FileWriter] = None,
        fetcher_factory: Optional[Callable[[aiohttp.ClientSession], SlackFetcher]] = None,
    ):
        self.config = config
        self.slack_client = slack_client or SlackWebClient(token=config.token)
        self.writer = writer or FileWriter(config.out_dir, OUTPUT_FILENAME)
        self.fetcher_factory = fetcher_factory or (lambda session: SlackFetcher(self.slack_client, session))

    async def _resolve_channels(self, fetcher: SlackFetcher) -> List[str]:
        if self.config.channel_ids:
            return list(self.config.channel_ids)
        channels: List[ChannelSummary] = await fetcher.list_channels()
        return [channel.id for channel in channels[:DEFAULT_CHANNEL_COUNT]]

    async def run(self, now: Optional[datetime] = None) -> Dict[str, List[FetchedMessage]]:
        now = now or datetime.now(timezone.utc)
        oldest_ts = str(int((now - timedelta(days=self.config.days)).timestamp()))

        result: Dict[str, List[FetchedMessage]] = {}
        async with aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=CONNECTOR_LIMIT),
        ) as session:
            fetcher = self.fetcher_factory(session)
            channel_ids = await self._resolve_channels(fetcher)
            logger.info(f"Starting Slack fetch for {len(channel_ids)} channels (oldest {oldest_ts}).")

            gate = asyncio.Semaphore(MAX_CONCURRENT_CHANNELS)

            async def _fetch_channel(channel_id: str) -> None:
                async with gate:
                    logger.info(f"Fetching channel {channel_id}")
                    result[channel_id] = await fetcher.fetch_channel_messages(channel_id, oldest_ts)

            await gather_or_cancel(_fetch_channel(channel_id) for channel_id in channel_ids)

        path = await self.writer.save(result)
        logger.info(f"Saved {OUTPUT_FILENAME} to {path}")
        return result

    async def probe(self, sample_size: int = 20) -> Dict[str, object]:
        """
        Checks the bot token: runs ``auth.test``, lists a sample of public
        channels and tries to join the first one. A failed join is logged and
        reported as ``joined: False``; it does not fail the check.
        """
        async with aiohttp.ClientSession() as session:
            auth = await self.slack_client.api_call(session, "auth.test")
            channels = await self.slack_client.api_call(session, "conversations.list", {
                "types": "public_channel",
                "limit": sample_size,
            })
            sample = [
                {"id": raw.get("id"), "name": raw.get("name")}
                for raw in channels.get("channels") or []
            ]

            joined: Optional[Dict[str, object]] = None
            first = sample[0] if sample else None
            if first and first["id"]:
                try:
                    await self.slack_client.api_call(session, "conversations.join", {"channel": first["id"]})
                    joined = {**first, "joined": True}
                except Exception as e:
                    logger.warning(f"Could not join {first['name']} ({first['id']}): {e}")
                    joined = {**first, "joined": False}

        return {
            "team": auth.get("team"),
            "user": auth.get("user"),
            "bot_id": auth.get("bot_id"),
            "channels": sample,
            "join": joined,
        }
