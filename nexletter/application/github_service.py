import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import aiohttp

from nexletter.application.github_fetchers import GitHubFetcher
from nexletter.config import GitHubConfig
from nexletter.domain.models import FetchedRepoData, Repo
from nexletter.infrastructure.github_client import GitHubRestClient
from nexletter.infrastructure.tasks import gather_or_cancel
from nexletter.infrastructure.writer import FileWriter

logger = logging.getLogger(__name__)

OUTPUT_FILENAME = "github_raw.json"
DEFAULT_REPOS = [Repo(owner="facebook", name="react")]
# Number of repositories fetched concurrently
MAX_CONCURRENT_REPOS = 3
# Limit concurrent connections to avoid overwhelming GitHub's servers
CONNECTOR_LIMIT = 10


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class GitHubFetchService:
    """
    Orchestrates a GitHub fetch run: fans out over the configured repositories
    with bounded concurrency, collects one FetchedRepoData per repository and
    writes the result map to ``github_raw.json``.

    A failure in any repository aborts the whole run and nothing is written.
    """

    def __init__(
        self,
        config: GitHubConfig,
        github_client: Optional[GitHubRestClient] = None,
        writer: Optional[FileWriter] = None,
        fetcher_factory: Optional[Callable[[aiohttp.ClientSession], GitHubFetcher]] = None,
    ):
        self.config = config
        self.github_client = github_client or GitHubRestClient(token=config.token)
        self.writer = writer or FileWriter(config.out_dir, OUTPUT_FILENAME)
        self.fetcher_factory = fetcher_factory or (lambda session: GitHubFetcher(self.github_client, session))

    @property
    def repos(self) -> List[Repo]:
        return list(self.config.target_repos) or list(DEFAULT_REPOS)

    async def run(self, now: Optional[datetime] = None) -> Dict[str, FetchedRepoData]:
        now = now or datetime.now(timezone.utc)
        since_iso = to_iso(now - timedelta(days=self.config.days))
        until_iso = to_iso(now)
        repos = self.repos

        logger.info(f"Starting GitHub fetch for {len(repos)} repositories ({since_iso} .. {until_iso}).")

        result: Dict[str, FetchedRepoData] = {}
        async with aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=CONNECTOR_LIMIT),
        ) as session:
            fetcher = self.fetcher_factory(session)
            gate = asyncio.Semaphore(MAX_CONCURRENT_REPOS)

            async def _fetch_repo(repo: Repo) -> None:
                async with gate:
                    logger.info(f"Fetching repo {repo.key}")
                    result[repo.key] = await fetcher.fetch_repo_data(repo, since_iso, until_iso)

            await gather_or_cancel(_fetch_repo(repo) for repo in repos)

        path = await self.writer.save(result)
        logger.info(f"Saved {OUTPUT_FILENAME} to {path}")
        return result
