import logging
from typing import Any, Dict, List, Optional

import aiohttp

from nexletter.domain.models import CommitInfo, FetchedRepoData, GitHubUserInfo, IssueInfo, PRInfo, Repo
from nexletter.infrastructure.acl import UNKNOWN_AUTHOR, GitHubTranslator
from nexletter.infrastructure.github_client import GitHubRestClient
from nexletter.infrastructure.tasks import gather_or_cancel
from nexletter.infrastructure.user_cache import UserInfoCache

logger = logging.getLogger(__name__)

SEARCH_PATH = "/search/issues"


def date_window(since_iso: str, until_iso: str) -> str:
    """Reduces an ISO timestamp window to the ``YYYY-MM-DD..YYYY-MM-DD`` range search qualifiers take."""
    return f"{since_iso.split('T')[0]}..{until_iso.split('T')[0]}"


class GitHubFetcher:
    """
    Collects commits, merged pull requests and issues for a repository within a
    time window. Every record is enriched with its author's profile through a
    shared UserInfoCache, so the profile lookups of all repositories in a run
    are coalesced and bounded by the same gate.
    """

    def __init__(
        self,
        github_client: GitHubRestClient,
        session: aiohttp.ClientSession,
        user_cache: Optional[UserInfoCache[GitHubUserInfo]] = None,
    ):
        self.github_client = github_client
        self.session = session
        self.user_cache = user_cache or UserInfoCache(self._lookup_user, name="GitHub user")

    async def _lookup_user(self, username: str) -> Optional[GitHubUserInfo]:
        raw_user = await self.github_client.get(self.session, f"/users/{username}")
        if not raw_user:
            return None
        return GitHubTranslator.to_user(raw_user)

    async def fetch_user_info(self, login: str) -> Optional[GitHubUserInfo]:
        if login == UNKNOWN_AUTHOR:
            return None
        return await self.user_cache.resolve(login)

    async def fetch_commits(self, repo: Repo, since_iso: str, until_iso: str) -> List[CommitInfo]:
        commits: List[CommitInfo] = []
        params = {"since": since_iso, "until": until_iso}

        async for page in self.github_client.paginate(
            self.session, f"/repos/{repo.owner}/{repo.name}/commits", params
        ):
            commits.extend(await gather_or_cancel(self._build_commit(raw) for raw in page))

        return commits

    async def _build_commit(self, raw_commit: Dict[str, Any]) -> CommitInfo:
        user_info = await self.fetch_user_info(GitHubTranslator.commit_author(raw_commit))
        return GitHubTranslator.to_commit(raw_commit, user_info)

    async def _search(self, query: str) -> List[List[Dict[str, Any]]]:
        pages: List[List[Dict[str, Any]]] = []
        async for page in self.github_client.paginate(
            self.session, SEARCH_PATH, {"q": query}, items_key="items"
        ):
            pages.append(page)
        return pages

    async def fetch_merged_pull_requests(self, repo: Repo, since_iso: str, until_iso: str) -> List[PRInfo]:
        query = f"repo:{repo.key} is:pr is:merged merged:{date_window(since_iso, until_iso)}"
        merged: List[PRInfo] = []
        for page in await self._search(query):
            merged.extend(await gather_or_cancel(self._build_pull_request(raw) for raw in page))
        return merged

    async def _build_pull_request(self, raw_item: Dict[str, Any]) -> PRInfo:
        user_info = await self.fetch_user_info(GitHubTranslator.item_author(raw_item))
        return GitHubTranslator.to_pull_request(raw_item, user_info)

    async def fetch_opened_issues(self, repo: Repo, since_iso: str, until_iso: str) -> List[IssueInfo]:
        query = f"repo:{repo.key} is:issue created:{date_window(since_iso, until_iso)}"
        return await self._fetch_issues(query, "open")

    async def fetch_closed_issues(self, repo: Repo, since_iso: str, until_iso: str) -> List[IssueInfo]:
        query = f"repo:{repo.key} is:issue is:closed closed:{date_window(since_iso, until_iso)}"
        return await self._fetch_issues(query, "closed")

    async def _fetch_issues(self, query: str, state: str) -> List[IssueInfo]:
        issues: List[IssueInfo] = []
        for page in await self._search(query):
            issues.extend(await gather_or_cancel(self._build_issue(raw, state) for raw in page))
        return issues

    async def _build_issue(self, raw_item: Dict[str, Any], state: str) -> IssueInfo:
        user_info = await self.fetch_user_info(GitHubTranslator.item_author(raw_item))
        return GitHubTranslator.to_issue(raw_item, state, user_info)

    async def fetch_repo_data(self, repo: Repo, since_iso: str, until_iso: str) -> FetchedRepoData:
        """
        Runs the four collectors for one repository concurrently.
        An error in any of them propagates to the caller.
        """
        commits, merged_prs, opened_issues, closed_issues = await gather_or_cancel([
            self.fetch_commits(repo, since_iso, until_iso),
            self.fetch_merged_pull_requests(repo, since_iso, until_iso),
            self.fetch_opened_issues(repo, since_iso, until_iso),
            self.fetch_closed_issues(repo, since_iso, until_iso),
        ])
        logger.info(
            f"[{repo.key}] Fetched {len(commits)} commits, {len(merged_prs)} merged PRs, "
            f"{len(opened_issues)} opened and {len(closed_issues)} closed issues."
        )
        return FetchedRepoData(
            repo=repo,
            commits=commits,
            merged_prs=merged_prs,
            opened_issues=opened_issues,
            closed_issues=closed_issues,
        )
