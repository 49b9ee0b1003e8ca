import asyncio
import unittest

from nexletter.application.github_fetchers import GitHubFetcher, date_window
from nexletter.domain.models import Repo

SINCE = "2024-01-01T10:00:00Z"
UNTIL = "2024-01-08T10:00:00Z"


class _FakeGitHubClient:
    def __init__(self, commit_pages=None, search_pages=None, missing_users=()) -> None:
        self.commit_pages = commit_pages or []
        self.search_pages = search_pages or {}
        self.missing_users = set(missing_users)
        self.user_calls = []
        self.queries = []

    async def paginate(self, session, path, params=None, items_key=None):
        if path.endswith("/commits"):
            for page in self.commit_pages:
                yield page
            return
        query = params["q"]
        self.queries.append(query)
        for marker, pages in self.search_pages.items():
            if marker in query:
                for page in pages:
                    yield page
                return

    async def get(self, session, path, params=None):
        login = path.rsplit("/", 1)[-1]
        self.user_calls.append(login)
        if login in self.missing_users:
            raise RuntimeError("404")
        return {"login": login, "name": login.title()}


class _StalledSearchClient(_FakeGitHubClient):
    """Fails the commit listing at once while every search hangs until cancelled."""

    def __init__(self) -> None:
        super().__init__()
        self.cancelled_queries = []

    async def paginate(self, session, path, params=None, items_key=None):
        if path.endswith("/commits"):
            raise RuntimeError("commits failed")
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled_queries.append(params["q"])
            raise
        yield []


def _commit(sha, login=None, name=None):
    return {
        "sha": sha,
        "html_url": f"https://github.com/foo/bar/commit/{sha}",
        "author": {"login": login} if login else None,
        "commit": {"message": f"commit {sha}\nbody", "author": {"name": name, "date": "2024-01-02T00:00:00Z"}},
    }


def _item(number, login):
    return {
        "number": number,
        "title": f"item {number}",
        "user": {"login": login},
        "html_url": f"https://github.com/foo/bar/issues/{number}",
        "created_at": "2024-01-02T00:00:00Z",
        "closed_at": "2024-01-03T00:00:00Z",
    }


class TestGitHubFetcher(unittest.IsolatedAsyncioTestCase):
    async def test_commits_are_enriched_once_per_author(self) -> None:
        client = _FakeGitHubClient(commit_pages=[
            [_commit("a1", login="octocat"), _commit("a2", login="octocat")],
            [_commit("a3", login="octocat"), _commit("a4", login="hubot")],
        ])
        fetcher = GitHubFetcher(client, session=None)

        commits = await fetcher.fetch_commits(Repo(owner="foo", name="bar"), SINCE, UNTIL)

        self.assertEqual([c.sha for c in commits], ["a1", "a2", "a3", "a4"])
        self.assertEqual(sorted(client.user_calls), ["hubot", "octocat"])
        self.assertEqual(commits[0].user_info.name, "Octocat")
        self.assertEqual(commits[0].message, "commit a1")

    async def test_unknown_author_is_never_looked_up(self) -> None:
        client = _FakeGitHubClient(commit_pages=[[_commit("b1"), _commit("b2", name="Local Dev")]])
        fetcher = GitHubFetcher(client, session=None)

        commits = await fetcher.fetch_commits(Repo(owner="foo", name="bar"), SINCE, UNTIL)

        self.assertEqual(commits[0].author, "unknown")
        self.assertIsNone(commits[0].user_info)
        self.assertEqual(commits[1].author, "Local Dev")
        self.assertEqual(client.user_calls, ["Local Dev"])

    async def test_failed_lookup_leaves_record_without_user_info(self) -> None:
        client = _FakeGitHubClient(commit_pages=[[_commit("c1", login="ghost")]], missing_users=["ghost"])
        fetcher = GitHubFetcher(client, session=None)

        with self.assertLogs("nexletter.infrastructure.user_cache", level="WARNING"):
            commits = await fetcher.fetch_commits(Repo(owner="foo", name="bar"), SINCE, UNTIL)

        self.assertEqual(commits[0].author, "ghost")
        self.assertIsNone(commits[0].user_info)

    async def test_search_queries_use_day_windows(self) -> None:
        client = _FakeGitHubClient(search_pages={
            "is:pr": [[_item(1, "alice")]],
            "created:": [[_item(2, "bob")], [_item(3, "bob")]],
            "closed:": [[_item(4, "carol")]],
        })
        fetcher = GitHubFetcher(client, session=None)
        repo = Repo(owner="foo", name="bar")

        data = await fetcher.fetch_repo_data(repo, SINCE, UNTIL)

        self.assertIn("repo:foo/bar is:pr is:merged merged:2024-01-01..2024-01-08", client.queries)
        self.assertIn("repo:foo/bar is:issue created:2024-01-01..2024-01-08", client.queries)
        self.assertIn("repo:foo/bar is:issue is:closed closed:2024-01-01..2024-01-08", client.queries)
        self.assertEqual(data.merged_prs[0].merged_at, "2024-01-03T00:00:00Z")
        self.assertEqual([i.number for i in data.opened_issues], [2, 3])
        self.assertTrue(all(i.state == "open" for i in data.opened_issues))
        self.assertEqual(data.closed_issues[0].state, "closed")
        self.assertEqual(data.repo, repo)
        self.assertEqual(client.user_calls.count("bob"), 1)

    async def test_failing_collector_cancels_the_others(self) -> None:
        client = _StalledSearchClient()
        fetcher = GitHubFetcher(client, session=None)

        with self.assertRaises(RuntimeError):
            await asyncio.wait_for(fetcher.fetch_repo_data(Repo(owner="foo", name="bar"), SINCE, UNTIL), timeout=5)

        self.assertEqual(len(client.cancelled_queries), 3)

    def test_date_window(self) -> None:
        self.assertEqual(date_window(SINCE, UNTIL), "2024-01-01..2024-01-08")
