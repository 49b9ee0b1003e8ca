import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from nexletter.domain.exceptions import GitHubApiError, RateLimitExceededException
from nexletter.infrastructure.github_client import GitHubRestClient


def _response(status=200, json_data=None, headers=None, text=""):
    resp = AsyncMock()
    resp.status = status
    resp.headers = headers or {}
    resp.json = AsyncMock(return_value=json_data)
    resp.text = AsyncMock(return_value=text)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


def _session(*responses):
    session = AsyncMock()
    session.get = MagicMock(side_effect=list(responses))
    return session


class TestGitHubRestClient(unittest.TestCase):
    def test_headers_are_dict(self) -> None:
        token = "test-token"
        client = GitHubRestClient(token=token)

        self.assertIsInstance(client.headers, dict)
        self.assertEqual(client.headers["Authorization"], f"Bearer {token}")

    def test_headers_include_user_agent(self) -> None:
        client = GitHubRestClient(token="t")
        self.assertIn("User-Agent", client.headers)
        self.assertIn("Accept", client.headers)

    def test_parse_next_link(self) -> None:
        link = (
            '<https://api.github.com/repos/a/b/commits?page=2>; rel="next", '
            '<https://api.github.com/repos/a/b/commits?page=5>; rel="last"'
        )
        self.assertEqual(
            GitHubRestClient._parse_next_link(link),
            "https://api.github.com/repos/a/b/commits?page=2",
        )
        self.assertIsNone(GitHubRestClient._parse_next_link(""))


class TestRateLimits(unittest.IsolatedAsyncioTestCase):
    async def test_secondary_rate_limit_is_retried_after_retry_after(self) -> None:
        """When GitHub returns 403 + Retry-After, the client sleeps and retries."""
        client = GitHubRestClient(token="test-token")
        session = _session(
            _response(403, headers={"Retry-After": "1"}, text="You have exceeded a secondary rate limit"),
            _response(200, json_data={"login": "octocat"}),
        )

        with patch("nexletter.infrastructure.github_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with self.assertLogs("nexletter.infrastructure.github_client", level="ERROR"):
                data = await client.get(session, "/users/octocat")

        mock_sleep.assert_any_call(1)
        self.assertEqual(data, {"login": "octocat"})

    async def test_primary_rate_limit_logs_warning_and_retries(self) -> None:
        client = GitHubRestClient(token="test-token")
        limited = _response(
            403,
            headers={"X-RateLimit-Remaining": "0", "Retry-After": "2"},
            text="API rate limit exceeded",
        )
        session = _session(limited, limited, _response(200, json_data={"ok": True}))

        with patch("nexletter.infrastructure.github_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with self.assertLogs("nexletter.infrastructure.github_client", level="WARNING") as logs:
                data = await client.get(session, "/rate")

        self.assertEqual(data, {"ok": True})
        self.assertEqual(mock_sleep.await_count, 2)
        self.assertTrue(all("WARNING" in line for line in logs.output))

    async def test_rate_limit_cap_raises(self) -> None:
        client = GitHubRestClient(token="test-token", max_rate_limit_retries=1)
        limited = _response(429, headers={"X-RateLimit-Remaining": "0", "Retry-After": "1"})
        session = _session(limited, limited, limited)

        with patch("nexletter.infrastructure.github_client.asyncio.sleep", new_callable=AsyncMock):
            with self.assertRaises(RateLimitExceededException):
                await client.get(session, "/rate")

        self.assertEqual(session.get.call_count, 2)

    async def test_plain_forbidden_is_not_retried(self) -> None:
        client = GitHubRestClient(token="test-token")
        session = _session(_response(403, text="Resource not accessible by integration"))

        with self.assertRaises(GitHubApiError) as ctx:
            await client.get(session, "/repos/a/b")

        self.assertEqual(ctx.exception.status, 403)
        self.assertEqual(session.get.call_count, 1)


class TestServerErrors(unittest.IsolatedAsyncioTestCase):
    async def test_server_errors_retry_three_times_then_raise(self) -> None:
        client = GitHubRestClient(token="test-token")
        session = _session(*[_response(502) for _ in range(4)])

        with patch("nexletter.infrastructure.github_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with self.assertRaises(GitHubApiError):
                await client.get(session, "/repos/a/b")

        self.assertEqual(session.get.call_count, 4)
        self.assertEqual(mock_sleep.await_count, 3)

    async def test_not_found_raises_immediately(self) -> None:
        client = GitHubRestClient(token="test-token")
        session = _session(_response(404, text='{"message": "Not Found"}'))

        with self.assertRaises(GitHubApiError) as ctx:
            await client.get(session, "/users/ghost")

        self.assertEqual(ctx.exception.status, 404)


class TestPagination(unittest.IsolatedAsyncioTestCase):
    async def test_follows_next_links_in_order(self) -> None:
        client = GitHubRestClient(token="test-token")
        next_url = "https://api.github.com/search/issues?q=x&page=2"
        session = _session(
            _response(200, json_data={"items": [{"number": 1}, {"number": 2}]},
                      headers={"Link": f'<{next_url}>; rel="next"'}),
            _response(200, json_data={"items": [{"number": 3}]}),
        )

        pages = [page async for page in client.paginate(session, "/search/issues", {"q": "x"}, items_key="items")]

        self.assertEqual(pages, [[{"number": 1}, {"number": 2}], [{"number": 3}]])
        first_call, second_call = session.get.call_args_list
        self.assertEqual(first_call.args[0], "https://api.github.com/search/issues")
        self.assertEqual(first_call.kwargs["params"], {"q": "x", "per_page": 100})
        self.assertEqual(second_call.args[0], next_url)
        self.assertIsNone(second_call.kwargs["params"])
