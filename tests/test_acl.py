import unittest

from nexletter.domain.models import GitHubUserInfo
from nexletter.infrastructure.acl import GitHubTranslator, SlackTranslator


class TestGitHubTranslator(unittest.TestCase):
    def test_to_commit_keeps_first_message_line(self) -> None:
        raw_commit = {
            "sha": "abc1234def",
            "html_url": "https://github.com/foo/bar/commit/abc1234def",
            "author": {"login": "octocat"},
            "commit": {
                "message": "Fix parser\n\nLonger body here",
                "author": {"name": "The Octocat", "date": "2024-01-02T03:04:05Z"},
            },
        }
        user = GitHubUserInfo(login="octocat", name="The Octocat")

        commit = GitHubTranslator.to_commit(raw_commit, user)

        self.assertEqual(commit.message, "Fix parser")
        self.assertEqual(commit.author, "octocat")
        self.assertEqual(commit.date, "2024-01-02T03:04:05Z")
        self.assertEqual(commit.user_info, user)

    def test_commit_author_falls_back_to_git_name_then_unknown(self) -> None:
        with_name = {"sha": "1", "author": None, "commit": {"author": {"name": "Jane"}}}
        without_anything = {"sha": "2", "author": None, "commit": {}}

        self.assertEqual(GitHubTranslator.commit_author(with_name), "Jane")
        self.assertEqual(GitHubTranslator.commit_author(without_anything), "unknown")

    def test_to_pull_request_uses_closed_at_as_merged_at(self) -> None:
        raw_item = {
            "number": 7,
            "title": "Add feature",
            "user": {"login": "alice"},
            "html_url": "https://github.com/foo/bar/pull/7",
            "closed_at": "2024-01-03T00:00:00Z",
        }

        pr = GitHubTranslator.to_pull_request(raw_item)

        self.assertEqual(pr.merged_at, "2024-01-03T00:00:00Z")
        self.assertEqual(pr.user, "alice")
        self.assertIsNone(pr.user_info)

    def test_to_user_normalises_empty_fields(self) -> None:
        user = GitHubTranslator.to_user({"login": "bob", "name": "", "email": None, "avatar_url": "https://a"})

        self.assertIsNone(user.name)
        self.assertIsNone(user.email)
        self.assertEqual(user.avatar_url, "https://a")

    def test_missing_login_raises(self) -> None:
        with self.assertRaises(ValueError):
            GitHubTranslator.to_user({"name": "No Login"})


class TestSlackTranslator(unittest.TestCase):
    def test_to_message_maps_reactions_and_files(self) -> None:
        raw_message = {
            "ts": "1700000000.000100",
            "user": "U1",
            "text": "hello",
            "reactions": [{"name": "tada", "count": 3, "users": ["U2", "U3", "U4"]}],
            "files": [{"name": "doc.pdf", "url_private": "https://files/doc.pdf"}],
        }

        message = SlackTranslator.to_message(raw_message, permalink="https://slack/p1")

        self.assertEqual(message.reactions[0].count, 3)
        self.assertEqual(message.files[0].url, "https://files/doc.pdf")
        self.assertEqual(message.permalink, "https://slack/p1")
        self.assertIsNone(message.thread)

    def test_to_channel_defaults_flags(self) -> None:
        channel = SlackTranslator.to_channel({"id": "C1", "name": "general"})

        self.assertFalse(channel.is_private)
        self.assertFalse(channel.is_member)
