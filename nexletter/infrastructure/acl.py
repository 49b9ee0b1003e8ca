from typing import Any, Dict, List, Optional

from nexletter.domain.models import (
    ChannelSummary,
    CommitInfo,
    FetchedMessage,
    FileRef,
    GitHubUserInfo,
    IssueInfo,
    PRInfo,
    Reaction,
    SlackProfile,
    SlackUserInfo,
    Thread,
)

UNKNOWN_AUTHOR = "unknown"


class GitHubTranslator:
    """
    Anti-corruption layer that translates raw GitHub REST JSON payloads into domain records.
    """

    @staticmethod
    def commit_author(raw_commit: Dict[str, Any]) -> str:
        """
        Resolves the login used for a commit: the linked GitHub account, then the
        git author name, then ``"unknown"``.
        """
        account = raw_commit.get('author') or {}
        git_author = (raw_commit.get('commit') or {}).get('author') or {}
        return account.get('login') or git_author.get('name') or UNKNOWN_AUTHOR

    @staticmethod
    def item_author(raw_item: Dict[str, Any]) -> str:
        user = raw_item.get('user') or {}
        return user.get('login') or UNKNOWN_AUTHOR

    @staticmethod
    def to_user(raw_user: Dict[str, Any]) -> GitHubUserInfo:
        """
        Transforms a ``/users/{username}`` payload into a GitHubUserInfo.

        Args:
            raw_user (Dict[str, Any]): The raw JSON body returned by GitHub.

        Returns:
            GitHubUserInfo: The profile, with empty strings normalised to None.
        """
        login = raw_user.get('login')
        if not login:
            raise ValueError("login is required to build GitHubUserInfo.")
        return GitHubUserInfo(
            login=login,
            name=raw_user.get('name') or None,
            email=raw_user.get('email') or None,
            avatar_url=raw_user.get('avatar_url') or None,
        )

    @staticmethod
    def to_commit(raw_commit: Dict[str, Any], user_info: Optional[GitHubUserInfo] = None) -> CommitInfo:
        git_commit = raw_commit.get('commit') or {}
        message = git_commit.get('message') or ''
        return CommitInfo(
            sha=raw_commit['sha'],
            message=message.split("\n")[0],
            author=GitHubTranslator.commit_author(raw_commit),
            html_url=raw_commit.get('html_url', ''),
            date=(git_commit.get('author') or {}).get('date') or '',
            user_info=user_info,
        )

    @staticmethod
    def to_pull_request(raw_item: Dict[str, Any], user_info: Optional[GitHubUserInfo] = None) -> PRInfo:
        # The search API has no merged_at for PRs; a merged PR closes when it merges.
        return PRInfo(
            number=raw_item['number'],
            title=raw_item.get('title', ''),
            user=GitHubTranslator.item_author(raw_item),
            html_url=raw_item.get('html_url', ''),
            merged_at=raw_item.get('closed_at') or '',
            user_info=user_info,
        )

    @staticmethod
    def to_issue(
        raw_item: Dict[str, Any],
        state: str,
        user_info: Optional[GitHubUserInfo] = None,
    ) -> IssueInfo:
        return IssueInfo(
            number=raw_item['number'],
            title=raw_item.get('title', ''),
            user=GitHubTranslator.item_author(raw_item),
            html_url=raw_item.get('html_url', ''),
            state=state,
            created_at=raw_item.get('created_at') or '',
            closed_at=raw_item.get('closed_at') or None,
            user_info=user_info,
        )


class SlackTranslator:
    """
    Anti-corruption layer that translates Slack Web API payloads into domain records.
    """

    @staticmethod
    def to_user(user_id: str, raw_user: Dict[str, Any]) -> SlackUserInfo:
        profile = raw_user.get('profile') or {}
        return SlackUserInfo(
            id=user_id,
            name=raw_user.get('name'),
            real_name=raw_user.get('real_name'),
            display_name=raw_user.get('display_name'),
            profile=SlackProfile(
                display_name=profile.get('display_name'),
                real_name=profile.get('real_name'),
                email=profile.get('email'),
                image_72=profile.get('image_72'),
            ),
        )

    @staticmethod
    def to_message(
        raw_message: Dict[str, Any],
        user_info: Optional[SlackUserInfo] = None,
        permalink: Optional[str] = None,
        replies: Optional[List[FetchedMessage]] = None,
    ) -> FetchedMessage:
        raw_reactions = raw_message.get('reactions')
        raw_files = raw_message.get('files')
        return FetchedMessage(
            ts=raw_message['ts'],
            user=raw_message.get('user'),
            user_info=user_info,
            text=raw_message.get('text'),
            permalink=permalink,
            reactions=[
                Reaction(name=r.get('name', ''), count=r.get('count', 0), users=r.get('users'))
                for r in raw_reactions
            ] if raw_reactions is not None else None,
            files=[
                FileRef(name=f.get('name'), url=f.get('url_private'))
                for f in raw_files
            ] if raw_files is not None else None,
            thread=Thread(replies=replies) if replies is not None else None,
        )

    @staticmethod
    def to_channel(raw_channel: Dict[str, Any]) -> ChannelSummary:
        return ChannelSummary(
            id=raw_channel['id'],
            name=raw_channel.get('name'),
            is_private=bool(raw_channel.get('is_private', False)),
            is_member=bool(raw_channel.get('is_member', False)),
        )
