from typing import List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict


class _Record(BaseModel):
    """
    Base for the immutable records produced by a fetch run.
    Field aliases carry the key names used in the raw JSON output files.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Repo(_Record):
    owner: str = Field(..., description="Login of the repository owner")
    name: str = Field(..., description="Name of the repository")

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.name}"


class GitHubUserInfo(_Record):
    login: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None


class CommitInfo(_Record):
    sha: str
    message: str = Field(..., description="First line of the commit message")
    author: str
    html_url: str
    date: str = ""
    user_info: Optional[GitHubUserInfo] = Field(default=None, alias="userInfo")


class PRInfo(_Record):
    number: int
    title: str
    user: str
    html_url: str
    merged_at: str = ""
    user_info: Optional[GitHubUserInfo] = Field(default=None, alias="userInfo")


class IssueInfo(_Record):
    number: int
    title: str
    user: str
    html_url: str
    state: Literal["open", "closed"]
    created_at: str = ""
    closed_at: Optional[str] = None
    user_info: Optional[GitHubUserInfo] = Field(default=None, alias="userInfo")


class FetchedRepoData(_Record):
    """Everything collected for one repository during a run."""
    repo: Repo
    commits: List[CommitInfo] = Field(default_factory=list)
    merged_prs: List[PRInfo] = Field(default_factory=list, alias="mergedPRs")
    opened_issues: List[IssueInfo] = Field(default_factory=list, alias="openedIssues")
    closed_issues: List[IssueInfo] = Field(default_factory=list, alias="closedIssues")


class SlackProfile(_Record):
    display_name: Optional[str] = None
    real_name: Optional[str] = None
    email: Optional[str] = None
    image_72: Optional[str] = None


class SlackUserInfo(_Record):
    id: str
    name: Optional[str] = None
    real_name: Optional[str] = None
    display_name: Optional[str] = None
    profile: Optional[SlackProfile] = None


class Reaction(_Record):
    name: str
    count: int = 0
    users: Optional[List[str]] = None


class FileRef(_Record):
    name: Optional[str] = None
    url: Optional[str] = None


class Thread(_Record):
    replies: List["FetchedMessage"] = Field(default_factory=list)


class FetchedMessage(_Record):
    """
    A Slack message enriched with its author's profile.
    Thread starters carry their replies under ``thread``.
    """
    ts: str
    user: Optional[str] = None
    user_info: Optional[SlackUserInfo] = Field(default=None, alias="userInfo")
    text: Optional[str] = None
    permalink: Optional[str] = None
    reactions: Optional[List[Reaction]] = None
    files: Optional[List[FileRef]] = None
    thread: Optional[Thread] = None


class ChannelSummary(_Record):
    id: str
    name: Optional[str] = None
    is_private: bool = False
    is_member: bool = False


Thread.model_rebuild()
FetchedMessage.model_rebuild()
