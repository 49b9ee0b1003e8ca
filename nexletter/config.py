"""Configuration loading for the fetch runs.

Config sources (in priority order):
1. Explicit overrides (CLI flags)
2. Environment variables (GITHUB_TOKEN, SLACK_BOT_TOKEN, FETCH_DAYS, ...)
3. Defaults (7 days, ``output`` directory)

The CLI loads a ``.env`` file into the environment before resolving.
"""

import math
import os
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from nexletter.domain.exceptions import ConfigurationError
from nexletter.domain.models import Repo

DEFAULT_DAYS = "7"
DEFAULT_OUT_DIR = "output"


class GitHubConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    days: float
    target_repos: List[Repo]
    out_dir: str


class SlackConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    days: float
    channel_ids: List[str]
    out_dir: str


def _split(value: Optional[str]) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def parse_repos(value: Optional[str]) -> List[Repo]:
    """Parses ``"owner/name, owner/name"``; entries missing either part are dropped."""
    repos: List[Repo] = []
    for entry in _split(value):
        parts = entry.split("/")
        owner = parts[0].strip()
        name = parts[1].strip() if len(parts) > 1 else ""
        if owner and name:
            repos.append(Repo(owner=owner, name=name))
    return repos


def parse_channels(value: Optional[str]) -> List[str]:
    return _split(value)


def parse_days(raw: Any) -> float:
    """A blank value means zero days, the way an empty FETCH_DAYS reads as 0."""
    if isinstance(raw, str) and not raw.strip():
        return 0.0
    try:
        days = float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid FETCH_DAYS: {raw}")
    if not math.isfinite(days) or days < 0:
        raise ConfigurationError(f"Invalid FETCH_DAYS: {raw}")
    return days


def get_github_config(
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> GitHubConfig:
    """
    Resolves the GitHub fetch settings.

    Args:
        env (Mapping[str, str]): Environment to read; defaults to ``os.environ``.
        overrides (Mapping[str, Any]): ``token``, ``days``, ``out_dir``, ``repos``
            (comma separated) or ``target_repos`` (list of Repo). None values are ignored.

    Raises:
        ConfigurationError: If no token is available or days is invalid.
    """
    env = os.environ if env is None else env
    overrides = overrides or {}

    token = overrides.get("token") or env.get("GITHUB_TOKEN")
    if not token:
        raise ConfigurationError("Missing GITHUB_TOKEN")

    days_raw = overrides.get("days")
    if days_raw is None:
        days_raw = env.get("FETCH_DAYS", DEFAULT_DAYS)
    days = parse_days(days_raw)

    target_repos = overrides.get("target_repos")
    if target_repos is None:
        repos_raw = overrides.get("repos")
        target_repos = parse_repos(repos_raw if repos_raw is not None else env.get("GITHUB_REPOS"))

    out_dir = overrides.get("out_dir")
    if out_dir is None:
        out_dir = env.get("OUT_DIR") or DEFAULT_OUT_DIR

    return GitHubConfig(token=token, days=days, target_repos=list(target_repos), out_dir=out_dir)


def get_slack_config(
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> SlackConfig:
    """Resolves the Slack fetch settings; same precedence rules as get_github_config."""
    env = os.environ if env is None else env
    overrides = overrides or {}

    token = overrides.get("token") or env.get("SLACK_BOT_TOKEN")
    if not token:
        raise ConfigurationError("Missing SLACK_BOT_TOKEN")

    days_raw = overrides.get("days")
    if days_raw is None:
        days_raw = env.get("FETCH_DAYS", DEFAULT_DAYS)
    days = parse_days(days_raw)

    channel_ids = overrides.get("channel_ids")
    if channel_ids is None:
        channels_raw = overrides.get("channels")
        channel_ids = parse_channels(channels_raw if channels_raw is not None else env.get("SLACK_CHANNEL_IDS"))

    out_dir = overrides.get("out_dir")
    if out_dir is None:
        out_dir = env.get("OUT_DIR") or DEFAULT_OUT_DIR

    return SlackConfig(token=token, days=days, channel_ids=list(channel_ids), out_dir=out_dir)
