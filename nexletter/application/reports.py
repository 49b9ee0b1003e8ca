"""Markdown digests rendered from the raw JSON files of a fetch run."""

import logging
import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from nexletter.domain.exceptions import ConfigurationError
from nexletter.infrastructure.writer import load_json

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Tokyo"
TOP_COMMITTERS = 5
MAX_COMMITS = 30
TOP_HIGHLIGHTS = 5
SNIPPET_LENGTH = 200

_MD_SPECIAL = re.compile(r"([_*\[\]()#+\-!`])")


def _md_list(lines: List[str], empty: str = "_None_") -> str:
    if not lines:
        return empty
    return "\n".join(f"- {line}" for line in lines)


def _date_part(value: Optional[str]) -> str:
    return (value or "").split("T")[0]


def _format_local(moment: datetime, tz_name: str) -> str:
    try:
        return moment.astimezone(ZoneInfo(tz_name)).strftime("%Y-%m-%d %H:%M %Z")
    except ZoneInfoNotFoundError:
        return moment.isoformat()


def top_committers(commits: List[Dict[str, Any]], top_n: int = TOP_COMMITTERS) -> List[str]:
    counts = Counter(commit.get("author", "unknown") for commit in commits)
    return [
        f"{rank}. {author} — {count} commits"
        for rank, (author, count) in enumerate(counts.most_common(top_n), start=1)
    ]


def _render_repo(repo_data: Dict[str, Any]) -> str:
    repo = repo_data.get("repo", {})
    commits = repo_data.get("commits", [])
    merged = repo_data.get("mergedPRs", [])
    opened = repo_data.get("openedIssues", [])
    closed = repo_data.get("closedIssues", [])

    summary = (
        f"Commits: **{len(commits)}** · Merged PRs: **{len(merged)}** · "
        f"New issues: **{len(opened)}** · Closed issues: **{len(closed)}**"
    )
    commit_lines = [
        f"[`{c['sha'][:7]}`]({c.get('html_url', '')}) {c.get('message', '')} — {c.get('author', '')} "
        f"*({_date_part(c.get('date'))})*"
        for c in commits[:MAX_COMMITS]
    ]
    pr_lines = [
        f"[#{pr['number']}]({pr.get('html_url', '')}) {pr.get('title', '')} — @{pr.get('user', '')} "
        f"*(merged {_date_part(pr.get('merged_at'))})*"
        for pr in sorted(merged, key=lambda pr: pr.get("merged_at") or "", reverse=True)
    ]
    opened_lines = [
        f"[#{i['number']}]({i.get('html_url', '')}) {i.get('title', '')} — @{i.get('user', '')} "
        f"*(opened {_date_part(i.get('created_at'))})*"
        for i in opened
    ]
    closed_lines = [
        f"[#{i['number']}]({i.get('html_url', '')}) {i.get('title', '')} — @{i.get('user', '')} "
        f"*(closed {_date_part(i.get('closed_at'))})*"
        for i in closed
    ]

    return "\n".join([
        f"## {repo.get('owner', '')}/{repo.get('name', '')}",
        "",
        summary,
        "",
        "### Top Committers",
        _md_list(top_committers(commits), empty="_No data_"),
        "",
        "### Merged PRs",
        _md_list(pr_lines),
        "",
        "### Notable Commits",
        _md_list(commit_lines),
        "",
        "### New Issues",
        _md_list(opened_lines),
        "",
        "### Closed Issues",
        _md_list(closed_lines),
        "",
    ])


def generate_github_report(
    data: Dict[str, Dict[str, Any]],
    days: float,
    now: Optional[datetime] = None,
    tz_name: str = DEFAULT_TIMEZONE,
) -> str:
    """
    Renders the contents of ``github_raw.json`` as a Markdown report.

    Args:
        data (Dict[str, Dict[str, Any]]): Result map keyed by ``owner/name``.
        days (float): Length of the fetch window, shown in the header.
        now (datetime): Generation time; defaults to the current UTC time.
        tz_name (str): IANA timezone used for the generation timestamp.
    """
    now = now or datetime.now(timezone.utc)
    start = (now - timedelta(days=days)).strftime("%Y-%m-%d")
    end = now.strftime("%Y-%m-%d")

    header = "\n".join([
        "# GitHub Report",
        f"Period: **{start} ~ {end}** (UTC, shown in {tz_name})",
        f"Generated: {_format_local(now, tz_name)}",
        "",
        "---",
        "",
    ])
    sections = [_render_repo(repo_data) for repo_data in data.values()]
    return header + "\n---\n\n".join(sections)


def display_name(user_info: Optional[Dict[str, Any]]) -> str:
    if not user_info:
        return "Unknown User"
    profile = user_info.get("profile") or {}
    return (
        profile.get("display_name")
        or profile.get("real_name")
        or user_info.get("real_name")
        or user_info.get("display_name")
        or user_info.get("name")
        or f"@{user_info.get('id', '')}"
    )


def md_escape(text: str) -> str:
    return _MD_SPECIAL.sub(r"\\\1", text)


def top_highlights(messages: List[Dict[str, Any]], top_n: int = TOP_HIGHLIGHTS) -> List[Tuple[Dict[str, Any], int]]:
    """Ranks messages and their thread replies by total reaction count."""
    flat: List[Dict[str, Any]] = []
    for message in messages:
        flat.append(message)
        flat.extend((message.get("thread") or {}).get("replies") or [])

    scored = [
        (message, sum(r.get("count", 0) for r in message.get("reactions") or []))
        for message in flat
    ]
    # Stable sort keeps channel order among equal scores
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:top_n]


def _render_channel(channel_id: str, messages: List[Dict[str, Any]]) -> str:
    top = top_highlights(messages)
    md = f"## <#{channel_id}>\n\n"
    if not top:
        return md + "_No highlights_\n\n"

    md += "### Top Highlights\n"
    for message, score in top:
        seconds = int(message.get("ts", "0").split(".")[0])
        when = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")
        line = " · ".join([
            f"- [link]({message.get('permalink', '')})",
            f"score: {score}",
            when,
            f"by: {display_name(message.get('userInfo'))}",
        ])
        md += f"{line}\n"
        if message.get("text"):
            md += f"  \n> {md_escape(message['text'])[:SNIPPET_LENGTH]}\n"
    return md + "\n"


def generate_slack_report(data: Dict[str, List[Dict[str, Any]]], now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    md = f"# Weekly Slack Digest\nGenerated: {now.isoformat(timespec='seconds')}\n\n"
    for channel_id, messages in data.items():
        md += _render_channel(channel_id, messages)
    return md


def _read_raw(path: Path) -> Any:
    if not path.exists():
        raise ConfigurationError(f"Input file not found: {path}. Run the fetch first.")
    return load_json(path)


def write_github_report(
    out_dir: str,
    days: float,
    tz_name: str = DEFAULT_TIMEZONE,
    input_file: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Path:
    now = now or datetime.now(timezone.utc)
    raw = _read_raw(Path(input_file) if input_file else Path(out_dir) / "github_raw.json")
    report = generate_github_report(raw, days, now, tz_name)

    target = Path(out_dir) / f"github_report_{now.strftime('%Y-%m-%d')}.md"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(report, encoding="utf-8")
    logger.info(f"Saved GitHub report to {target}")
    return target


def write_slack_report(out_dir: str, now: Optional[datetime] = None) -> Path:
    raw = _read_raw(Path(out_dir) / "slack_raw.json")
    report = generate_slack_report(raw, now)

    target = Path(out_dir) / "slack_report.md"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(report, encoding="utf-8")
    logger.info(f"Saved Slack report to {target}")
    return target
