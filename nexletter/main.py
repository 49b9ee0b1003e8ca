import asyncio
import os
import sys
import logging
from typing import Optional

import typer
from dotenv import load_dotenv

from nexletter.application.github_service import GitHubFetchService
from nexletter.application.reports import DEFAULT_TIMEZONE, write_github_report, write_slack_report
from nexletter.application.slack_service import SlackFetchService
from nexletter.config import DEFAULT_OUT_DIR, get_github_config, get_slack_config, parse_days

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)

app = typer.Typer(help="Collect GitHub and Slack activity for the Nexletter newsletter.")


def _fail(e: Exception) -> None:
    logger.exception(f"An unexpected error occurred: {e}")
    raise typer.Exit(code=1)


@app.command("github-fetch")
def github_fetch(
    repos: Optional[str] = typer.Option(None, help="Comma-separated owner/name list (GITHUB_REPOS)."),
    days: Optional[float] = typer.Option(None, help="Days to look back (FETCH_DAYS, default 7)."),
    out: Optional[str] = typer.Option(None, help="Output directory (OUT_DIR, default 'output')."),
    token: Optional[str] = typer.Option(None, help="GitHub token (GITHUB_TOKEN)."),
) -> None:
    """Fetch commits, merged PRs and issues into github_raw.json."""
    load_dotenv()
    try:
        config = get_github_config(overrides={"repos": repos, "days": days, "out_dir": out, "token": token})
        asyncio.run(GitHubFetchService(config).run())
    except KeyboardInterrupt:
        logger.info("Fetch interrupted by user. Exiting.")
        raise typer.Exit(code=1)
    except Exception as e:
        _fail(e)


@app.command("slack-fetch")
def slack_fetch(
    channels: Optional[str] = typer.Option(None, help="Comma-separated channel IDs (SLACK_CHANNEL_IDS)."),
    days: Optional[float] = typer.Option(None, help="Days to look back (FETCH_DAYS, default 7)."),
    out: Optional[str] = typer.Option(None, help="Output directory (OUT_DIR, default 'output')."),
    token: Optional[str] = typer.Option(None, help="Slack bot token (SLACK_BOT_TOKEN)."),
) -> None:
    """Fetch channel history and thread replies into slack_raw.json."""
    load_dotenv()
    try:
        config = get_slack_config(overrides={"channels": channels, "days": days, "out_dir": out, "token": token})
        asyncio.run(SlackFetchService(config).run())
    except KeyboardInterrupt:
        logger.info("Fetch interrupted by user. Exiting.")
        raise typer.Exit(code=1)
    except Exception as e:
        _fail(e)


@app.command("github-report")
def github_report(
    out: Optional[str] = typer.Option(None, help="Directory holding github_raw.json."),
    input_file: Optional[str] = typer.Option(None, "--input", help="Explicit raw JSON file (INPUT_FILE)."),
    tz: Optional[str] = typer.Option(None, help="Display timezone (TIMEZONE)."),
) -> None:
    """Render github_raw.json as a Markdown report."""
    load_dotenv()
    try:
        write_github_report(
            out_dir=out or os.getenv("OUT_DIR") or DEFAULT_OUT_DIR,
            days=parse_days(os.getenv("FETCH_DAYS", "7")),
            tz_name=tz or os.getenv("TIMEZONE", DEFAULT_TIMEZONE),
            input_file=input_file or os.getenv("INPUT_FILE"),
        )
    except Exception as e:
        _fail(e)


@app.command("slack-report")
def slack_report(
    out: Optional[str] = typer.Option(None, help="Directory holding slack_raw.json."),
) -> None:
    """Render slack_raw.json as a Markdown digest."""
    load_dotenv()
    try:
        write_slack_report(out or os.getenv("OUT_DIR") or DEFAULT_OUT_DIR)
    except Exception as e:
        _fail(e)


@app.command("slack-probe")
def slack_probe(
    token: Optional[str] = typer.Option(None, help="Slack bot token (SLACK_BOT_TOKEN)."),
) -> None:
    """Check the Slack token, list a sample of public channels and try joining the first."""
    load_dotenv()
    try:
        config = get_slack_config(overrides={"token": token})
        result = asyncio.run(SlackFetchService(config).probe())
        logger.info(f"auth.test: team={result['team']} user={result['user']} bot_id={result['bot_id']}")
        for channel in result["channels"]:
            logger.info(f"public channel: {channel['name']} ({channel['id']})")
        if result["join"]:
            join = result["join"]
            logger.info(f"tried join: {join['name']} ({join['id']}) joined={join['joined']}")
    except Exception as e:
        _fail(e)


def run_github_fetch() -> None:
    typer.run(github_fetch)


def run_slack_fetch() -> None:
    typer.run(slack_fetch)


if __name__ == "__main__":
    app()
