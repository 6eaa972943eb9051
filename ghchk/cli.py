"""
gh-chk CLI - Track who is assigned to GitHub issues and pull requests.

Commands:
    track-assignees  - Reconstruct assignees and report changes since last run
    snapshots        - List stored assignee snapshots
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

# Load .env file from current directory
load_dotenv()
load_dotenv(Path.cwd() / ".env")

from . import __version__
from .config import Settings
from .github import GitHubClient
from .models import ItemKey, format_timestamp
from .ratelimit import RateLimiter
from .store import SnapshotStore
from .tracker import AssigneeTracker, ItemResult


EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


@click.group()
@click.version_option(version=__version__)
@click.option(
    "-f", "--format", "output_format",
    type=click.Choice(["text", "json"]), default="text", help="Output format",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, output_format: str, verbose: bool):
    """gh-chk - Check on GitHub issues and pull requests."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["format"] = output_format
    ctx.obj["settings"] = Settings.load()


@main.command("track-assignees")
@click.argument("items", nargs=-1)
@click.option("--history", "show_history", is_flag=True, help="Show every assignment event")
@click.option("--dry-run", is_flag=True, help="Report changes without saving snapshots")
@click.option("--workers", type=int, default=None, help="Number of items tracked in parallel")
@click.pass_context
def track_assignees(ctx: click.Context, items: tuple[str, ...], show_history: bool, dry_run: bool, workers: int | None):
    """Track assignees of issues or pull requests.

    ITEMS are owner/repo#number identifiers. Without ITEMS, the 'tracked'
    list from the config file is used.

    The first run for an item records a baseline; later runs report who was
    added (+) and removed (-) since the previous run.

    Examples:

        gh-chk track-assignees octo/repo#12 octo/repo#34
        gh-chk -f json track-assignees octo/repo#12
        gh-chk track-assignees --history --dry-run octo/repo#12
    """
    settings: Settings = ctx.obj["settings"]
    as_json = ctx.obj["format"] == "json"

    identifiers = list(items) or list(settings.tracked)
    if not identifiers:
        click.echo("No items given and no 'tracked' items configured.", err=True)
        click.echo("Usage: gh-chk track-assignees owner/repo#number ...", err=True)
        sys.exit(EXIT_USAGE)

    try:
        keys = [ItemKey.parse(identifier) for identifier in identifiers]
        client = GitHubClient(
            token=settings.token,
            rate_limiter=RateLimiter(settings.rate_limit.rate, settings.rate_limit.burst),
            max_retries=settings.max_retries,
            timeout=settings.timeout,
            mock_file=settings.mock_file,
        )
        tracker = AssigneeTracker(
            client,
            SnapshotStore(settings.state_dir),
            max_workers=workers or settings.max_workers,
            dry_run=dry_run,
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_USAGE)

    def report(result: ItemResult) -> None:
        if not as_json:
            _echo_result(result, show_history=show_history, dry_run=dry_run)

    results = tracker.track(keys, include_history=show_history, on_result=report)

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))

    failed = [r for r in results if not r.succeeded]
    if not as_json and len(results) > 1:
        click.echo(f"\n{len(results) - len(failed)} checked, {len(failed)} failed")

    if tracker.interrupted:
        sys.exit(EXIT_INTERRUPTED)
    if failed:
        sys.exit(EXIT_FAILED)


def _echo_result(result: ItemResult, show_history: bool = False, dry_run: bool = False) -> None:
    key = result.key
    header = f"{click.style(key.slug, fg='cyan')}#{key.number}"
    if result.title:
        header += f" {click.style(result.title, fg='yellow')}"
    click.echo(header)

    if show_history and result.history is not None:
        for entry in result.history:
            event = entry.event
            click.echo(
                f"  {event.kind.value} {format_timestamp(event.timestamp)} "
                f"{event.assignee.login} -> {_join(entry.assignees)}"
            )
        click.echo(f"  Peak assignees: {result.peak}")

    for warning in result.warnings:
        click.echo(click.style(f"  warning: {warning}", fg="yellow"), err=True)

    if not result.succeeded:
        kind = result.error.kind.value if result.error else "unknown"
        click.echo(click.style(f"  FAILED [{kind}] {result.error}", fg="red"))
        return

    click.echo(f"  assignees: {_join(result.state.current)}")
    if result.diff.is_baseline:
        click.echo("  baseline (first observation)")
    elif not result.diff.changed:
        click.echo("  unchanged")
    else:
        for login in sorted(result.diff.added):
            click.echo(click.style(f"  + {login}", fg="green"))
        for login in sorted(result.diff.removed):
            click.echo(click.style(f"  - {login}", fg="red"))
    if dry_run:
        click.echo("  (dry run: snapshot not saved)")


def _join(logins) -> str:
    return ", ".join(sorted(logins)) or "(none)"


@main.command()
@click.pass_context
def snapshots(ctx: click.Context):
    """List stored assignee snapshots."""
    settings: Settings = ctx.obj["settings"]
    store = SnapshotStore(settings.state_dir)
    stored = store.list_snapshots()

    if ctx.obj["format"] == "json":
        click.echo(json.dumps([
            {
                "item": str(s.key),
                "assignees": sorted(s.assignees),
                "observed_at": format_timestamp(s.observed_at),
            }
            for s in stored
        ], indent=2))
        return

    if not stored:
        click.echo(f"No snapshots in {store.root}")
        return
    for s in stored:
        click.echo(f"{s.key}  {_join(s.assignees)}  (observed {format_timestamp(s.observed_at)})")


if __name__ == "__main__":
    main()
