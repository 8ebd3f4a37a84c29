"""
CLI interface for the feed cache.

Usage:
    feedcache merge snapshot.json
    feedcache issues "My Feeder" daily -n 5
    feedcache reduce "My Feeder" daily --keep 10
"""

import json
from datetime import date
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import ArticleCache
from .logging_config import configure_quiet_mode, enable_debug_mode
from .records import StoredFeed, StoredIssue
from .snapshot import load_snapshot


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="feedcache",
    help="Local cache of a periodical publication feed.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="FEEDCACHE_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Local cache of a periodical publication feed."""
    if not verbose:
        configure_quiet_mode()


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _get_cache() -> ArticleCache:
    """Open the cache store, handling errors gracefully."""
    import atexit

    try:
        cache = ArticleCache(_get_store_override())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(cache.close)
    return cache


def _require_feed(cache: ArticleCache, feeder_title: str, feed_name: str) -> StoredFeed:
    feeder = cache.feeder(feeder_title)
    if feeder is None:
        typer.echo(f"Unknown feeder: {feeder_title}", err=True)
        raise typer.Exit(1)
    feed = cache.feed(feeder, feed_name)
    if feed is None:
        typer.echo(f"Unknown feed: {feed_name}", err=True)
        raise typer.Exit(1)
    return feed


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        typer.echo(f"Error: Invalid date '{value}' (expected YYYY-MM-DD)", err=True)
        raise typer.Exit(1)


def _issue_dict(issue: StoredIssue) -> dict:
    return {
        "date": issue.date.isoformat(),
        "status": issue.status.value,
        "complete": issue.is_complete,
        "overview_complete": issue.is_ovw_complete,
    }


def _issue_line(issue: StoredIssue) -> str:
    if issue.is_complete:
        state = "complete"
    elif issue.is_ovw_complete:
        state = "overview"
    else:
        state = "-"
    return f"{issue.date.isoformat()}  {issue.status.value:<8} {state}"


def _print_issues(issues: list[StoredIssue]) -> None:
    if _get_json_output():
        typer.echo(json.dumps([_issue_dict(i) for i in issues], indent=2))
    else:
        for issue in issues:
            typer.echo(_issue_line(issue))


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def merge(
    snapshot: Annotated[Path, typer.Argument(
        help="JSON file with a feeder snapshot",
        exists=True, dir_okay=False, readable=True,
    )],
):
    """Merge a feeder snapshot into the cache."""
    feeder = load_snapshot(snapshot)
    cache = _get_cache()
    cache.merge_feeder(feeder)
    report = cache.last_report
    if _get_json_output():
        typer.echo(json.dumps({
            "feeder": feeder.title,
            "issues_merged": report.issues_merged,
            "errors": [
                {"entity": f.entity, "key": f.key, "message": f.message}
                for f in report.errors
            ],
        }, indent=2))
        return
    typer.echo(f"Merged {report.issues_merged} issues into {feeder.title}")
    for failure in report.errors:
        typer.echo(f"  failed: {failure.entity} {failure.key}: {failure.message}", err=True)


@app.command()
def issues(
    feeder: Annotated[str, typer.Argument(help="Feeder title")],
    feed: Annotated[str, typer.Argument(help="Feed name")],
    limit: Annotated[int, typer.Option(
        "--limit", "-n",
        help="Maximum issues to list (0 for all)"
    )] = 0,
    before: Annotated[Optional[str], typer.Option(
        "--from",
        help="Only issues on or before this date (YYYY-MM-DD)"
    )] = None,
):
    """List issues of a feed, newest first."""
    cache = _get_cache()
    stored_feed = _require_feed(cache, feeder, feed)
    from_date = _parse_date(before) if before else None
    _print_issues(cache.issues_in_feed(stored_feed, count=limit, from_date=from_date))


@app.command()
def reduce(
    feeder: Annotated[str, typer.Argument(help="Feeder title")],
    feed: Annotated[str, typer.Argument(help="Feed name")],
    keep: Annotated[Optional[int], typer.Option(
        "--keep", "-k",
        help="Complete issues to keep (default from config)"
    )] = None,
):
    """Reduce the earliest downloaded complete issues to overviews."""
    cache = _get_cache()
    stored_feed = _require_feed(cache, feeder, feed)
    reduced = cache.reduce_oldest(stored_feed, keep)
    if _get_json_output():
        _print_issues(reduced)
    else:
        typer.echo(f"Reduced {len(reduced)} issues")
        for issue in reduced:
            typer.echo(f"  {issue.date.isoformat()}")


@app.command()
def overview(
    feeder: Annotated[str, typer.Argument(help="Feeder title")],
    feed: Annotated[str, typer.Argument(help="Feed name")],
    issue_date: Annotated[str, typer.Argument(
        metavar="DATE", help="Issue date (YYYY-MM-DD)"
    )],
):
    """Reduce one issue to its overview."""
    cache = _get_cache()
    stored_feed = _require_feed(cache, feeder, feed)
    issue = cache.issue(stored_feed, _parse_date(issue_date))
    if issue is None:
        typer.echo(f"No issue dated {issue_date}", err=True)
        raise typer.Exit(1)
    _print_issues([cache.reduce_to_overview(issue)])


@app.command("file")
def file_cmd(
    name: Annotated[str, typer.Argument(help="File name")],
):
    """Print the local path of a file by name."""
    path = _get_cache().file_for_name(name)
    if path is None:
        typer.echo(f"Not found: {name}", err=True)
        raise typer.Exit(1)
    typer.echo(str(path))


@app.command()
def checksum(
    sha256: Annotated[str, typer.Argument(help="SHA-256 checksum")],
):
    """Print the local path of a file by checksum."""
    path = _get_cache().file_for_checksum(sha256)
    if path is None:
        typer.echo(f"Not found: {sha256}", err=True)
        raise typer.Exit(1)
    typer.echo(str(path))


@app.command()
def info():
    """Show entity counts and stored bytes."""
    cache = _get_cache()
    stats = cache.stats()
    if _get_json_output():
        typer.echo(json.dumps({"store": str(cache.store_path), **stats}, indent=2))
        return
    typer.echo(f"Store: {cache.store_path}")
    for key, value in stats.items():
        typer.echo(f"  {key}: {value}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="feedcache CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
