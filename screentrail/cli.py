"""
CLI interface for screen activity recall.

Usage:
    screentrail run
    screentrail ask "What was I working on yesterday?"
    screentrail load
"""

import os
from pathlib import Path
from typing import Callable, Optional

import typer
from typing_extensions import Annotated

from .api import Tracker
from .logging_config import configure_quiet_mode, enable_debug_mode

QUERY_PROMPT = "Query> "
EXIT_COMMAND = "exit"


# Configure quiet mode by default (suppress verbose library output)
# Set SCREENTRAIL_VERBOSE=1 to enable debug mode via environment
if os.environ.get("SCREENTRAIL_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"screentrail {version('screentrail')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_store_override: Optional[Path] = None


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="screentrail",
    help="Screen activity tracker with time-aware semantic recall.",
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
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="SCREENTRAIL_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Screen activity tracker with time-aware semantic recall."""


StoreOption = Annotated[
    Optional[Path],
    typer.Option(
        "--store", "-s",
        envvar="SCREENTRAIL_STORE_PATH",
        help="Path to the store directory (default: ~/.screentrail/)"
    )
]


def _get_tracker(store: Optional[Path], *, ops_log: bool = True) -> Tracker:
    """Initialize the tracker, handling errors gracefully."""
    import atexit

    actual_store = store if store is not None else _get_store_override()
    try:
        tracker = Tracker(actual_store, ops_log=ops_log)
    except (ValueError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(tracker.close)
    return tracker


def _load(tracker: Tracker) -> None:
    report = tracker.load_history()
    if report.total:
        typer.echo(
            f"Loaded {report.loaded} records "
            f"({report.skipped} skipped, {report.failed} failed)",
            err=True,
        )


def query_loop(
    tracker: Tracker,
    read: Callable[[str], str] = input,
    write: Callable[[str], None] = typer.echo,
) -> int:
    """
    Read queries until "exit" or end of input; print each answer.

    Blank lines are ignored. Returns the number of queries answered.
    """
    answered = 0
    while True:
        try:
            line = read(QUERY_PROMPT)
        except EOFError:
            break
        query = line.strip()
        if query.lower() == EXIT_COMMAND:
            break
        if not query:
            continue
        write(tracker.ask(query))
        answered += 1
    return answered


@app.command()
def run(
    no_capture: Annotated[bool, typer.Option(
        "--no-capture",
        help="Answer queries without taking screenshots",
    )] = False,
    interval: Annotated[Optional[float], typer.Option(
        "--interval", "-i",
        help="Seconds between screenshots (default from config)",
        min=1,
    )] = None,
    store: StoreOption = None,
):
    """
    Replay history, capture in the background and answer queries.

    Type "exit" (or end input) to stop.
    """
    tracker = _get_tracker(store)
    _load(tracker)

    capture = not no_capture and tracker.config.capture.enabled
    if capture:
        tracker.supervisor(interval).start()
        typer.echo("Capturing screen activity in the background.", err=True)

    try:
        query_loop(tracker)
    finally:
        tracker.close()


@app.command()
def ask(
    query: Annotated[str, typer.Argument(help="Question about past activity")],
    store: StoreOption = None,
):
    """Answer one question about past activity."""
    tracker = _get_tracker(store)
    _load(tracker)
    typer.echo(tracker.ask(query))


@app.command()
def load(
    store: StoreOption = None,
):
    """Replay persisted history and report what was indexed."""
    tracker = _get_tracker(store)
    report = tracker.load_history()
    typer.echo(
        f"{report.loaded} loaded, {report.skipped} skipped, "
        f"{report.failed} failed ({report.total} files in {tracker.history_dir})"
    )


@app.command()
def capture(
    store: StoreOption = None,
):
    """Take one screenshot, analyze it and save the record."""
    tracker = _get_tracker(store)
    record = tracker.capture_once()
    if record is None:
        typer.echo("No usable analysis for this screenshot.", err=True)
        raise typer.Exit(1)
    typer.echo(f"{record.timestamp}  [{record.active_app or '-'}]  {record.summary}")


@app.command()
def config(
    store: StoreOption = None,
):
    """Show the resolved configuration."""
    cfg = _get_tracker(store, ops_log=False).config
    lines = [
        f"store: {cfg.path}",
        f"file: {cfg.config_path}",
        f"history: {cfg.history_dir}",
        f"screenshots: {cfg.screenshots_dir}",
        f"capture: every {cfg.capture.interval:g}s"
        + ("" if cfg.capture.enabled else " (disabled)"),
        f"query: {cfg.query.filtered_results} filtered / "
        f"{cfg.query.default_results} default results, timeout {cfg.query.timeout:g}s",
        f"supervisor: {cfg.supervisor.max_restarts} restarts, "
        f"backoff {cfg.supervisor.backoff_base:g}s..{cfg.supervisor.backoff_max:g}s",
        "providers:",
    ]
    for role in ("embedding", "vision", "time_parser", "summarization"):
        provider = getattr(cfg, role)
        model = provider.params.get("model")
        lines.append(f"  {role}: {provider.name}" + (f" ({model})" if model else ""))
    typer.echo("\n".join(lines))


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
        log_path = log_exception(e, context="screentrail CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
