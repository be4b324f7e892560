"""CLI entry point and orchestration for cfpinner."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Coroutine, Optional

import click

from cfpinner import __version__
from cfpinner.config import (
    ALIVE_MAX_PER_RANGE,
    DEFAULT_ALIVE_TIMEOUT,
    DEFAULT_THREADS,
    DEFAULT_TRACK_TIMEOUT,
    STATE_DIR,
    TRACK_MAX_PER_RANGE,
)
from cfpinner.errors import CFPinnerError, ConfigurationError
from cfpinner.log import setup_logging
from cfpinner.models import AliveSet, BatchReport, ProbeOutcome, ScanConfig
from cfpinner.storage import StatePaths


def _scan_options(default_timeout: float, default_max: int) -> Callable:
    """Options shared by the probing commands."""

    def decorator(func: Callable) -> Callable:
        options = [
            click.option("--threads", "threads", default=DEFAULT_THREADS, type=click.IntRange(min=1),
                         help="Number of parallel workers", show_default=True),
            click.option("-t", "--timeout", default=default_timeout, type=click.FloatRange(min=0, min_open=True),
                         help="Per-request timeout in seconds", show_default=True),
            click.option("--force-all", is_flag=True,
                         help="Expand every CIDR range completely (no sampling; may mean 500k+ IPs)"),
            click.option("--max-per-range", default=default_max, type=click.IntRange(min=1),
                         help="Addresses sampled per CIDR range", show_default=True),
            click.option("--json", "json_output", is_flag=True, help="Output JSON to stdout"),
            click.option("--csv", "csv_output", is_flag=True, help="Output CSV to stdout"),
            click.option("-o", "--output", default=None, help="Write results to file"),
            click.option("-q", "--quiet", is_flag=True, help="Suppress progress, show only results"),
        ]
        for option in reversed(options):
            func = option(func)
        return func

    return decorator


def _scan_config(**kwargs: Any) -> ScanConfig:
    return ScanConfig(
        threads=kwargs["threads"],
        timeout=kwargs["timeout"],
        force_all=kwargs["force_all"],
        max_per_range=kwargs["max_per_range"],
        quiet=kwargs["quiet"],
        json_output=kwargs["json_output"],
        csv_output=kwargs["csv_output"],
        output_file=kwargs["output"],
    )


def _run(coro: Coroutine[Any, Any, Any], interactive: bool = True) -> Any:
    """Run *coro*, turning setup errors and Ctrl-C into exit codes."""
    from cfpinner.display import err_console, render_error

    try:
        return asyncio.run(coro)
    except CFPinnerError as exc:
        render_error(str(exc))
        sys.exit(1)
    except KeyboardInterrupt:
        if interactive:
            err_console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("--state-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help=f"State directory [default: {STATE_DIR}]")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool, state_dir: Optional[Path]) -> None:
    """cfpinner: Cloudflare CDN location tracker.

    Finds which Cloudflare edge nodes hold a cached copy of an uploaded
    image by probing edge addresses directly with the image's domain as
    the virtual host.

    \b
    Workflow:
      1. (Optional) cfpinner alive      -- cache responsive edge nodes
      2. cfpinner generate              -- create a unique image
      3. Upload the image to the target service
      4. cfpinner track <id> <url>      -- see which nodes cached it
    """
    setup_logging("DEBUG" if verbose else None)
    ctx.obj = StatePaths(state_dir or STATE_DIR)


@main.command()
@click.option("-s", "--save", "save_dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Custom output directory for the image [default: <state-dir>/images]")
@click.pass_obj
def generate(paths: StatePaths, save_dir: Optional[Path]) -> None:
    """Generate a unique PNG image to upload and track."""
    from cfpinner.artifact import generate_artifact
    from cfpinner.display import render_artifact, render_error

    try:
        metadata = generate_artifact(paths, save_dir)
    except OSError as exc:
        render_error(f"Could not write image: {exc}")
        sys.exit(1)
    render_artifact(metadata)


@main.command("update-cdn")
@click.pass_obj
def update_cdn(paths: StatePaths) -> None:
    """Download the latest Cloudflare IPv4 ranges."""
    from cfpinner.display import console
    from cfpinner.updater import update_blocks

    console.print("Updating Cloudflare CDN IP ranges...")
    _run(update_blocks(paths.ensure(), force=True))
    console.print(f"[green]✓ Cloudflare IP ranges updated successfully![/green] ({paths.ip_ranges})")


@main.command()
@_scan_options(DEFAULT_ALIVE_TIMEOUT, ALIVE_MAX_PER_RANGE)
@click.pass_obj
def alive(paths: StatePaths, **kwargs: Any) -> None:
    """Scan the published ranges and cache the responsive edge nodes."""
    config = _scan_config(**kwargs)
    report, alive_addresses = _run(_alive(paths, config), config.interactive)
    _handle_output(report, config, alive_addresses)


@main.command()
@click.argument("identifier")
@click.argument("url")
@click.option("--domain", default=None, help="Virtual host to present [default: host of URL]")
@click.option("--no-alive-cache", is_flag=True, help="Ignore the cached alive list and sample the ranges")
@_scan_options(DEFAULT_TRACK_TIMEOUT, TRACK_MAX_PER_RANGE)
@click.pass_obj
def track(
    paths: StatePaths,
    identifier: str,
    url: str,
    domain: Optional[str],
    no_alive_cache: bool,
    **kwargs: Any,
) -> None:
    """Track image IDENTIFIER, uploaded at URL, across the CDN."""
    config = _scan_config(**kwargs)
    report = _run(_track(paths, identifier, url, domain, not no_alive_cache, config), config.interactive)
    _handle_output(report, config)


# ── Orchestration ─────────────────────────────────────────────────────


async def _refresh_blocks(paths: StatePaths, config: ScanConfig) -> None:
    """Update the range file when stale; a failed refresh falls back to the old file."""
    from cfpinner.display import console, render_warning
    from cfpinner.storage import blocks_need_update, file_age_days
    from cfpinner.updater import update_blocks

    if not blocks_need_update(paths):
        if config.interactive:
            console.print(f"Using Cloudflare IP ranges (age: {file_age_days(paths.ip_ranges)} days)")
        return

    age = file_age_days(paths.ip_ranges)
    if config.interactive:
        if age is None:
            console.print("Cloudflare IP ranges file not found. Downloading...")
        else:
            console.print(f"Cloudflare IP ranges are {age} days old. Updating...")
    try:
        await update_blocks(paths.ensure(), force=True)
    except ConfigurationError as exc:
        render_warning(f"{exc}. Using existing file if available.")


def _load_blocks(paths: StatePaths):
    from cfpinner.storage import load_blocks

    try:
        return load_blocks(paths.ip_ranges)
    except ConfigurationError as exc:
        raise ConfigurationError(f"{exc}\nTry running: cfpinner update-cdn") from exc


def _tracker_callbacks(config: ScanConfig, description: str, label: Optional[str] = None):
    from cfpinner.display import ProgressTracker

    if not config.interactive:
        return None, None, None

    tracker = ProgressTracker(description)

    def on_outcome(outcome: ProbeOutcome) -> None:
        tracker.print_outcome(outcome, label)

    return tracker, tracker.update, on_outcome


async def _alive(paths: StatePaths, config: ScanConfig) -> tuple[BatchReport, AliveSet]:
    from cfpinner.display import console, render_alive_summary
    from cfpinner.engine import discover
    from cfpinner.storage import save_alive

    await _refresh_blocks(paths, config)
    blocks = _load_blocks(paths)

    tracker, on_progress, on_outcome = _tracker_callbacks(config, "Scanning", label="ALIVE")
    if config.interactive:
        mode = " (FULL expansion - no sampling)" if config.force_all else ""
        console.print(f"\nScanning {len(blocks)} Cloudflare CIDR ranges{mode} using {config.threads} threads...\n")
        tracker.start()
    try:
        report, alive_addresses = await discover(
            blocks,
            threads=config.threads,
            timeout=config.timeout,
            max_per_range=config.max_per_range,
            force_all=config.force_all,
            progress_callback=on_progress,
            outcome_callback=on_outcome,
        )
    finally:
        if tracker:
            tracker.finish()

    if config.interactive:
        render_alive_summary(len(alive_addresses), report.total)
    if not alive_addresses:
        raise ConfigurationError("No alive CDN nodes found")

    save_alive(paths.ensure().alive_ips, alive_addresses)
    if config.interactive:
        console.print(f"Saved alive IPs to: {paths.alive_ips}")
        console.print("\n[green]✓ Use 'cfpinner track' to leverage this optimized list![/green]")
    return report, alive_addresses


async def _track(
    paths: StatePaths,
    identifier: str,
    url: str,
    domain: Optional[str],
    use_alive_cache: bool,
    config: ScanConfig,
) -> BatchReport:
    from cfpinner.artifact import load_metadata
    from cfpinner.display import console
    from cfpinner.engine import track
    from cfpinner.storage import file_age_days, has_recent_alive, load_alive

    metadata = load_metadata(paths, identifier)
    if config.interactive:
        console.print("Image found in local database:")
        console.print(f"  Generated: {metadata.timestamp}")
        console.print(f"  Size: {metadata.width}x{metadata.height}")

    alive_addresses: list[str] = []
    if use_alive_cache and has_recent_alive(paths):
        alive_addresses = load_alive(paths.alive_ips)
        if alive_addresses and config.interactive:
            console.print(
                f"Using alive IPs cache ({len(alive_addresses)} IPs, "
                f"age: {file_age_days(paths.alive_ips)} days)"
            )

    blocks = None
    if not alive_addresses:
        await _refresh_blocks(paths, config)
        blocks = _load_blocks(paths)
        if config.interactive:
            alive_age = file_age_days(paths.alive_ips)
            if alive_age is None:
                console.print("[yellow]Tip: Run 'cfpinner alive' first to speed up tracking![/yellow]")
            elif use_alive_cache:
                console.print(
                    f"[yellow]Alive IPs cache is {alive_age} days old. "
                    "Run 'cfpinner alive' to refresh.[/yellow]"
                )

    tracker, on_progress, on_outcome = _tracker_callbacks(config, "Checking")
    if config.interactive:
        console.print(f"\nTracking image: {identifier}")
        console.print(f"Target URL: {url}\n")
        tracker.start()
    try:
        report = await track(
            url,
            blocks=blocks,
            alive=alive_addresses or None,
            domain=domain,
            threads=config.threads,
            timeout=config.timeout,
            max_per_range=config.max_per_range,
            force_all=config.force_all,
            progress_callback=on_progress,
            outcome_callback=on_outcome,
        )
    finally:
        if tracker:
            tracker.finish()
    return report


def _handle_output(report: BatchReport, config: ScanConfig, alive: Optional[AliveSet] = None) -> None:
    """Handle output rendering and export."""
    from cfpinner.display import console, render_report
    from cfpinner.export import export_csv, export_json, write_to_file

    if config.json_output or config.csv_output:
        content = export_json(report, alive) if config.json_output else export_csv(report)
        if config.output_file:
            write_to_file(content, config.output_file)
            if not config.quiet:
                console.print(f"[dim]Results written to {config.output_file}[/dim]")
        else:
            click.echo(content)
        return

    if alive is None:
        render_report(report)

    if config.output_file:
        write_to_file(export_json(report, alive), config.output_file)
        console.print(f"\n[dim]Results written to {config.output_file}[/dim]")


if __name__ == "__main__":
    main()
