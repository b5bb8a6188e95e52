"""
CLI interface for AI Gen Guard.

Provides command-line access to generation, quotas, the job queue and the
result cache.
"""

import json
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ai_gen_guard.config.loader import (
    CONFIG_ENV_VAR,
    AppConfig,
    default_config,
    load_config,
    resolve_config_path,
)
from ai_gen_guard.config.logging_config import configure_logging
from ai_gen_guard.core.errors import (
    AllProvidersFailed,
    ContentRejected,
    GenerationError,
    PersistenceError,
    QuotaExceeded,
)
from ai_gen_guard.core.factory import Services, build_services
from ai_gen_guard.core.features import Feature, GenerationOptions, JobHandle, SubscriptionTier
from ai_gen_guard.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1  # Infrastructure or usage error
EXIT_CODE_REJECTED = 2  # Moderation or quota said no

# Field that carries the free text for each feature
TEXT_FIELDS = {
    Feature.IMAGE_GENERATION: "prompt",
    Feature.VOICE_SYNTHESIS: "text",
    Feature.VIDEO_GENERATION: "script",
    Feature.ADVANCED_EDITING: "prompt",
}


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to YAML configuration file (default: ${CONFIG_ENV_VAR})",
    ),
):
    """AI Gen Guard CLI."""
    configure_logging()
    ctx.obj = {"config_path": config}
    if ctx.invoked_subcommand is None:
        console.print("AI Gen Guard - Use --help to see available commands")


def _config(ctx: typer.Context) -> AppConfig:
    path = resolve_config_path((ctx.obj or {}).get("config_path"))
    try:
        return load_config(path) if path else default_config()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _services(ctx: typer.Context) -> Services:
    return build_services(_config(ctx))


def _fail_persistence(e: PersistenceError) -> None:
    if "no such table" in str(e).lower():
        console.print("\n[bold yellow]Database is not initialized[/]")
        console.print("Run `ai-gen-guard init` first.\n")
    else:
        console.print(f"[red]Database error:[/] {str(e)}")
    sys.exit(EXIT_CODE_FAIL)


def _parse_feature(name: str) -> Feature:
    try:
        return Feature(name)
    except ValueError:
        valid = ", ".join(f.value for f in Feature)
        console.print(f"[red]Unknown feature:[/] {name} (choose from {valid})")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def init(ctx: typer.Context):
    """Initialize the AI Gen Guard database."""
    config = _config(ctx)
    try:
        initialize_schema(config.database.path)
        console.print(f"[green]✓[/] Database initialized at {config.database.path}")
        sys.exit(EXIT_CODE_PASS)
    except PersistenceError as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(ctx: typer.Context):
    """Show queue depth, cache size and configured providers."""
    services = _services(ctx)
    try:
        pending = services.queue.jobs.count_by_status("pending")
        processing = services.queue.jobs.count_by_status("processing")
        stats = services.cache.stats()
    except PersistenceError as e:
        _fail_persistence(e)

    console.print("[green]✓[/] AI Gen Guard is initialized")
    console.print(f"Database: {services.config.database.path}")
    console.print(f"Jobs: {pending} pending, {processing} processing")
    console.print(f"Cache: {stats.total_entries} entries, {_format_bytes(stats.total_size)}")
    console.print(f"Providers with credentials: {', '.join(sorted(services.providers)) or 'none'}")


@app.command()
def generate(
    ctx: typer.Context,
    feature: str = typer.Argument(..., help="image_generation, voice_synthesis, video_generation or advanced_editing"),
    text: str = typer.Argument(..., help="Prompt, speech text or video script"),
    account: str = typer.Option(..., "--account", "-a", help="Account the request is billed to"),
    style: Optional[str] = typer.Option(None, "--style", help="Image style"),
    image_format: Optional[str] = typer.Option(None, "--format", help="Image format"),
    width: Optional[int] = typer.Option(None, "--width", help="Output width in pixels"),
    height: Optional[int] = typer.Option(None, "--height", help="Output height in pixels"),
    voice: Optional[str] = typer.Option(None, "--voice", help="Voice name"),
    emotion: Optional[str] = typer.Option(None, "--emotion", help="Voice emotion"),
    avatar: Optional[str] = typer.Option(None, "--avatar", help="Video avatar id"),
    source_image: Optional[str] = typer.Option(None, "--source-image", help="Image to edit"),
    priority: int = typer.Option(0, "--priority", "-p", help="Queue priority if deferred"),
    no_background: bool = typer.Option(False, "--no-background", help="Never defer to the job queue"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
):
    """
    Run a generation request through moderation, cache, quota and providers.

    Exit codes: 0 on success or when queued, 2 when moderation or quota
    rejects the request, 1 on any other failure.
    """
    selected = _parse_feature(feature)
    request = {TEXT_FIELDS[selected]: text}
    extras = {
        "style": style,
        "format": image_format,
        "voice": voice,
        "emotion": emotion,
        "avatar_id": avatar,
        "source_image": source_image,
    }
    request.update({key: value for key, value in extras.items() if value is not None})
    if width is not None or height is not None:
        request["dimensions"] = {"width": width or height, "height": height or width}

    services = _services(ctx)
    options = GenerationOptions(priority=priority, allow_background=not no_background)
    try:
        outcome = services.orchestrator.dispatch(selected, request, account, options)
    except (ContentRejected, QuotaExceeded) as e:
        console.print(f"[yellow]Rejected:[/] {str(e)}")
        sys.exit(EXIT_CODE_REJECTED)
    except AllProvidersFailed as e:
        console.print(f"[red]Generation failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except PersistenceError as e:
        _fail_persistence(e)
    except GenerationError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except (ValueError, TypeError) as e:
        console.print(f"[red]Invalid request:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if isinstance(outcome, JobHandle):
        if as_json:
            console.print_json(json.dumps({"job_id": outcome.job_id, "status": outcome.status}))
        else:
            console.print(f"[cyan]Queued[/] as job {outcome.job_id}")
        sys.exit(EXIT_CODE_PASS)

    if as_json:
        console.print_json(json.dumps(outcome.to_dict()))
    else:
        source = "cache" if outcome.cached else outcome.provider
        console.print(f"[green]✓[/] {outcome.result_location}")
        console.print(f"Provider: {source}  Cost: {_format_cents(outcome.cost_cents)}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def job(ctx: typer.Context, job_id: str = typer.Argument(..., help="Job id returned by generate")):
    """Show the status of a background job."""
    services = _services(ctx)
    try:
        found = services.orchestrator.get_job_status(job_id)
    except PersistenceError as e:
        _fail_persistence(e)

    if found is None:
        console.print(f"[red]No such job:[/] {job_id}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Job {found.id}[/bold]")
    console.print(f"Type: {found.type}")
    console.print(f"Status: {found.status}")
    console.print(f"Submitted: {found.submitted_at:%Y-%m-%d %H:%M:%S}")
    if found.result:
        console.print(f"Result: {found.result.get('result_location')}")
    if found.error:
        console.print(f"Error: {found.error}")


@app.command()
def jobs(
    ctx: typer.Context,
    account: str = typer.Option(..., "--account", "-a", help="Account to list jobs for"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum jobs to show"),
):
    """List recent background jobs for an account."""
    services = _services(ctx)
    try:
        found = services.queue.list_jobs(account, limit)
    except PersistenceError as e:
        _fail_persistence(e)

    if not found:
        console.print(f"[dim]No jobs for {account}[/]")
        return

    table = Table(title=f"Jobs for {account}")
    table.add_column("Job")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Priority", justify="right")
    table.add_column("Submitted")
    for item in found:
        table.add_row(item.id, item.type, item.status, str(item.priority), f"{item.submitted_at:%Y-%m-%d %H:%M}")
    console.print(table)


@app.command()
def usage(
    ctx: typer.Context,
    account: str = typer.Option(..., "--account", "-a", help="Account to report on"),
    feature: Optional[str] = typer.Option(None, "--feature", "-f", help="Limit to one feature"),
):
    """Show month-to-date usage against the account's tier limits."""
    features: List[Feature] = [_parse_feature(feature)] if feature else list(Feature)
    services = _services(ctx)
    try:
        tier = services.quota.get_account_tier(account)
        rows = [(f, services.orchestrator.get_usage_stats(account, f)) for f in features]
    except PersistenceError as e:
        _fail_persistence(e)

    table = Table(title=f"Usage for {account} ({tier.value})")
    table.add_column("Feature")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Cost limit", justify="right")
    table.add_column("Resets")
    for selected, stats in rows:
        table.add_row(
            selected.value,
            str(stats.used),
            str(stats.limit),
            _format_cents(stats.cost_used_cents),
            _format_cents(stats.cost_limit_cents),
            f"{stats.reset_date:%Y-%m-%d}",
        )
    console.print(table)


@app.command("set-tier")
def set_tier(
    ctx: typer.Context,
    account: str = typer.Argument(..., help="Account id"),
    tier: str = typer.Argument(..., help="free, tier_1 or tier_2"),
):
    """Assign a subscription tier to an account."""
    try:
        selected = SubscriptionTier(tier)
    except ValueError:
        valid = ", ".join(t.value for t in SubscriptionTier)
        console.print(f"[red]Unknown tier:[/] {tier} (choose from {valid})")
        sys.exit(EXIT_CODE_FAIL)

    services = _services(ctx)
    try:
        services.quota.set_account_tier(account, selected)
    except PersistenceError as e:
        _fail_persistence(e)
    console.print(f"[green]✓[/] {account} is now on {selected.value}")


@app.command()
def worker(
    ctx: typer.Context,
    once: bool = typer.Option(False, "--once", help="Process pending jobs, then exit"),
):
    """Process background jobs."""
    services = _services(ctx)
    try:
        if once:
            processed = 0
            while services.queue.poll_and_process_one() is not None:
                processed += 1
            console.print(f"[green]✓[/] Processed {processed} job(s)")
            return

        console.print(
            f"Processing jobs with {services.config.queue.max_concurrent} worker(s), Ctrl+C to stop"
        )
        services.poller().run_forever()
    except PersistenceError as e:
        _fail_persistence(e)


@app.command("cache-stats")
def cache_stats(ctx: typer.Context, top: int = typer.Option(5, "--top", help="Most-hit entries to show")):
    """Show result cache size and hit rate."""
    services = _services(ctx)
    try:
        stats = services.cache.stats(top)
    except PersistenceError as e:
        _fail_persistence(e)

    console.print("\n[bold]Result Cache[/bold]")
    console.print("-" * 40)
    console.print(f"Entries: {stats.total_entries}")
    console.print(f"Size: {_format_bytes(stats.total_size)}")
    console.print(f"Hits per entry: {stats.hit_rate:.2f}")
    for entry in stats.top_assets:
        console.print(f"  {entry.key}  hits={entry.hit_count}")


@app.command("cache-optimize")
def cache_optimize(ctx: typer.Context):
    """Evict old entries when over the size ceiling and drop expired ones."""
    services = _services(ctx)
    try:
        evicted = services.cache.optimize()
    except PersistenceError as e:
        _fail_persistence(e)
    console.print(f"[green]✓[/] Evicted {evicted} entr{'y' if evicted == 1 else 'ies'} for size")


@app.command()
def providers(
    ctx: typer.Context,
    check: bool = typer.Option(False, "--check", help="Probe each provider for availability"),
):
    """List the provider order for each feature."""
    services = _services(ctx)
    table = Table(title="Providers")
    table.add_column("Feature")
    table.add_column("Order")
    if check:
        table.add_column("Available")

    for feature, names in services.config.providers.items():
        labels = []
        availability = []
        for name in names:
            adapter = services.providers.get(name)
            labels.append(name if adapter else f"{name} (no credentials)")
            if check and adapter:
                availability.append(f"{name}: {'yes' if adapter.is_available() else 'no'}")
        row = [feature.value, " -> ".join(labels) or "none"]
        if check:
            row.append(", ".join(availability) or "-")
        table.add_row(*row)
    console.print(table)


def _format_cents(cents: int) -> str:
    """Format a cent amount as dollars."""
    return f"${cents / 100:,.2f}"


def _format_bytes(size: int) -> str:
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


if __name__ == "__main__":
    app()
