"""
Command-line interface for digest-pipeline.

Provides commands to run the digest pipeline once or on a schedule,
sweep the cache, inspect stored digests, and edit the configuration
store.

Usage:
    digest-pipeline run-once       # Run one digest cycle
    digest-pipeline serve          # Run the scheduler until stopped
    digest-pipeline sweep-cache    # Delete expired cache records
    digest-pipeline digests        # List recent digests
    digest-pipeline show-config    # Print the configuration store
    digest-pipeline set-schedule   # Add or change a task schedule
    digest-pipeline set-sources    # Replace the keys of one source type
    digest-pipeline init-db        # Initialize the database schema
    digest-pipeline health         # Check service health
"""

import asyncio
import json
import signal
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from src.config.settings import get_settings
from src.config.store import ConfigStore, ConfigStoreError
from src.ingestion.schemas import SourceType
from src.observability.logging import setup_logging
from src.observability.metrics import get_metrics
from src.scheduler.schemas import ScheduleConfig


def _store(ctx: click.Context) -> ConfigStore:
    return ctx.obj["store"]


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration store file (default: CONFIG_STORE_PATH)",
)
@click.pass_context
def main(ctx: click.Context, debug: bool, config_path: Path | None) -> None:
    """Digest Pipeline - scheduled content aggregation and synthesis."""
    setup_logging(level="DEBUG" if debug else None)

    settings = get_settings()
    ctx.ensure_object(dict)
    ctx.obj["store"] = ConfigStore(config_path or settings.config_store_path)


@main.command("run-once")
@click.option("--mock", is_flag=True, help="Use mock collectors and synthesis")
@click.option("--json", "as_json", is_flag=True, help="Print the run result as JSON")
@click.pass_context
def run_once(ctx: click.Context, mock: bool, as_json: bool) -> None:
    """Run one digest cycle and report the outcome."""
    from src.services.digest_service import DigestService

    async def run():
        async with DigestService(store=_store(ctx), use_mock=mock) as service:
            return await service.run_once()

    result = asyncio.run(run())

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        click.echo("\nRun Results:")
        click.echo(f"  outcome: {result.outcome.value}")
        click.echo(f"  phase: {result.phase.value}")
        for source, count in result.collected.items():
            click.echo(
                f"  {source}: {count} collected, {result.retained.get(source, 0)} retained"
            )
        click.echo(f"  cache hits: {result.cache_hits}")
        for failure in result.key_failures:
            click.echo(
                click.style(
                    f"  ✗ {failure.source_type.value}:{failure.source_key}: {failure.error}",
                    fg="yellow",
                )
            )
        if result.digest_id:
            click.echo(f"  digest: {result.digest_id}")
        for dist in result.distribution_results:
            icon = "✓" if dist.success else "✗"
            color = "green" if dist.success else "red"
            detail = dist.url or dist.error or ""
            click.echo(click.style(f"  {icon} {dist.platform} {detail}", fg=color))
        click.echo(f"  notification: {result.notification.value}")
        if result.error:
            click.echo(click.style(f"  error: {result.error}", fg="red"))

    if not result.success:
        sys.exit(1)


@main.command()
@click.option("--mock", is_flag=True, help="Use mock collectors and synthesis")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
@click.pass_context
def serve(ctx: click.Context, mock: bool, metrics: bool, metrics_port: int | None) -> None:
    """Run the scheduler with every schedule in the configuration store."""
    from src.services.digest_service import DigestService

    async def run():
        service = DigestService(store=_store(ctx), use_mock=mock)

        if metrics:
            get_metrics().start_server(port=metrics_port)

        stopping: set[asyncio.Task] = set()

        def request_stop() -> None:
            task = asyncio.create_task(service.stop())
            stopping.add(task)
            task.add_done_callback(stopping.discard)

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, request_stop)

        await service.start()
        if stopping:
            await asyncio.gather(*stopping)

    asyncio.run(run())


@main.command("sweep-cache")
@click.pass_context
def sweep_cache(ctx: click.Context) -> None:
    """Delete cache records older than their retention window."""
    from src.cache.sweeper import CacheSweepError
    from src.services.digest_service import DigestService

    async def run():
        async with DigestService(store=_store(ctx)) as service:
            return await service.sweep_cache()

    try:
        deleted = asyncio.run(run())
    except CacheSweepError as e:
        click.echo(click.style(f"Cache sweep failed: {e}", fg="red"))
        sys.exit(1)

    for source, count in deleted.items():
        click.echo(f"  {source}: {count} records deleted")


@main.command()
@click.option("--limit", default=10, help="Number of digests to show")
@click.pass_context
def digests(ctx: click.Context, limit: int) -> None:
    """List the most recent digests."""
    from src.services.digest_service import DigestService

    async def run():
        async with DigestService(store=_store(ctx)) as service:
            return await service.repository.list_recent(limit)

    recent = asyncio.run(run())
    if not recent:
        click.echo("No digests found")
        return

    for digest in recent:
        published = ", ".join(k for k, v in digest.distribution_status.items() if v) or "-"
        click.echo(
            f"{digest.created_at:%Y-%m-%d %H:%M}  {digest.id}  {digest.title}  "
            f"[{digest.ai_provider}/{digest.ai_model}]  published: {published}"
        )


@main.command("show-config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the configuration store as JSON."""
    store = _store(ctx)
    try:
        document = store.load()
    except ConfigStoreError as e:
        click.echo(click.style(str(e), fg="red"))
        sys.exit(1)

    click.echo(f"# {store.path}{'' if store.path.exists() else ' (defaults)'}")
    click.echo(document.model_dump_json(indent=2))


@main.command("set-schedule")
@click.argument("name")
@click.option("--cron", "cron_pattern", default=None, help="Five-field cron expression")
@click.option("--enable/--disable", default=None, help="Enable or disable the schedule")
@click.option("--timezone", default=None, help="IANA timezone name")
@click.option("--max-concurrent", default=None, type=int, help="Max concurrent runs")
@click.option("--retries", default=None, type=int, help="Retry attempts after a failure")
@click.option("--retry-delay", default=None, type=float, help="Seconds before a retry")
@click.option("--backoff", default=None, type=float, help="Retry delay multiplier")
@click.option("--remove", is_flag=True, help="Remove the schedule instead")
@click.pass_context
def set_schedule(
    ctx: click.Context,
    name: str,
    cron_pattern: str | None,
    enable: bool | None,
    timezone: str | None,
    max_concurrent: int | None,
    retries: int | None,
    retry_delay: float | None,
    backoff: float | None,
    remove: bool,
) -> None:
    """Add or change the schedule of task NAME.

    Example:
        digest-pipeline set-schedule digest-pipeline --cron "0 */6 * * *"
        digest-pipeline set-schedule cache-sweep --disable
    """
    store = _store(ctx)

    if remove:
        if store.remove_schedule(name):
            click.echo(f"Removed schedule {name}")
        else:
            click.echo(click.style(f"No schedule named {name}", fg="yellow"))
        return

    updates = {
        "cron_pattern": cron_pattern,
        "enabled": enable,
        "timezone": timezone,
        "max_concurrent_runs": max_concurrent,
        "retry_attempts": retries,
        "retry_delay_seconds": retry_delay,
        "retry_backoff_multiplier": backoff,
    }
    updates = {k: v for k, v in updates.items() if v is not None}

    current = store.get_schedule(name)
    base = current.model_dump() if current else {"name": name}
    if "cron_pattern" not in base and "cron_pattern" not in updates:
        raise click.UsageError(f"New schedule {name} needs --cron")

    try:
        schedule = ScheduleConfig(**{**base, **updates})
    except ValidationError as e:
        raise click.BadParameter(str(e)) from e

    store.upsert_schedule(schedule)
    click.echo(
        f"Schedule {schedule.name}: {schedule.cron_pattern} ({schedule.timezone}), "
        f"{'enabled' if schedule.enabled else 'disabled'}, "
        f"retries={schedule.retry_attempts}"
    )


@main.command("set-sources")
@click.argument("source_type", type=click.Choice([s.value for s in SourceType]))
@click.argument("keys", nargs=-1)
@click.pass_context
def set_sources(ctx: click.Context, source_type: str, keys: tuple[str, ...]) -> None:
    """Replace the keys of SOURCE_TYPE with KEYS (none clears them).

    Example:
        digest-pipeline set-sources twitter openai anthropicai
        digest-pipeline set-sources rss https://techcrunch.com/feed/
    """
    store = _store(ctx)
    source = SourceType(source_type)
    store.set_source_keys(source, list(keys))

    saved = store.get_source_keys(source)[source]
    click.echo(f"{source.value}: {len(saved)} keys")
    for key in saved:
        click.echo(f"  {key}")


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from src.storage.database import Database
    from src.storage.repository import PostgresDigestRepository

    async def run():
        db = Database()
        await db.connect()

        repo = PostgresDigestRepository(db)
        await repo.create_tables()

        click.echo("Database initialized successfully")

        await db.close()

    asyncio.run(run())


@main.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check health of all dependencies."""
    from src.services.digest_service import DigestService

    async def check():
        async with DigestService(store=_store(ctx)) as service:
            return await service.health_check()

    try:
        status = asyncio.run(check())
    except Exception as e:
        click.echo(click.style(f"Health check failed: {e}", fg="red"))
        sys.exit(1)

    results: dict[str, bool] = {"database": status["database_healthy"]}
    results.update({f"cache:{k}": v for k, v in status["cache"].items()})
    results.update({f"collector:{k}": v for k, v in status["collectors"].items()})

    click.echo("\nHealth Check Results:")
    click.echo("-" * 40)

    all_healthy = True
    for name, ok in results.items():
        icon = "✓" if ok else "✗"
        color = "green" if ok else "red"
        click.echo(click.style(f"  {icon} {name}: {ok}", fg=color))
        if not ok and not name.startswith("collector:"):
            all_healthy = False

    click.echo("-" * 40)

    if all_healthy:
        click.echo(click.style("All core services healthy!", fg="green"))
        sys.exit(0)
    else:
        click.echo(click.style("Some services unhealthy!", fg="red"))
        sys.exit(1)


if __name__ == "__main__":
    main()
