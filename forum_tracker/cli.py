"""
Command-line interface for forum-tracker.

Usage:
    forum-tracker serve              # Run the API server
    forum-tracker scheduler          # Run the refresh scheduler
    forum-tracker refresh --tier 1   # One origin refresh cycle
    forum-tracker refresh-tenants    # Refresh every due tenant
    forum-tracker init-db            # Initialize database
    forum-tracker health             # Check service health
"""

import asyncio
import os
import signal
import sys

import click

from forum_tracker.config.settings import get_settings
from forum_tracker.observability.logging import setup_logging
from forum_tracker.observability.metrics import get_metrics


def _fail(message: str) -> None:
    click.echo(click.style(message, fg="red"), err=True)
    sys.exit(1)


def _require_tenants(container) -> None:
    if container.refresher is None:
        _fail("Tenant pipeline unavailable: DATABASE_URL not configured or unreachable")


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Forum Tracker - multi-forum topic aggregation."""
    setup_logging("DEBUG" if debug else None)


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
@click.option("--with-scheduler", is_flag=True, help="Run the refresh scheduler in-process")
def serve(
    host: str | None,
    port: int | None,
    reload: bool,
    metrics_port: int | None,
    with_scheduler: bool,
) -> None:
    """Start the API server."""
    import uvicorn

    if with_scheduler:
        os.environ["API_RUN_SCHEDULER"] = "true"
        get_settings.cache_clear()

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    metrics_port = metrics_port or settings.metrics_port

    get_metrics().start_server(port=metrics_port)

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"Metrics available on http://localhost:{metrics_port}/metrics")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "forum_tracker.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
def scheduler(metrics: bool) -> None:
    """Run the origin refresh and tenant sweep on their intervals."""
    from forum_tracker.services.container import ServiceContainer

    async def run():
        container = ServiceContainer()
        await container.start()

        if metrics:
            get_metrics().start_server()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig, lambda: asyncio.create_task(container.scheduler.stop())
            )

        try:
            await container.scheduler.run_forever()
        finally:
            await container.close()

    asyncio.run(run())


@main.command()
@click.option("--tier", "tiers", multiple=True, type=click.IntRange(1, 3), help="Origin tier")
def refresh(tiers: tuple[int, ...]) -> None:
    """Run one origin refresh cycle."""
    from forum_tracker.services.container import ServiceContainer

    async def run():
        async with ServiceContainer() as container:
            summary = await container.coordinator.refresh(list(tiers) or None)
            await container.cache.drain()
            return summary

    summary = asyncio.run(run())

    click.echo(f"Refresh: {summary.outcome.value}")
    if not summary.ran:
        return
    click.echo(f"  Origins:    {summary.origins}")
    click.echo(f"  Successful: {summary.successful}")
    click.echo(f"  Failed:     {summary.failed}")
    click.echo(f"  Topics:     {summary.total_topics}")
    if summary.external_sources:
        click.echo(f"  External:   {summary.external_sources} ({summary.external_failed} failed)")
    click.echo(f"  Duration:   {summary.duration_seconds:.1f}s")
    for origin, error in summary.errors.items():
        click.echo(click.style(f"  ✗ {origin}: {error}", fg="red"))


@main.command("refresh-tenants")
def refresh_tenants() -> None:
    """Refresh every active tenant whose interval has elapsed."""
    from forum_tracker.services.container import ServiceContainer

    async def run():
        async with ServiceContainer() as container:
            _require_tenants(container)
            return await container.sweep.run()

    result = asyncio.run(run())

    click.echo(f"Checked {result.checked} tenants")
    for refreshed in result.refreshed:
        click.echo(
            f"  ✓ {refreshed.tenant_slug}: {refreshed.snapshots_created} snapshots, "
            f"{len(refreshed.errors)} errors"
        )
    for slug in result.skipped:
        click.echo(f"  - {slug}: not due")
    for slug, error in result.failed.items():
        click.echo(click.style(f"  ✗ {slug}: {error}", fg="red"))
    if result.failed:
        sys.exit(1)


def _run_tenant_operation(slug: str, operation: str):
    from forum_tracker.members.credentials import CredentialError
    from forum_tracker.members.refresh import TenantNotFoundError
    from forum_tracker.services.container import ServiceContainer

    async def run():
        async with ServiceContainer() as container:
            _require_tenants(container)
            return await getattr(container.refresher, operation)(slug)

    try:
        return asyncio.run(run())
    except (TenantNotFoundError, CredentialError) as e:
        _fail(str(e))


@main.command("refresh-tenant")
@click.argument("slug")
def refresh_tenant(slug: str) -> None:
    """Refresh one tenant now."""
    result = _run_tenant_operation(slug, "refresh_tenant")

    click.echo(f"Tenant {result.tenant_slug}")
    click.echo(f"  Members refreshed: {result.members_refreshed}")
    click.echo(f"  Snapshots:         {result.snapshots_created}")
    if result.contributor_sync is not None:
        click.echo(f"  Contributors:      {result.contributor_sync.synced}")
    for error in result.errors:
        click.echo(click.style(f"  ✗ {error.username} ({error.stage}): {error.error}", fg="red"))


@main.command("sync-contributors")
@click.argument("slug")
def sync_contributors(slug: str) -> None:
    """Sync a tenant forum's contributor directory."""
    result = _run_tenant_operation(slug, "sync_contributors")

    click.echo(f"Synced {result.synced} of {result.fetched} contributors")
    click.echo(f"  Forum total (reported): {result.total_forum}")
    click.echo(f"  Monthly figures:        {'yes' if result.monthly_available else 'no'}")
    for error in result.errors:
        click.echo(click.style(f"  ✗ {error.username} ({error.stage}): {error.error}", fg="red"))


@main.command("probe-tenant")
@click.argument("slug")
def probe_tenant(slug: str) -> None:
    """Probe which API operations a tenant credential allows."""
    capabilities = _run_tenant_operation(slug, "probe_capabilities")

    for name, allowed in capabilities.model_dump(exclude={"tested_at"}).items():
        icon = "✓" if allowed else "✗"
        color = "green" if allowed else "red"
        click.echo(click.style(f"  {icon} {name}", fg=color))


@main.command("add-tenant")
@click.argument("slug")
@click.option("--name", required=True, help="Display name")
@click.option("--forum-url", required=True, help="Forum base URL")
@click.option("--api-key", required=True, prompt=True, hide_input=True, help="Forum API key")
@click.option("--api-username", default="", help="Api-Username (empty for all-users keys)")
def add_tenant(slug: str, name: str, forum_url: str, api_key: str, api_username: str) -> None:
    """Register a tenant with an encrypted API key."""
    from forum_tracker.members.credentials import CredentialCipher, CredentialError
    from forum_tracker.members.repository import MemberRepository
    from forum_tracker.storage.database import Database, DatabaseNotConfiguredError

    try:
        cipher = CredentialCipher.from_settings(get_settings())
    except CredentialError as e:
        _fail(str(e))
    if cipher is None:
        _fail("ENCRYPTION_KEY is not set")

    async def run():
        async with Database() as db:
            repo = MemberRepository(db)
            return await repo.create_tenant(
                slug=slug,
                name=name,
                forum_url=forum_url,
                encrypted_api_key=cipher.encrypt(api_key),
                api_username=api_username,
            )

    try:
        tenant = asyncio.run(run())
    except (ValueError, DatabaseNotConfiguredError) as e:
        _fail(str(e))
    click.echo(f"Tenant {tenant.slug} created (id {tenant.id})")


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from forum_tracker.cache.repository import ForumRepository
    from forum_tracker.members.repository import MemberRepository
    from forum_tracker.storage.database import Database, DatabaseNotConfiguredError

    async def run():
        async with Database() as db:
            await ForumRepository(db).create_tables()
            await MemberRepository(db).ensure_schema()

        click.echo("Database initialized successfully")

    try:
        asyncio.run(run())
    except DatabaseNotConfiguredError as e:
        _fail(str(e))


@main.command("cache-status")
@click.option("--tier", "tiers", multiple=True, type=click.IntRange(1, 3), help="Origin tier")
def cache_status(tiers: tuple[int, ...]) -> None:
    """Show which cache tier serves each origin."""
    from forum_tracker.config.origins import get_origins
    from forum_tracker.services.container import ServiceContainer

    async def run():
        async with ServiceContainer() as container:
            rows = []
            for origin in get_origins(list(tiers) or None):
                entry = await container.cache.get_cached_origin(origin.url)
                rows.append((origin, entry))
            status = await container.coordinator.status()
            return rows, status

    rows, status = asyncio.run(run())

    click.echo(f"Last refresh: {status.last_refresh or 'never'}")
    click.echo("-" * 60)
    for origin, entry in rows:
        if entry is None:
            click.echo(click.style(f"  - {origin.name}: not cached", fg="yellow"))
        elif entry.error and not entry.topics:
            click.echo(click.style(f"  ✗ {origin.name}: {entry.error}", fg="red"))
        else:
            click.echo(
                click.style(
                    f"  ✓ {origin.name}: {len(entry.topics)} topics ({entry.source})",
                    fg="green",
                )
            )


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    from forum_tracker.services.container import ServiceContainer

    async def check():
        results: dict[str, bool] = {}
        settings = get_settings()

        async with ServiceContainer(settings) as container:
            if settings.database_configured:
                results["postgres"] = (
                    container.database is not None and await container.database.health_check()
                )
            if settings.redis_configured:
                results["redis"] = await container.ephemeral.health_check()
        results["encryption_key_configured"] = bool(settings.encryption_key)
        results["refresh_secret_configured"] = bool(settings.refresh_secret)

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("redis", "postgres") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
