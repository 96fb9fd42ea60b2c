"""TariffSync — Manual Sync CLI."""

import asyncio
import json
import sys
from typing import Awaitable, Callable

import typer

from tariffsync.config import settings
from tariffsync.core.context import ServiceContext
from tariffsync.core.errors import SyncInProgressError
from tariffsync.core.logging import get_logger
from tariffsync.database import init_db
from tariffsync.services.sync_service import (
    run_product_sync,
    run_tariff_sync,
    run_update_sync,
)
from tariffsync.sync.cleanup import run_cleanup
from tariffsync.sync.runner import SyncOutcome

logger = get_logger("cli")

app = typer.Typer(help="TariffSync manual sync runs.")


def build_context() -> ServiceContext:
    return ServiceContext.build(settings)


def _run_sync(sync: Callable[[ServiceContext], Awaitable[SyncOutcome]]) -> None:
    async def _main() -> SyncOutcome:
        context = build_context()
        try:
            init_db(context.engine)
            return await sync(context)
        finally:
            await context.aclose()

    try:
        outcome = asyncio.run(_main())
    except SyncInProgressError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)

    typer.echo(json.dumps({"run_id": outcome.run_id, "status": outcome.status.value, **outcome.stats}))
    if not outcome.ok:
        typer.echo(f"Sync failed: {outcome.error}", err=True)
        raise typer.Exit(code=1)


@app.command()
def products(
    full: bool = typer.Option(False, "--full", help="Re-sync every HTS chapter."),
) -> None:
    """Run a product sync (incremental by default)."""
    _run_sync(lambda ctx: run_product_sync(ctx, full=full))


@app.command()
def tariffs() -> None:
    """Recompute per-country tariff rates."""
    _run_sync(run_tariff_sync)


@app.command()
def updates() -> None:
    """Ingest new Federal Register trade notices."""
    _run_sync(run_update_sync)


@app.command()
def cleanup() -> None:
    """Flush volatile caches and prune old sync runs, notifications and leases."""

    async def _main() -> dict:
        context = build_context()
        try:
            init_db(context.engine)
            return run_cleanup(context)
        finally:
            await context.aclose()

    typer.echo(json.dumps(asyncio.run(_main())))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
