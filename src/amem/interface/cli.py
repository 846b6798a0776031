"""
Assistant Memory CLI - Command-line interface.

Commands:
- amem serve → Run the HTTP API
- amem status → Select the storage backend and show record counts
- amem init → Create the data directory (and indexes in database mode)
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from amem.core.config import Settings, setup_logging
from amem.core.errors import StorageError
from amem.storage.base import COLLECTIONS
from amem.storage.document import MongoStore
from amem.storage.selector import select_store

app = typer.Typer(
    name="amem",
    help="Assistant Memory - per-user memory records over HTTP",
    no_args_is_help=True,
)
console = Console()


def run_async(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Port to listen on"),
):
    """Run the HTTP API."""
    import uvicorn

    from amem.interface.api import create_app

    settings = Settings()
    setup_logging(settings.log_level, settings.log_file)
    uvicorn.run(
        create_app(settings),
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_config=None,
    )


async def _counts(settings: Settings) -> tuple[str, dict[str, int]]:
    store = await select_store(settings)
    try:
        counts = {name: await store.count(name) for name in COLLECTIONS}
    finally:
        await store.close()
    return store.mode, counts


@app.command()
def status():
    """Show the active storage backend and record counts."""
    settings = Settings()
    setup_logging(settings.log_level, settings.log_file)

    console.print("[bold]Assistant Memory Status[/bold]\n")
    console.print(f"Configured mode: {settings.storage_mode}")

    try:
        mode, counts = run_async(_counts(settings))
    except StorageError as e:
        console.print(f"[red]✗ Storage unavailable: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"Active backend: [green]{mode}[/green]")
    if mode == "json":
        console.print(f"Data directory: {settings.json_storage_path.resolve()}")

    table = Table(title="Records")
    table.add_column("Collection")
    table.add_column("Count", justify="right")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)


@app.command()
def init():
    """Create the data directory and, in database mode, the indexes."""
    settings = Settings()
    setup_logging(settings.log_level, settings.log_file)

    console.print("[bold]Initializing Assistant Memory...[/bold]\n")

    settings.ensure_directories()
    console.print(f"  ✓ Data directory: {settings.json_storage_path}")

    if settings.storage_mode == "json" or not settings.mongodb_uri:
        console.print("  [dim]MongoDB not configured, skipping indexes[/dim]")
        return

    async def _indexes() -> None:
        # connect() ensures the indexes
        store = await MongoStore.connect(
            settings.mongodb_uri,
            settings.mongodb_database,
            timeout_ms=settings.mongodb_timeout_ms,
        )
        await store.close()

    try:
        run_async(_indexes())
        console.print("  ✓ MongoDB indexes ensured")
    except StorageError as e:
        console.print(f"  [yellow]⚠ MongoDB index setup skipped: {e}[/yellow]")
        if settings.storage_mode == "database":
            raise typer.Exit(code=1)

    console.print("\n[green]✓ Initialization complete![/green]")


if __name__ == "__main__":
    app()
