"""
CLI for the offline asset cache.

Commands:
    fleetcache fetch URL - Request an asset through the interceptor
    fleetcache cache-model PATH - Push a .glb/.usdz file into both stores
    fleetcache get-blob ID - Read a stored model back
    fleetcache caches - List cache generations and their entries
    fleetcache serve - Run the HTTP front
    fleetcache config - Show current configuration
    fleetcache version - Print version
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fleetcache import __version__
from fleetcache.config import Settings, clear_settings_cache, get_settings
from fleetcache.exceptions import FleetCacheError
from fleetcache.logging import setup_logging
from fleetcache.page.models import ModelCacheClient
from fleetcache.worker.service import open_worker

app = typer.Typer(
    name="fleetcache",
    help="Offline cache for fleet maintenance assets (3D models, images, app shell)",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _load_settings() -> Settings:
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'fleetcache config' to see what's wrong."
        )
        raise typer.Exit(1)
    setup_logging(settings.LOG_LEVEL)
    return settings


def _fail(error: FleetCacheError) -> NoReturn:
    error_console.print(f"[red]Error:[/red] {error}")
    raise typer.Exit(1)


@app.command()
def fetch(
    url: Annotated[str, typer.Argument(help="URL, path or asset_<id> key")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the body to this file"),
    ] = None,
    no_precache: Annotated[
        bool,
        typer.Option("--no-precache", help="Skip install-time precaching"),
    ] = False,
) -> None:
    """Request an asset through the cache -> network -> placeholder waterfall."""
    settings = _load_settings()

    async def run() -> tuple[int, str, bytes]:
        worker = await open_worker(settings, precache=not no_precache)
        try:
            response = await worker.on_fetch(url)
            return response.status, response.content_type, response.read()
        finally:
            await worker.close()

    try:
        status, content_type, body = asyncio.run(run())
    except FleetCacheError as e:
        _fail(e)

    if output is not None:
        output.write_bytes(body)
        console.print(f"[bold]Saved to:[/bold] {output}")
    console.print(f"[green]{status}[/green] {content_type} ({len(body)} bytes)")


@app.command("cache-model")
def cache_model(
    path: Annotated[Path, typer.Argument(help="A .glb or .usdz file", exists=True, dir_okay=False)],
    model_id: Annotated[
        Optional[str],
        typer.Option("--model-id", "-m", help="Id to store the model under"),
    ] = None,
) -> None:
    """Push a 3D model file into the blob store and the asset cache."""
    settings = _load_settings()

    async def run():
        worker = await open_worker(settings, precache=False)
        try:
            client = ModelCacheClient(worker.messenger, worker.blob_store)
            model, task = client.cache_model_file(path, model_id=model_id)
            result = await task if task is not None else None
            return model, result
        finally:
            await worker.close()

    try:
        model, result = asyncio.run(run())
    except FleetCacheError as e:
        _fail(e)

    if result is None or not result.ok:
        error_console.print(
            f"[red]Error:[/red] caching failed: {result.error if result else 'not accepted'}"
        )
        raise typer.Exit(1)

    console.print(
        Panel(
            f"[bold]Model ID:[/bold] {model.id}\n"
            f"[bold]File:[/bold] {model.file_name}\n"
            f"[bold]Type:[/bold] {model.file_type.value} ({model.content_type})\n"
            f"[bold]Blob store:[/bold] {'yes' if result.blob_stored else 'no'}\n"
            f"[bold]Asset cache:[/bold] {'yes' if result.asset_cached else 'no'}",
            title="[bold green]Model cached[/bold green]",
            border_style="green",
        )
    )


@app.command("get-blob")
def get_blob(
    model_id: Annotated[str, typer.Argument(help="Model id")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the blob to this file"),
    ] = None,
) -> None:
    """Read a model back from the blob store."""
    settings = _load_settings()

    async def run():
        worker = await open_worker(settings, precache=False)
        try:
            return await worker.blob_store.get(model_id)
        finally:
            await worker.close()

    try:
        record = asyncio.run(run())
    except FleetCacheError as e:
        _fail(e)

    if record is None:
        error_console.print(f"[yellow]No blob stored for {model_id}[/yellow]")
        raise typer.Exit(1)

    if output is not None:
        output.write_bytes(record.blob)
        console.print(f"[bold]Saved to:[/bold] {output}")
    console.print(
        f"{record.id}: {record.content_type}, {record.size} bytes, "
        f"stored {record.stored_at.isoformat()}"
    )


@app.command()
def caches() -> None:
    """List cache generations and the entries of the active one."""
    settings = _load_settings()

    async def run():
        worker = await open_worker(settings, precache=False)
        try:
            return await worker.storage.keys(), await worker.cache.entries()
        finally:
            await worker.close()

    try:
        names, entries = asyncio.run(run())
    except FleetCacheError as e:
        _fail(e)

    console.print(f"[bold]Generations:[/bold] {', '.join(names) or '-'}")

    table = Table(title=f"Cache {settings.CACHE_GENERATION}", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Status")
    table.add_column("Content-Type")
    table.add_column("Size", justify="right")
    for entry in entries:
        table.add_row(entry.key, str(entry.status), entry.content_type, str(entry.size))
    console.print(table)


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Bind port")] = 8000,
) -> None:
    """Run the HTTP front for the asset worker."""
    import uvicorn

    from fleetcache.api.server import create_app

    settings = _load_settings()
    uvicorn.run(create_app(settings=settings), host=host, port=port, log_level="info")


@app.command()
def config() -> None:
    """Show current configuration."""
    console.print()
    console.print("[bold]fleetcache Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()
    if settings is None:
        error_console.print("[red]Configuration is invalid or incomplete.[/red]")
        error_console.print()
        error_console.print("Check these environment variables:")
        error_console.print("  - CACHE_GENERATION (non-blank, no whitespace)")
        error_console.print("  - ORIGIN (http:// or https:// URL)")
        error_console.print("  - PLACEHOLDER_URL (must be listed in PRECACHE_URLS)")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"fleetcache version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
