import asyncio
import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from carefinder.config import Config
from carefinder.logging import UVICORN_LOG_CONFIG, configure_logging

console = Console()


def _require_config(ctx) -> Config:
    if "config_error" in ctx.obj:
        console.print(f"[red]Error:[/red] {ctx.obj['config_error']}")
        raise SystemExit(1)
    return ctx.obj["config"]


@click.group(invoke_without_command=True)
@click.pass_context
def main(ctx):
    """carefinder - hybrid counseling-center recommendations"""
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = Config()
    except ValueError as e:
        # Only fail if we're running a command that needs config
        ctx.obj["config_error"] = str(e)

    if ctx.invoked_subcommand is None:
        console.print("[bold]carefinder[/bold] - hybrid counseling-center recommendations\n")
        console.print("Run [cyan]carefinder serve[/cyan] to start the server.")
        console.print("\nUse [cyan]carefinder --help[/cyan] for all commands.")


@main.command()
@click.pass_context
def status(ctx):
    """Show configuration and dependency health."""
    config = _require_config(ctx)

    console.print("[bold]carefinder status[/bold]")
    console.print()
    console.print(f"Embedding model: {config.embedding_model} (dim {config.embedding.dim})")
    console.print(f"Vector index: [cyan]{config.qdrant_url}[/cyan] / {config.collection_name}")
    console.print(f"Cache: [cyan]{config.cache_path}[/cyan]")
    console.print(f"Rule scorer: [cyan]{config.rule_scorer_url}[/cyan]")
    console.print(f"Default weights: embedding {config.default_embedding_weight}, rule {config.default_rule_weight}")
    if not config.openai_api_key:
        console.print("[yellow]OPENAI_API_KEY not set: recommendations will be rule-based only[/yellow]")
    console.print()

    health = asyncio.run(_health(config))
    table = Table(title="Components")
    table.add_column("Component")
    table.add_column("Status")
    for name, component in health["components"].items():
        color = "green" if component["status"] == "healthy" else "red"
        table.add_row(name, f"[{color}]{component['status']}[/{color}]")
    console.print(table)


async def _health(config: Config) -> dict:
    from carefinder.server.runtime import Runtime

    runtime = Runtime(config)
    await runtime.connect()
    try:
        return await runtime.health()
    finally:
        await runtime.close()


@main.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8000, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.pass_context
def serve(ctx, host: str, port: int, reload: bool):
    """Start the recommendation API server."""
    _require_config(ctx)

    import uvicorn

    console.print(f"[bold]carefinder server[/bold] starting on http://{host}:{port}")
    console.print("[dim]Press Ctrl+C to stop[/dim]")
    console.print()

    uvicorn.run(
        "carefinder.server.app:app",
        host=host,
        port=port,
        reload=reload,
        log_config=UVICORN_LOG_CONFIG,
    )


@main.command("init-index")
@click.option("--recreate", is_flag=True, help="Delete the collection first")
@click.pass_context
def init_index(ctx, recreate: bool):
    """Create the vector collection if it does not exist."""
    config = _require_config(ctx)
    configure_logging(config.log_level)
    created = asyncio.run(_init_index(config, recreate))
    if created:
        console.print(f"[green]Created collection[/green] {config.collection_name} (dim {config.embedding.dim})")
    else:
        console.print(f"Collection {config.collection_name} already exists")


async def _init_index(config: Config, recreate: bool) -> bool:
    from carefinder.server.runtime import Runtime

    runtime = Runtime(config)
    try:
        if recreate and await runtime.store.collection_exists():
            await runtime.store.delete_collection()
        return await runtime.store.ensure_collection()
    finally:
        await runtime.close()


@main.command()
@click.argument("centers_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--ids", default=None, help="Comma-separated center ids to (re)index")
@click.pass_context
def index(ctx, centers_file: Path, ids: str | None):
    """Embed centers from a JSON file into the vector index."""
    config = _require_config(ctx)
    if not config.openai_api_key:
        console.print("[red]Error:[/red] OPENAI_API_KEY is required for indexing")
        raise SystemExit(1)
    configure_logging(config.log_level)

    from carefinder.indexing import Center

    rows = json.loads(centers_file.read_text(encoding="utf-8"))
    centers = [Center.model_validate(row) for row in rows]
    if ids:
        wanted = {i.strip() for i in ids.split(",") if i.strip()}
        centers = [c for c in centers if str(c.id) in wanted]

    report = asyncio.run(_index(config, centers))
    console.print(f"[bold]Indexed[/bold] {report.processed}/{report.total} centers in {report.duration}s")
    if report.failed:
        console.print(f"[yellow]{report.failed} failed[/yellow]")
        raise SystemExit(1)


async def _index(config: Config, centers):
    from carefinder.server.runtime import Runtime

    runtime = Runtime(config)
    await runtime.connect()
    try:
        await runtime.store.ensure_collection()
        return await runtime.indexer().run(centers)
    finally:
        await runtime.close()


@main.command("clear-cache")
@click.pass_context
def clear_cache(ctx):
    """Delete cached recommendation responses and embeddings."""
    config = _require_config(ctx)
    deleted = asyncio.run(_clear_cache(config))
    console.print(f"Cleared {deleted['recommendations']} responses and {deleted['embeddings']} embeddings")


async def _clear_cache(config: Config) -> dict:
    from carefinder.server.runtime import Runtime

    runtime = Runtime(config)
    await runtime.connect()
    try:
        return await runtime.clear_caches()
    finally:
        await runtime.close()


if __name__ == "__main__":
    main()
