import asyncio
import logging
import os

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from pocketlite.catalog import SchemaCatalog
from pocketlite.config import ServerConfig
from pocketlite.db.migrations import initialize_metadata_tables, install_sample_data
from pocketlite.db.storage import SQLiteStorage
from pocketlite.errors import PocketliteError
from pocketlite.metrics import configure_logging

app = typer.Typer(help="pocketlite - PocketBase-compatible API over SQLite")
console = Console()
logger = logging.getLogger("pocketlite.cli")


async def _init_database(db_path: str, sample: bool) -> dict[str, int]:
    storage = SQLiteStorage(db_path)
    try:
        await initialize_metadata_tables(storage)
        if sample:
            return await install_sample_data(storage)
        return {}
    finally:
        storage.close()


async def _load_catalog(db_path: str) -> SchemaCatalog:
    storage = SQLiteStorage(db_path)
    try:
        catalog = SchemaCatalog(storage)
        await catalog.initialize()
        return catalog
    finally:
        storage.close()


@app.command()
def init(
    db_path: str = typer.Argument(..., help="Path to SQLite database"),
    sample: bool = typer.Option(False, "--sample", help="Install the demo collections"),
):
    """Create the metadata tables, optionally with sample data."""
    try:
        counts = asyncio.run(_init_database(db_path, sample))
    except PocketliteError as e:
        console.print(f"[red]Initialization failed: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]Initialized {db_path}[/green]")
    for collection, count in counts.items():
        console.print(f"  {collection}: {count} records")


@app.command()
def serve(
    db_path: str = typer.Argument(..., help="Path to SQLite database"),
    host: str = typer.Option("0.0.0.0", help="Host to bind to"),
    port: int = typer.Option(8090, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
):
    """Start the HTTP server."""
    os.environ["POCKETLITE_DB_PATH"] = db_path
    config = ServerConfig.from_env()
    configure_logging(config.log_level, json_format=config.log_json)

    console.print(f"[bold green]Starting pocketlite on http://{host}:{port}[/bold green]")
    uvicorn.run(
        "pocketlite.server:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_config=None,
    )


@app.command()
def collections(db_path: str = typer.Argument(..., help="Path to SQLite database")):
    """List collections and their relation fields."""
    try:
        catalog = asyncio.run(_load_catalog(db_path))
    except PocketliteError as e:
        console.print(f"[red]Could not load collections: {e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title="Collections")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Fields")
    table.add_column("Relations")

    for schema in catalog.list_collections():
        relations = []
        for name in catalog.list_relation_fields(schema.name):
            info = catalog.get_relation(schema.name, name)
            target = info.collection if info else "?"
            relations.append(f"{name} -> {target}{'[]' if info and info.multiple else ''}")
        table.add_row(
            schema.id,
            schema.name,
            ", ".join(f.name for f in schema.fields),
            "\n".join(relations) or "-",
        )
    console.print(table)


if __name__ == "__main__":
    app()
