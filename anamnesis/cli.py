"""
Command-line interface for Anamnesis.

Main entry point for indexing, searching and editing a memory root.
"""
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from anamnesis import __version__
from anamnesis.config import MemorySettings, load_settings
from anamnesis.errors import MemoryIndexError
from anamnesis.index import MemoryIndexManager
from anamnesis.logging import configure_logging, parse_level
from anamnesis.migrate import migrate_legacy_memories
from anamnesis.tools import MemoryTools

app = typer.Typer(
    name="anamnesis",
    help="Searchable long-term memory over markdown files",
    no_args_is_help=True,
)

cache_app = typer.Typer(
    name="cache",
    help="Maintain the embedding cache",
)

app.add_typer(cache_app, name="cache")

console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    memory_root: Optional[str] = typer.Option(None, "--root", "-r", help="Memory root directory"),
    log_level: str = typer.Option("warning", "--log-level", help="Log level (debug, info, warning, error)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Shortcut for --log-level debug"),
) -> None:
    """Configure logging and the memory root for every command."""
    try:
        level = logging.DEBUG if verbose else parse_level(log_level)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    configure_logging(level)
    ctx.obj = {"memory_root": memory_root} if memory_root else {}


def _load_settings(ctx: typer.Context) -> MemorySettings:
    return load_settings(**(ctx.obj or {}))


def _build_manager(settings: MemorySettings) -> MemoryIndexManager:
    """Create a manager for one command; commands are short-lived, so no watcher."""
    return MemoryIndexManager(settings=settings, watch=False)


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"Anamnesis version {__version__}")


@app.command()
def sync(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Re-index files even if unchanged"),
) -> None:
    """Index new and changed memory files, drop deleted ones."""
    try:
        with _build_manager(_load_settings(ctx)) as manager:
            report = manager.sync(force=force)
    except MemoryIndexError as e:
        console.print(f"[red]Error syncing memory: {e}[/red]")
        raise typer.Exit(1)

    console.print(
        f"[green]Synced {report.files_seen} file(s):[/green] "
        f"{report.files_indexed} indexed, {report.files_unchanged} unchanged, "
        f"{report.files_removed} removed, {report.files_skipped} skipped "
        f"({report.chunks_embedded} chunk(s) embedded, {report.chunks_cached} from cache)"
    )


@app.command()
def search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Search query"),
    max_results: Optional[int] = typer.Option(None, "--max-results", "-n", help="Maximum results"),
    min_score: Optional[float] = typer.Option(None, "--min-score", help="Minimum fused score"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
) -> None:
    """Search memory with hybrid vector + keyword scoring."""
    try:
        with _build_manager(_load_settings(ctx)) as manager:
            results = manager.search(query, max_results=max_results, min_score=min_score)
    except MemoryIndexError as e:
        console.print(f"[red]Error searching memory: {e}[/red]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps([r.model_dump(by_alias=True) for r in results], indent=2))
        return
    if not results:
        console.print("[yellow]No relevant memories found[/yellow]")
        return

    table = Table(title=f"Memory results for '{query}'")
    table.add_column("Citation", style="magenta")
    table.add_column("Score", justify="right", style="cyan")
    table.add_column("Snippet", style="green")
    for r in results:
        preview = r.snippet.replace("\n", " ")
        preview = (preview[:97] + "...") if len(preview) > 100 else preview
        table.add_row(r.citation, f"{r.score:.3f}", preview)
    console.print(table)


@app.command()
def get(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Memory file path relative to the root"),
    from_line: Optional[int] = typer.Option(None, "--from", help="First line (1-indexed)"),
    lines: Optional[int] = typer.Option(None, "--lines", "-l", help="Number of lines"),
) -> None:
    """Print a memory file or a range of its lines."""
    try:
        with _build_manager(_load_settings(ctx)) as manager:
            result = manager.read_file(path, from_line=from_line, lines=lines)
    except MemoryIndexError as e:
        console.print(f"[red]Error reading memory file: {e}[/red]")
        raise typer.Exit(1)
    typer.echo(result.text)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show index counts and the active embedding model."""
    try:
        with _build_manager(_load_settings(ctx)) as manager:
            info = manager.status()
    except MemoryIndexError as e:
        console.print(f"[red]Error reading index status: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Memory Index")
    table.add_column("Property", style="magenta")
    table.add_column("Value", style="green")
    table.add_row("Memory root", info.memory_root)
    table.add_row("Index", info.index_path)
    table.add_row("Files", str(info.files))
    table.add_row("Chunks", str(info.chunks))
    table.add_row("Cached embeddings", str(info.cached_embeddings))
    table.add_row("Keyword search", "available" if info.fts_available else "unavailable")
    table.add_row("Embedding model", f"{info.provider_model} ({info.provider_dimensions} dims)")
    console.print(table)


@app.command()
def remember(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Text to remember"),
    daily: bool = typer.Option(False, "--daily", "-d", help="Append to today's log instead of MEMORY.md"),
) -> None:
    """Append a memory to MEMORY.md or today's log."""
    try:
        with _build_manager(_load_settings(ctx)) as manager:
            tools = MemoryTools(manager)
            message = tools.daily_memory_write(text) if daily else tools.long_term_memory_write(text)
    except (MemoryIndexError, OSError) as e:
        console.print(f"[red]Error writing memory: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]{message}[/green]")


@app.command()
def migrate(
    ctx: typer.Context,
    legacy_path: Optional[Path] = typer.Argument(None, help="Path to a v1 memories.json"),
) -> None:
    """Migrate a v1 memories.json store into MEMORY.md."""
    settings = _load_settings(ctx)
    source = legacy_path or (Path(settings.legacy_memories_path) if settings.legacy_memories_path else None)
    if source is None:
        console.print("[red]Error: no legacy path given and legacy_memories_path is not configured[/red]")
        raise typer.Exit(1)

    try:
        with _build_manager(settings) as manager:
            migrated = migrate_legacy_memories(source.expanduser(), manager.root, manager.db)
    except MemoryIndexError as e:
        console.print(f"[red]Error migrating memories: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Migrated {migrated} memories[/green]")


@cache_app.command("prune")
def cache_prune(
    ctx: typer.Context,
    max_age_days: Optional[float] = typer.Option(None, "--max-age-days", help="Drop entries older than this"),
    max_entries: Optional[int] = typer.Option(None, "--max-entries", help="Keep at most this many entries"),
) -> None:
    """Evict old embedding cache entries."""
    if max_age_days is None and max_entries is None:
        console.print("[yellow]Nothing to do: pass --max-age-days and/or --max-entries[/yellow]")
        return
    try:
        with _build_manager(_load_settings(ctx)) as manager:
            removed = manager.cache.prune(
                max_age_seconds=max_age_days * 86400 if max_age_days is not None else None,
                max_entries=max_entries,
            )
    except MemoryIndexError as e:
        console.print(f"[red]Error pruning cache: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Removed {removed} cache entries[/green]")


if __name__ == "__main__":
    app()
