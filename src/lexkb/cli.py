"""Command line interface for LexKB."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from lexkb.config import AppConfig, load_config
from lexkb.embedding.encoder import create_embedder, embedder_identity
from lexkb.errors import LexKBError
from lexkb.index.factory import create_knowledge_base
from lexkb.index.storage import CacheStore
from lexkb.models import GenerationInfo

console = Console()
app = typer.Typer(help="LexKB - bilingual knowledge-base semantic search")

KB_OPTION = typer.Option(None, "--kb", help="Knowledge-base document root")
CACHE_OPTION = typer.Option(None, "--cache", help="Index cache file")
BACKEND_OPTION = typer.Option(None, "--backend", help="Embedding backend: local, openai or stub")
MODEL_OPTION = typer.Option(None, "--model", help="Sentence-transformer model name")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Verbose logging")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _load(
    kb: Optional[Path],
    cache: Optional[Path],
    backend: Optional[str],
    model: Optional[str],
    **extra: object,
) -> AppConfig:
    try:
        return load_config(
            kb_dir=kb, cache_path=cache, embedding_backend=backend, model_name=model, **extra
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _print_info(info: GenerationInfo) -> None:
    console.print(
        f"Index [bold]{info.source}[/bold]: {info.file_count} files, "
        f"{info.chunk_count} chunks (version {info.version}, built {info.built_at or '-'})"
    )


@app.command()
def index(
    kb: Optional[Path] = KB_OPTION,
    cache: Optional[Path] = CACHE_OPTION,
    backend: Optional[str] = BACKEND_OPTION,
    model: Optional[str] = MODEL_OPTION,
    chunk_chars: Optional[int] = typer.Option(None, help="Chunk size in characters"),
    overlap: Optional[int] = typer.Option(None, help="Chunk overlap"),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Rebuild the index from the document root and rewrite the cache."""
    _setup_logging(verbose)
    config = _load(kb, cache, backend, model, chunk_chars=chunk_chars, overlap=overlap)
    knowledge_base = create_knowledge_base(config)

    console.print(f"Indexing [bold]{knowledge_base.service.kb_dir}[/bold]...")
    try:
        info = asyncio.run(knowledge_base.service.reindex())
    except LexKBError as exc:
        console.print(f"[red]Indexing failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    _print_info(info)
    console.print(f"Cache written to [bold]{knowledge_base.store.path}[/bold]")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    kb: Optional[Path] = KB_OPTION,
    cache: Optional[Path] = CACHE_OPTION,
    backend: Optional[str] = BACKEND_OPTION,
    model: Optional[str] = MODEL_OPTION,
    top_k: Optional[int] = typer.Option(None, help="Number of files to display"),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Search the knowledge base, loading or building the index first."""
    _setup_logging(verbose)
    config = _load(kb, cache, backend, model)
    knowledge_base = create_knowledge_base(config)

    try:
        results = asyncio.run(knowledge_base.searcher.search(query, top_k=top_k))
    except LexKBError as exc:
        console.print(f"[red]Search failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Document")
    table.add_column("Jurisdiction")
    table.add_column("Summary")

    for hit in results:
        summary = (hit.summary.get("en") or hit.summary.get("ar") or "").replace("\n", " ")
        table.add_row(f"{hit.score:.4f}", str(hit.title), str(hit.jurisdiction or ""), summary[:180])

    console.print(table)


@app.command()
def status(
    cache: Optional[Path] = CACHE_OPTION,
    backend: Optional[str] = BACKEND_OPTION,
    model: Optional[str] = MODEL_OPTION,
) -> None:
    """Show what the index cache file holds."""
    config = _load(None, cache, backend, model)
    # Backends load their models lazily, so this only reads the identity.
    store = CacheStore(
        config.resolve_cache_path(Path.cwd()),
        version=config.cache_version,
        embedder=embedder_identity(create_embedder(config)),
    )
    summary = store.describe()
    if summary is None:
        console.print(f"[yellow]No index cache at {store.path}.[/yellow]")
        return
    if "error" in summary:
        console.print(f"[red]Unreadable cache {store.path}:[/red] {summary['error']}")
        return

    state = "[green]current[/green]" if summary["current"] else "[yellow]stale[/yellow]"
    console.print(
        f"{store.path}: version {summary['version']} ({state}), "
        f"embedder {summary['embedder'] or '-'}, built {summary['builtAt'] or '-'}, "
        f"{summary['fileCount']} files, {summary['chunkCount']} chunks"
    )


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(3000, help="Server port"),
    kb: Optional[Path] = KB_OPTION,
    cache: Optional[Path] = CACHE_OPTION,
    backend: Optional[str] = BACKEND_OPTION,
    model: Optional[str] = MODEL_OPTION,
) -> None:
    """Start the HTTP API."""
    import uvicorn

    from lexkb.web.app import create_app

    config = _load(kb, cache, backend, model)
    if not config.admin_key:
        console.print("[yellow]Warning: no admin key configured, reindexing is disabled.[/yellow]")

    console.print(f"Starting LexKB on http://{host}:{port} (documents: {config.kb_dir})")
    uvicorn.run(
        create_app(config),
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    app()
