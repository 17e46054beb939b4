"""
CLI interface for notemancy.

Usage:
    notemancy init --vault notes=~/notesy --default notes
    notemancy scan
    notemancy index
    notemancy search "query text"
    notemancy related projects/plan.md
"""

import atexit
import json
import os
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import KnowledgeBase
from .config import DEFAULT_CONFIG_DIR, VaultConfig, load_or_create_config, save_config
from .errors import KbError, log_exception
from .logging_config import configure_logging


configure_logging(verbose=os.environ.get("NOTEMANCY_VERBOSE") == "1")


_config_dir_override: Optional[Path] = None
_json_output = False


def _verbose_callback(value: bool):
    if value:
        configure_logging(verbose=True)


def _config_dir_callback(value: Optional[Path]):
    global _config_dir_override
    if value is not None:
        _config_dir_override = value


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _config_dir() -> Path:
    return (_config_dir_override or DEFAULT_CONFIG_DIR).expanduser()


app = typer.Typer(
    name="notemancy",
    help="Index markdown vaults for full-text and semantic search.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    config_dir: Annotated[Optional[Path], typer.Option(
        "--config-dir", "-c",
        envvar="NOTEMANCY_CONFIG_DIR",
        help="Configuration directory (default: ~/.notemancy/)",
        callback=_config_dir_callback,
        is_eager=True,
    )] = None,
):
    """Index markdown vaults for full-text and semantic search."""


LimitOption = Annotated[
    int,
    typer.Option(
        "--limit", "-n",
        help="Maximum results to return"
    )
]


def _get_kb() -> KnowledgeBase:
    """Open the knowledge base, exiting cleanly on failure."""
    try:
        kb = KnowledgeBase.open(_config_dir())
    except (KbError, OSError, ValueError) as e:
        _fail(e, "open")
    atexit.register(kb.close)
    return kb


def _fail(exc: Exception, context: str):
    log_path = log_exception(exc, context, _config_dir())
    typer.echo(f"Error: {exc}", err=True)
    typer.echo(f"Details logged to {log_path}", err=True)
    raise typer.Exit(1)


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def init(
    vault: Annotated[Optional[list[str]], typer.Option(
        "--vault",
        help="Vault as NAME=PATH (repeatable; paths of the same name accumulate)"
    )] = None,
    default: Annotated[Optional[list[str]], typer.Option(
        "--default",
        help="Mark a vault as default (repeatable)"
    )] = None,
    indicator: Annotated[Optional[str], typer.Option(
        "--indicator",
        help="Path segment after which virtual paths begin"
    )] = None,
):
    """Create or update the configuration file."""
    config = load_or_create_config(_config_dir())
    if indicator:
        config.indicator = indicator
    for spec in vault or []:
        name, sep, path = spec.partition("=")
        if not sep or not name or not path:
            typer.echo(f"Error: --vault expects NAME=PATH, got {spec!r}", err=True)
            raise typer.Exit(1)
        existing = config.get_vault(name)
        if existing is None:
            existing = VaultConfig(name=name)
            config.vaults.append(existing)
        resolved = Path(path).expanduser()
        if resolved not in existing.paths:
            existing.paths.append(resolved)
    for name in default or []:
        target = config.get_vault(name)
        if target is None:
            typer.echo(f"Error: unknown vault {name!r}", err=True)
            raise typer.Exit(1)
        target.default = True
    save_config(config)
    typer.echo(f"Config written to {config.config_path}")


@app.command()
def scan(
    images: Annotated[bool, typer.Option(
        "--images/--no-images",
        help="Also scan image attachments"
    )] = True,
):
    """Scan vaults into the metadata store."""
    kb = _get_kb()
    try:
        documents, attachments = kb.scan(attachments=images)
    except KbError as e:
        _fail(e, "scan")
    if _json_output:
        _echo_json({
            "markdown": {"counts": dict(documents.counts), "errors": documents.errors},
            "image": (
                {"counts": dict(attachments.counts), "errors": attachments.errors}
                if attachments else None
            ),
        })
        return
    typer.echo(documents.summary())
    if attachments is not None:
        typer.echo(attachments.summary())


@app.command()
def cleanup():
    """Remove records of files that no longer exist."""
    kb = _get_kb()
    try:
        removed = kb.cleanup()
    except KbError as e:
        _fail(e, "cleanup")
    if _json_output:
        _echo_json(removed)
        return
    for path in removed:
        typer.echo(f"removed {path}")
    typer.echo(f"{len(removed)} stale records removed.")


@app.command()
def index(
    optimize: Annotated[bool, typer.Option(
        "--optimize",
        help="Rebuild the approximate index after embedding"
    )] = False,
):
    """Embed all markdown documents into the embedding store."""
    kb = _get_kb()

    def _progress(processed: int, succeeded: int, failed: int, total: int) -> None:
        typer.echo(f"\r{processed}/{total} ({failed} failed)", nl=False, err=True)

    try:
        report = kb.index_embeddings(optimize=optimize, on_progress=_progress)
    except KbError as e:
        _fail(e, "index")
    typer.echo("", err=True)
    typer.echo(report.summary())


@app.command()
def fulltext():
    """Rebuild the full-text index."""
    kb = _get_kb()
    try:
        report = kb.rebuild_full_text()
    except KbError as e:
        _fail(e, "fulltext")
    typer.echo(report.summary())


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search query text")],
    limit: LimitOption = 10,
):
    """Full-text search."""
    kb = _get_kb()
    try:
        results = kb.search(query, limit)
    except KbError as e:
        _fail(e, "search")
    if _json_output:
        _echo_json([r.__dict__ for r in results])
        return
    if not results:
        typer.echo("No results.")
        return
    for r in results:
        typer.echo(f"{r.score:6.2f}  {r.title}  ({r.path})")
        if r.snippet:
            typer.echo(f"        {r.snippet}")


def _print_similar(hits) -> None:
    if _json_output:
        _echo_json([
            {"path": h.path, "virtual_path": h.virtual_path, "similarity": h.similarity}
            for h in hits
        ])
        return
    if not hits:
        typer.echo("No results.")
        return
    for h in hits:
        typer.echo(f"{h.similarity:.3f}  {h.virtual_path}  ({h.path})")


@app.command()
def similar(
    text: Annotated[str, typer.Argument(help="Text to find similar documents for")],
    limit: LimitOption = 20,
    threshold: Annotated[Optional[float], typer.Option(
        "--threshold", "-t",
        help="Minimum similarity (default from config)"
    )] = None,
):
    """Semantic similarity search."""
    kb = _get_kb()
    try:
        hits = kb.similarity_search(text, limit=limit, threshold=threshold)
    except KbError as e:
        _fail(e, "similar")
    _print_similar(hits)


@app.command()
def related(
    path: Annotated[str, typer.Argument(help="Physical or virtual path of a document")],
    limit: LimitOption = 20,
    threshold: Annotated[Optional[float], typer.Option(
        "--threshold", "-t",
        help="Minimum similarity (default from config)"
    )] = None,
):
    """Documents related to a given document."""
    kb = _get_kb()
    try:
        hits = kb.find_related(path, limit=limit, threshold=threshold)
    except KbError as e:
        _fail(e, "related")
    _print_similar(hits)


@app.command()
def show(
    virtual_path: Annotated[str, typer.Argument(help="Virtual path of a page")],
):
    """Print a page and its frontmatter."""
    kb = _get_kb()
    try:
        page = kb.get_page_content(virtual_path)
    except KbError as e:
        _fail(e, "show")
    if _json_output:
        _echo_json({"content": page.content, "metadata": page.metadata})
        return
    typer.echo(page.content)


@app.command()
def info():
    """Show store statistics."""
    kb = _get_kb()
    try:
        data = kb.info()
    except KbError as e:
        _fail(e, "info")
    if _json_output:
        _echo_json(data)
        return
    typer.echo(f"Config:      {data['config_dir']}")
    typer.echo(f"Indicator:   {data['indicator']}")
    for vault, count in data["vaults"].items():
        typer.echo(f"Vault {vault}: {count} documents")
    typer.echo(f"Attachments: {data['attachments']}")
    typer.echo(f"Full-text:   {data['full_text_documents']} documents")
    if "embedding_table" in data:
        typer.echo(
            f"Embeddings:  {data.get('embeddings', 0)} ({data['embedding_backend']}, "
            f"{data['embedding_table']})"
        )


def main():
    app()


if __name__ == "__main__":
    main()
