"""CLI entry point for codefig."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from codefig.cache import ContentCache, resolve_cache_root
from codefig.config import CodefigConfig, load_config
from codefig.config.loader import DEFAULT_CONFIG_TEMPLATE
from codefig.engines import BUILTIN_ENGINES, EngineRegistry
from codefig.errors import DiagramError
from codefig.host import MediaBag
from codefig.log import setup_logging
from codefig.markdown import MarkdownDocument
from codefig.pipeline import DiagramPipeline

app = typer.Typer(
    name="codefig",
    help="Render diagram code blocks (Graphviz, PlantUML, Mermaid, TikZ, ...) into figures.",
)

config_app = typer.Typer(help="Manage codefig configuration.")
app.add_typer(config_app, name="config")

cache_app = typer.Typer(help="Inspect and clear the image cache.")
app.add_typer(cache_app, name="cache")

err_console = Console(stderr=True)

# Global state
_config: CodefigConfig | None = None


def _get_config() -> CodefigConfig:
    if _config is None:
        return load_config()
    return _config


@app.callback()
def main(
    config: Annotated[
        str | None, typer.Option("--config", "-c", help="Path to codefig.yaml")
    ] = None,
) -> None:
    """Global options."""
    global _config
    try:
        _config = load_config(config)
    except ValueError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(2)
    setup_logging(_config.log_level, _config.log_format)


@app.command()
def render(
    input: str = typer.Argument(..., help="Markdown file to process ('-' for stdin)"),
    output: Annotated[
        str | None, typer.Option("--output", "-o", help="Write the document here instead of stdout")
    ] = None,
    to: Annotated[
        str | None, typer.Option("--to", "-t", help="Target document format (html, latex, ...)")
    ] = None,
    assets: Annotated[
        str | None, typer.Option("--assets", help="Directory for rendered images")
    ] = None,
    cache: Annotated[
        bool | None, typer.Option("--cache/--no-cache", help="Use the image cache")
    ] = None,
    cache_dir: Annotated[
        str | None, typer.Option("--cache-dir", help="Image cache directory")
    ] = None,
    on_error: Annotated[
        str | None, typer.Option("--on-error", help="warn (keep code block) or abort")
    ] = None,
) -> None:
    """Replace diagram code blocks in a Markdown file with rendered images."""
    cfg = _apply_overrides(_get_config(), to=to, cache=cache, cache_dir=cache_dir, on_error=on_error)

    try:
        text = sys.stdin.read() if input == "-" else Path(input).read_text(encoding="utf-8")
    except OSError as e:
        err_console.print(f"[red]Error:[/red] cannot read {escape(input)}: {escape(str(e))}")
        raise typer.Exit(1)

    out_dir = Path(output).parent if output else Path.cwd()
    assets_dir = Path(assets) if assets else out_dir / "figures"
    asset_prefix = Path(os.path.relpath(assets_dir.resolve(), out_dir.resolve())).as_posix()

    media = MediaBag()
    pipeline = DiagramPipeline(cfg, assets=media)
    document = MarkdownDocument.from_text(text)

    try:
        result = document.render(pipeline, asset_prefix=asset_prefix)
    except DiagramError as e:
        err_console.print(f"[red]Render failed:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    try:
        media.write_to(assets_dir)
        if output:
            Path(output).write_text(result, encoding="utf-8")
        else:
            sys.stdout.write(result)
    except (OSError, ValueError) as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    report = pipeline.report
    err_console.print(
        Panel(
            f"[dim]Blocks:[/dim]     {len(document.blocks)}\n"
            f"[dim]Converted:[/dim]  {report.converted} ({report.cached} from cache)\n"
            f"[dim]Skipped:[/dim]    {report.skipped}\n"
            f"[dim]Assets:[/dim]     {assets_dir}",
            title="codefig",
            border_style="yellow" if report.errors else "green",
        )
    )


def _apply_overrides(
    cfg: CodefigConfig,
    *,
    to: str | None = None,
    cache: bool | None = None,
    cache_dir: str | None = None,
    on_error: str | None = None,
) -> CodefigConfig:
    """Layer command-line flags over the loaded configuration."""
    update: dict = {}
    if to:
        update["format"] = to
    if on_error:
        if on_error not in ("warn", "abort"):
            err_console.print(f"[red]Error:[/red] --on-error must be 'warn' or 'abort', not {on_error!r}")
            raise typer.Exit(2)
        update["on_error"] = on_error
    cache_update: dict = {}
    if cache is not None:
        cache_update["enabled"] = cache
    if cache_dir:
        cache_update["directory"] = cache_dir
    if cache_update:
        update["cache"] = cfg.cache.model_copy(update=cache_update)
    return cfg.model_copy(update=update) if update else cfg


@app.command()
def engines() -> None:
    """List available diagram engines."""
    cfg = _get_config()
    registry = EngineRegistry(cfg)

    table = Table(title="Diagram engines")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Executable", style="green")
    table.add_column("Output types")
    table.add_column("Comment", justify="center")
    table.add_column("Source", style="yellow")

    for spec in sorted(registry.loaded(), key=lambda s: s.name):
        table.add_row(
            spec.name,
            spec.engine.execpath,
            ", ".join(sorted(spec.mime_types)),
            spec.line_comment_start or "-",
            "built-in" if spec.name in BUILTIN_ENGINES else "plugin",
        )
    for name in sorted(set(registry.discover()) - {s.name for s in registry.loaded()}):
        table.add_row(name, "-", "-", "-", "entry point")
    rprint(table)


@cache_app.command("path")
def cache_path() -> None:
    """Show where rendered images are cached."""
    cfg = _get_config()
    root = resolve_cache_root(cfg.cache)
    if root is None:
        rprint("[yellow]No cache directory could be determined.[/yellow]")
        raise typer.Exit(1)
    state = "enabled" if cfg.cache.enabled else "disabled"
    rprint(f"{root} [dim]({state})[/dim]")


@cache_app.command("clear")
def cache_clear() -> None:
    """Delete every cached image."""
    cfg = _get_config()
    root = resolve_cache_root(cfg.cache)
    if root is None:
        rprint("[yellow]No cache directory could be determined.[/yellow]")
        raise typer.Exit(1)
    removed = ContentCache(root).clear()
    rprint(f"[green]Removed[/green] {removed} cached image(s) from {root}")


@config_app.command("show")
def config_show() -> None:
    """Show current resolved configuration."""
    cfg = _get_config()
    rprint(Syntax(yaml.dump(cfg.model_dump(), default_flow_style=False), "yaml"))


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite existing config"),
) -> None:
    """Create default codefig.yaml in current directory."""
    target = Path("codefig.yaml")
    if target.exists() and not force:
        rprint("[yellow]codefig.yaml already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE)
    rprint(f"[green]Created[/green] {target}")


if __name__ == "__main__":
    app()
