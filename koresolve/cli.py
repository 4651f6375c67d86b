"""Thin CLI wrapper for koresolve.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from koresolve import __version__
from koresolve.config import FALLBACK_BASE_IMAGE, get_settings, print_settings_json
from koresolve.errors import KoResolveError

app = typer.Typer(
    name="koresolve",
    help="koresolve - resolve build targets and base images for container builds",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"koresolve version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records through Rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """koresolve - resolve build targets and base images for container builds."""
    configure_logging("DEBUG" if verbose else get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
    else:
        timeout_display = (
            f"{settings.resolve_timeout}" if settings.resolve_timeout else "(wait forever)"
        )
        insecure_display = ", ".join(settings.insecure_registries) or "(none)"
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Base images:[/bold]")
        console.print(
            f"  Default base image:  {settings.default_base_image or FALLBACK_BASE_IMAGE}"
        )
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Max resolves:        {settings.max_concurrent_resolves}")
        console.print()
        console.print("[bold]Registry:[/bold]")
        console.print(f"  Request timeout:     {settings.registry_timeout}")
        console.print(f"  Retries:             {settings.registry_retries}")
        console.print(f"  Backoff:             {settings.registry_backoff}")
        console.print(f"  Insecure registries: {insecure_display}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Resolve timeout:     {timeout_display}")


@app.command()
def targets(
    working_dir: Annotated[
        Path,
        typer.Option("--working-dir", "-C", help="Directory containing .ko.yaml"),
    ] = Path("."),
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List configured build targets by import path."""
    from koresolve.service import BuildOptions, load_targets

    try:
        _, registry = load_targets(BuildOptions(working_directory=working_dir))
    except KoResolveError as e:
        err_console.print(f"[red]Error ({e.code}): {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        output = {
            import_path: registry.targets[import_path].model_dump(exclude_defaults=True)
            for import_path in registry
        }
        typer.echo(json.dumps(output, indent=2))
        return

    if not len(registry):
        console.print("[yellow]No builds configured[/yellow]")
        return

    table = Table(title="Build targets")
    table.add_column("Import path", style="cyan")
    table.add_column("ID")
    table.add_column("Dir")
    table.add_column("Main")
    for import_path in registry:
        build = registry.targets[import_path]
        table.add_row(import_path, build.id, build.dir, build.main)
    console.print(table)


@app.command()
def resolve(
    import_paths: Annotated[
        list[str] | None,
        typer.Argument(help="Import paths to resolve (default: all configured builds)"),
    ] = None,
    working_dir: Annotated[
        Path,
        typer.Option("--working-dir", "-C", help="Directory containing .ko.yaml"),
    ] = Path("."),
    base_image: Annotated[
        str | None,
        typer.Option("--base-image", "-B", help="Base image for every target"),
    ] = None,
    platforms: Annotated[
        list[str] | None,
        typer.Option(
            "--platform",
            "-p",
            help="Platform to build for, e.g. linux/arm64 or 'all' (can be repeated)",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Resolve and pin the base image for build targets."""
    from koresolve.images.registry import HttpRegistryClient
    from koresolve.service import (
        BuildOptions,
        create_resolver,
        effective_platform,
        load_targets,
        resolve_all,
    )

    settings = get_settings()
    options = BuildOptions(
        working_directory=working_dir,
        base_image_override=base_image,
        platforms=tuple(
            entry for value in platforms or [] for entry in value.split(",") if entry
        ),
    )

    try:
        project, registry = load_targets(options)
        platform = effective_platform(options, project)
    except KoResolveError as e:
        err_console.print(f"[red]Error ({e.code}): {e}[/red]")
        raise typer.Exit(code=1) from None

    paths = list(import_paths) if import_paths else list(registry)
    if not paths:
        err_console.print("[yellow]No builds configured and no import paths given[/yellow]")
        raise typer.Exit(code=1)

    with HttpRegistryClient(
        timeout=settings.registry_timeout,
        insecure_registries=settings.insecure_registries,
    ) as client:
        resolver = create_resolver(client, options, project, settings)
        outcomes = resolve_all(resolver, paths, platform, settings)

    if json_output:
        output = [
            {
                "import_path": o.import_path,
                "status": o.status.value,
                "reference": o.reference,
                "digest": o.digest,
                "media_type": o.media_type,
                "error_code": o.error_code,
                "message": o.message,
                **o.details,
            }
            for o in outcomes
        ]
        typer.echo(json.dumps(output, indent=2))
    else:
        for o in outcomes:
            if o.success:
                console.print(f"[green]✓ {o.import_path}[/green]")
                console.print(f"  Base: {o.reference}")
                if o.digest != (o.reference or "").rpartition("@")[2]:
                    console.print(f"  Selected: {o.digest}")
            else:
                console.print(f"[red]✗ {o.import_path} ({o.error_code}): {o.message}[/red]")

    if any(not o.success for o in outcomes):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
