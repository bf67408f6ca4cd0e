"""Thin CLI wrapper for cache_dance.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import asyncio
import os
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console

from cache_dance import __version__
from cache_dance.config import (
    Settings,
    apply_overrides,
    get_settings,
    load_cache_mounts,
    print_settings_json,
)
from cache_dance.errors import CacheDanceError, CacheTransferError
from cache_dance.logs import configure_logging, get_transfer_logger, log_group
from cache_dance.types import Direction, JobMode, OutputStrategy, TransferResult

app = typer.Typer(
    name="cache-dance",
    help="Cache Dance - save and restore BuildKit cache mounts",
    no_args_is_help=True,
)
console = Console()

CacheMapOption = Annotated[
    str | None,
    typer.Option("--cache-map", help="Cache map as JSON (source -> target/options)"),
]
CacheMapFileOption = Annotated[
    Path | None,
    typer.Option("--cache-map-file", help="JSON or YAML file holding the cache map"),
]
ScratchDirOption = Annotated[
    Path | None,
    typer.Option("--scratch-dir", help="Root directory for job scratch space"),
]
UtilityImageOption = Annotated[
    str | None,
    typer.Option("--utility-image", help="Image the dancefiles run in"),
]
BuilderOption = Annotated[
    str | None,
    typer.Option("--builder", help="docker buildx builder name"),
]
JobModeOption = Annotated[
    JobMode | None,
    typer.Option("--job-mode", help="One build per mount or one batched build"),
]
OutputStrategyOption = Annotated[
    OutputStrategy | None,
    typer.Option("--output-strategy", help="Recover output via local export or image"),
]
StdinOption = Annotated[
    bool | None,
    typer.Option(
        "--stdin-dancefile/--file-dancefile",
        help="Pipe dancefiles to buildx instead of writing them to disk",
    ),
]
SudoOption = Annotated[
    bool | None,
    typer.Option("--sudo/--no-sudo", help="Remove old cache directories with sudo"),
]
TimeoutOption = Annotated[
    float | None,
    typer.Option("--timeout", help="Deadline in seconds for the whole transfer"),
]
VerboseOption = Annotated[
    bool | None,
    typer.Option("--verbose", "-v", help="Verbose logging"),
]
SkipExtractionOption = Annotated[
    bool | None,
    typer.Option("--skip-extraction", help="Do nothing on extraction"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"cache-dance version {__version__}")
        raise typer.Exit()


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
) -> None:
    """Cache Dance - save and restore BuildKit cache mounts."""


def _load_settings(
    cache_map: str | None = None,
    cache_map_file: Path | None = None,
    scratch_dir: Path | None = None,
    utility_image: str | None = None,
    builder: str | None = None,
    job_mode: JobMode | None = None,
    output_strategy: OutputStrategy | None = None,
    stdin_dancefile: bool | None = None,
    use_sudo: bool | None = None,
    timeout: float | None = None,
    verbose: bool | None = None,
    skip_extraction: bool | None = None,
) -> Settings:
    definition_input = None
    if stdin_dancefile is not None:
        definition_input = "stdin" if stdin_dancefile else "file"
    try:
        return apply_overrides(
            get_settings(),
            cache_map=cache_map,
            cache_map_file=cache_map_file,
            scratch_dir=scratch_dir,
            utility_image=utility_image,
            builder=builder,
            job_mode=job_mode,
            output_strategy=output_strategy,
            definition_input=definition_input,
            use_sudo=use_sudo,
            timeout=timeout,
            verbose=verbose,
            skip_extraction=skip_extraction,
        )
    except ValidationError as e:
        console.print("[red]Invalid configuration:[/red]")
        console.print(str(e))
        raise typer.Exit(code=1) from None


def _print_results(results: list[TransferResult]) -> None:
    for r in results:
        console.print(f"  [green]{r.direction.value}[/green] {r.source} ({r.job_id})")
        for warning in r.warnings:
            console.print(f"    [yellow]Warning: {warning}[/yellow]")


def _execute(direction: Direction, settings: Settings) -> None:
    """Run one direction, exiting non-zero on failure."""
    from cache_dance.transfer.service import extract_caches, inject_caches

    configure_logging(settings.log_level, verbose=settings.verbose)
    log = get_transfer_logger()
    operation = extract_caches if direction == Direction.EXTRACT else inject_caches

    log.info("Starting cache %s workflow...", direction.value)
    try:
        with log_group(f"cache-{direction.value}", log) as group_log:
            results = asyncio.run(operation(settings, log=group_log))
    except CacheDanceError as e:
        log.error("%s", e)
        log.debug("Failure details", exc_info=True)
        console.print(f"[red]Error: {e}[/red]")
        if isinstance(e, CacheTransferError):
            for source in e.sources:
                console.print(f"  - {source}: {e.failures[source]}")
        raise typer.Exit(code=1) from None

    _print_results(results)


@app.command()
def extract(
    cache_map: CacheMapOption = None,
    cache_map_file: CacheMapFileOption = None,
    scratch_dir: ScratchDirOption = None,
    utility_image: UtilityImageOption = None,
    builder: BuilderOption = None,
    job_mode: JobModeOption = None,
    output_strategy: OutputStrategyOption = None,
    stdin_dancefile: StdinOption = None,
    use_sudo: SudoOption = None,
    timeout: TimeoutOption = None,
    verbose: VerboseOption = None,
    skip_extraction: SkipExtractionOption = None,
) -> None:
    """Copy BuildKit cache mounts out into their source directories."""
    settings = _load_settings(
        cache_map=cache_map,
        cache_map_file=cache_map_file,
        scratch_dir=scratch_dir,
        utility_image=utility_image,
        builder=builder,
        job_mode=job_mode,
        output_strategy=output_strategy,
        stdin_dancefile=stdin_dancefile,
        use_sudo=use_sudo,
        timeout=timeout,
        verbose=verbose,
        skip_extraction=skip_extraction,
    )
    _execute(Direction.EXTRACT, settings)


@app.command()
def inject(
    cache_map: CacheMapOption = None,
    cache_map_file: CacheMapFileOption = None,
    scratch_dir: ScratchDirOption = None,
    utility_image: UtilityImageOption = None,
    builder: BuilderOption = None,
    job_mode: JobModeOption = None,
    output_strategy: OutputStrategyOption = None,
    stdin_dancefile: StdinOption = None,
    use_sudo: SudoOption = None,
    timeout: TimeoutOption = None,
    verbose: VerboseOption = None,
) -> None:
    """Copy cache source directories into their BuildKit cache mounts."""
    settings = _load_settings(
        cache_map=cache_map,
        cache_map_file=cache_map_file,
        scratch_dir=scratch_dir,
        utility_image=utility_image,
        builder=builder,
        job_mode=job_mode,
        output_strategy=output_strategy,
        stdin_dancefile=stdin_dancefile,
        use_sudo=use_sudo,
        timeout=timeout,
        verbose=verbose,
    )
    _execute(Direction.INJECT, settings)


@app.command()
def action(
    cache_map: CacheMapOption = None,
    cache_map_file: CacheMapFileOption = None,
    scratch_dir: ScratchDirOption = None,
    utility_image: UtilityImageOption = None,
    builder: BuilderOption = None,
    job_mode: JobModeOption = None,
    verbose: VerboseOption = None,
    skip_extraction: SkipExtractionOption = None,
) -> None:
    """GitHub Actions entrypoint.

    The main step injects caches and records POST=true in $GITHUB_STATE;
    the post step (STATE_POST=true) extracts them again.
    """
    settings = _load_settings(
        cache_map=cache_map,
        cache_map_file=cache_map_file,
        scratch_dir=scratch_dir,
        utility_image=utility_image,
        builder=builder,
        job_mode=job_mode,
        verbose=verbose,
        skip_extraction=skip_extraction,
    )

    if os.environ.get("STATE_POST") == "true":
        _execute(Direction.EXTRACT, settings)
        return

    state_file = os.environ.get("GITHUB_STATE")
    if state_file:
        with open(state_file, "a", encoding="utf-8") as f:
            f.write(f"POST=true{os.linesep}")
    _execute(Direction.INJECT, settings)


@app.command()
def dancefile(
    direction: Annotated[Direction, typer.Argument(help="extract or inject")],
    cache_map: CacheMapOption = None,
    cache_map_file: CacheMapFileOption = None,
    utility_image: UtilityImageOption = None,
    job_mode: JobModeOption = None,
) -> None:
    """Print the dancefiles a transfer would build, without running them."""
    from cache_dance.transfer import dancefile as renderers

    settings = _load_settings(
        cache_map=cache_map,
        cache_map_file=cache_map_file,
        utility_image=utility_image,
        job_mode=job_mode,
    )
    image = settings.utility_image
    try:
        mounts = load_cache_mounts(settings)
        if settings.job_mode == JobMode.BATCH:
            if direction == Direction.EXTRACT:
                text = renderers.render_batch_extract_definition(image, mounts)
            else:
                text = renderers.render_batch_inject_definition(image, mounts)
            console.print(text, markup=False, highlight=False, soft_wrap=True)
            return

        for mount in mounts:
            if direction == Direction.EXTRACT:
                text = renderers.render_extract_definition(image, mount)
            else:
                text = renderers.render_inject_definition(image, mount)
            console.print(f"# {mount.source}", markup=False, highlight=False)
            console.print(text, markup=False, highlight=False, soft_wrap=True)
    except CacheDanceError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None


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
        console.print(
            print_settings_json(settings),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
        return

    def show(value: object) -> str:
        return "(not set)" if value is None else str(value)

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Cache map:[/bold]")
    console.print(f"  Cache map:           {show(settings.cache_map)}", markup=False)
    console.print(f"  Cache map file:      {show(settings.cache_map_file)}")
    console.print()
    console.print("[bold]Builder:[/bold]")
    console.print(f"  Scratch directory:   {settings.scratch_dir}")
    console.print(f"  Utility image:       {settings.utility_image}")
    console.print(f"  Builder:             {settings.builder}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Job mode:            {settings.job_mode.value}")
    console.print(f"  Output strategy:     {settings.output_strategy.value}")
    console.print(f"  Dancefile input:     {settings.definition_input.value}")
    console.print(f"  Use sudo:            {settings.use_sudo}")
    console.print(f"  Skip extraction:     {settings.skip_extraction}")
    console.print(f"  Timeout:             {show(settings.timeout)}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Verbose:             {settings.verbose}")


if __name__ == "__main__":
    app()
