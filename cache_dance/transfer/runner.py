"""Builder driver for running dancefiles with docker buildx.

This module handles:
- Composing ``docker buildx build`` commands
- Passing the dancefile by file or on stdin
- Recovering the built filesystem, either through a local export or by
  loading an image and streaming a container's files out through tar

Both strategies share one contract: after ``build(..., output_dir=d)``
returns, ``d/cache`` holds the exported tree.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from cache_dance.errors import ConfigError
from cache_dance.logs import TransferLogger, get_transfer_logger
from cache_dance.transfer import process
from cache_dance.transfer.dancefile import OUTPUT_DIR_NAME
from cache_dance.transfer.models import Job
from cache_dance.types import DefinitionInput, OutputStrategy

DOCKER = "docker"
TAR = "tar"
# Scratch images have no entrypoint; docker create still needs a command
PLACEHOLDER_COMMAND = "noop"


def compose_build_command(
    builder: str,
    definition_arg: str,
    context_dir: Path,
    build_contexts: Mapping[str, str] | None = None,
    output_args: list[str] | None = None,
) -> list[str]:
    """Compose a ``docker buildx build`` command.

    Args:
        builder: Buildx builder name.
        definition_arg: Dancefile path, or ``-`` for stdin.
        context_dir: Build context directory.
        build_contexts: Extra named contexts (name -> directory).
        output_args: Output selection arguments.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [DOCKER, "buildx", "build", "--builder", builder, "-f", definition_arg]
    for name, path in (build_contexts or {}).items():
        cmd.extend(["--build-context", f"{name}={path}"])
    if output_args:
        cmd.extend(output_args)
    cmd.append(str(context_dir))
    return cmd


class BuilderStrategy(Protocol):
    """Produces a filesystem tree (or just runs the build) from a dancefile."""

    name: OutputStrategy

    async def build(
        self,
        definition: str,
        context_dir: Path,
        job: Job,
        output_dir: Path | None = None,
        build_contexts: Mapping[str, str] | None = None,
        log: TransferLogger | None = None,
    ) -> None: ...

    async def cleanup(self, job: Job, log: TransferLogger | None = None) -> None: ...


class _BuildxStrategy:
    """Shared buildx invocation for both strategies."""

    name: OutputStrategy

    def __init__(
        self,
        builder: str = "default",
        definition_input: DefinitionInput = DefinitionInput.FILE,
    ) -> None:
        self.builder = builder
        self.definition_input = definition_input

    async def _invoke_buildx(
        self,
        definition: str,
        context_dir: Path,
        job: Job,
        build_contexts: Mapping[str, str] | None,
        output_args: list[str],
        log: TransferLogger,
    ) -> None:
        if self.definition_input == DefinitionInput.STDIN:
            cmd = compose_build_command(
                self.builder, "-", context_dir, build_contexts, output_args
            )
            log.info("Running docker buildx with builder '%s'", self.builder)
            await process.run_with_input(cmd, definition, log=log)
            return

        job.definition_path.parent.mkdir(parents=True, exist_ok=True)
        job.definition_path.write_text(definition, encoding="utf-8")
        log.verbose("Dancefile written to '%s':\n%s", job.definition_path, definition)
        cmd = compose_build_command(
            self.builder,
            str(job.definition_path),
            context_dir,
            build_contexts,
            output_args,
        )
        log.info("Running docker buildx with builder '%s'", self.builder)
        await process.run(cmd, log=log)


class LocalExportStrategy(_BuildxStrategy):
    """Let buildx write the final stage straight into a local directory."""

    name = OutputStrategy.LOCAL

    async def build(
        self,
        definition: str,
        context_dir: Path,
        job: Job,
        output_dir: Path | None = None,
        build_contexts: Mapping[str, str] | None = None,
        log: TransferLogger | None = None,
    ) -> None:
        log = log or get_transfer_logger(__name__)
        output_args: list[str] = []
        if output_dir is not None:
            output_dir.mkdir(parents=True, exist_ok=True)
            output_args = ["--output", f"type=local,dest={output_dir}"]
        await self._invoke_buildx(
            definition, context_dir, job, build_contexts, output_args, log
        )

    async def cleanup(self, job: Job, log: TransferLogger | None = None) -> None:
        """Nothing outside the scratch directory is created."""


class ImageRoundTripStrategy(_BuildxStrategy):
    """Load the result as an image and copy its files out of a container.

    For builders that cannot export locally. The image tag and container
    name come from the job, so concurrent jobs never share them.
    """

    name = OutputStrategy.IMAGE

    async def build(
        self,
        definition: str,
        context_dir: Path,
        job: Job,
        output_dir: Path | None = None,
        build_contexts: Mapping[str, str] | None = None,
        log: TransferLogger | None = None,
    ) -> None:
        log = log or get_transfer_logger(__name__)
        if not job.image_tag or not job.container_name:
            raise ConfigError(
                f"Job {job.job_id} has no image tag or container name",
            )

        await self._invoke_buildx(
            definition,
            context_dir,
            job,
            build_contexts,
            ["--tag", job.image_tag, "--load"],
            log,
        )
        if output_dir is None:
            return

        output_dir.mkdir(parents=True, exist_ok=True)
        # Leftovers from an earlier failed run
        await self._remove_container(job.container_name, log)
        await process.run(
            [
                DOCKER,
                "create",
                "--name",
                job.container_name,
                job.image_tag,
                PLACEHOLDER_COMMAND,
            ],
            log=log,
            quiet=True,
        )
        log.verbose(
            "Copying /%s out of container '%s'", OUTPUT_DIR_NAME, job.container_name
        )
        await process.run_piped(
            [DOCKER, "cp", f"{job.container_name}:/{OUTPUT_DIR_NAME}", "-"],
            [TAR, "-x", "-C", str(output_dir)],
            log=log,
        )
        await self._remove_container(job.container_name, log)

    async def _remove_container(self, name: str, log: TransferLogger) -> bool:
        return await process.run_best_effort([DOCKER, "rm", "-f", name], log=log)

    async def cleanup(self, job: Job, log: TransferLogger | None = None) -> None:
        log = log or get_transfer_logger(__name__)
        if job.container_name:
            await self._remove_container(job.container_name, log)
        if job.image_tag:
            removed = await process.run_best_effort(
                [DOCKER, "image", "rm", "-f", job.image_tag], log=log
            )
            if not removed:
                log.verbose("Image '%s' was not removed", job.image_tag)


def get_strategy(
    name: OutputStrategy | str,
    builder: str = "default",
    definition_input: DefinitionInput | str = DefinitionInput.FILE,
) -> BuilderStrategy:
    """Select the builder strategy named by configuration.

    Raises:
        ConfigError: If the name is unknown.
    """
    try:
        strategy = OutputStrategy(name)
        feed = DefinitionInput(definition_input)
    except ValueError as e:
        raise ConfigError(str(e)) from None

    if strategy == OutputStrategy.IMAGE:
        return ImageRoundTripStrategy(builder=builder, definition_input=feed)
    return LocalExportStrategy(builder=builder, definition_input=feed)


__all__ = [
    "BuilderStrategy",
    "ImageRoundTripStrategy",
    "LocalExportStrategy",
    "compose_build_command",
    "get_strategy",
]
