"""Child process primitives.

Thin asyncio wrappers around the three ways cache-dance talks to external
tools: run a command, run a command fed from a string on stdin, and run
two commands connected by a pipe. Output is inherited so builder progress
shows up in the job log.

A non-zero exit or a failure to start raises BuilderExecutionError. If the
awaiting task is cancelled (for example by a deadline) the children are
killed before the cancellation propagates.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import subprocess
from collections.abc import Sequence
from pathlib import Path

from cache_dance.errors import BuilderExecutionError
from cache_dance.logs import TransferLogger, get_transfer_logger

_default_log = get_transfer_logger(__name__)


def format_command(cmd: Sequence[str]) -> str:
    return shlex.join(cmd)


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass


async def _wait_success(
    proc: asyncio.subprocess.Process,
    command: str,
    log: TransferLogger,
    stdin_data: bytes | None = None,
) -> None:
    try:
        if stdin_data is None:
            returncode = await proc.wait()
        else:
            await proc.communicate(stdin_data)
            returncode = proc.returncode if proc.returncode is not None else -1
    except asyncio.CancelledError:
        _kill(proc)
        await proc.wait()
        log.warning("Killed %s after cancellation", command)
        raise

    if returncode != 0:
        raise BuilderExecutionError(
            f"{command} exited with code {returncode}",
            exit_code=returncode,
            command=command,
        )
    log.verbose("Process exited successfully: %s", command)


async def run(
    cmd: Sequence[str],
    log: TransferLogger | None = None,
    cwd: Path | None = None,
    quiet: bool = False,
) -> None:
    """Run a command to completion.

    Args:
        cmd: Command and arguments.
        log: Log handle.
        cwd: Working directory.
        quiet: Discard the command's output instead of inheriting it.

    Raises:
        BuilderExecutionError: If the command fails or cannot start.
    """
    log = log or _default_log
    command = format_command(cmd)
    log.verbose("Executing command: %s", command)
    output = subprocess.DEVNULL if quiet else None
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd, cwd=cwd, stdout=output, stderr=output
        )
    except OSError as e:
        raise BuilderExecutionError(
            f"Failed to start {command}: {e}",
            command=command,
            code="execution_error",
        ) from e
    await _wait_success(proc, command, log)


async def run_with_input(
    cmd: Sequence[str],
    text: str,
    log: TransferLogger | None = None,
    cwd: Path | None = None,
) -> None:
    """Run a command with ``text`` written to its stdin.

    Raises:
        BuilderExecutionError: If the command fails or cannot start.
    """
    log = log or _default_log
    command = format_command(cmd)
    log.verbose("Executing command with stdin: %s", command)
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd, cwd=cwd, stdin=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise BuilderExecutionError(
            f"Failed to start {command}: {e}",
            command=command,
            code="execution_error",
        ) from e
    await _wait_success(proc, command, log, stdin_data=text.encode("utf-8"))


async def run_piped(
    producer_cmd: Sequence[str],
    consumer_cmd: Sequence[str],
    log: TransferLogger | None = None,
) -> None:
    """Run ``producer | consumer`` and wait for both sides.

    Raises:
        BuilderExecutionError: If either side fails or cannot start.
    """
    log = log or _default_log
    producer_str = format_command(producer_cmd)
    consumer_str = format_command(consumer_cmd)
    log.verbose("Executing piped command: %s | %s", producer_str, consumer_str)

    read_fd, write_fd = os.pipe()
    try:
        try:
            producer = await asyncio.create_subprocess_exec(
                *producer_cmd, stdout=write_fd
            )
        except OSError as e:
            raise BuilderExecutionError(
                f"Failed to start {producer_str}: {e}",
                command=producer_str,
                code="execution_error",
            ) from e
        try:
            consumer = await asyncio.create_subprocess_exec(
                *consumer_cmd, stdin=read_fd
            )
        except OSError as e:
            _kill(producer)
            await producer.wait()
            raise BuilderExecutionError(
                f"Failed to start {consumer_str}: {e}",
                command=consumer_str,
                code="execution_error",
            ) from e
    finally:
        # The children hold their own copies; keeping ours open would stop
        # the consumer from ever seeing EOF.
        os.close(read_fd)
        os.close(write_fd)

    results = await asyncio.gather(
        _wait_success(producer, producer_str, log),
        _wait_success(consumer, consumer_str, log),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    log.verbose("Piped command succeeded: %s | %s", producer_str, consumer_str)


async def run_best_effort(
    cmd: Sequence[str],
    log: TransferLogger | None = None,
) -> bool:
    """Run an idempotent teardown command, reporting instead of raising.

    Returns:
        True if the command succeeded.
    """
    log = log or _default_log
    try:
        await run(cmd, log=log, quiet=True)
    except BuilderExecutionError as e:
        log.verbose("Ignoring failed best-effort command: %s", e)
        return False
    return True


__all__ = [
    "format_command",
    "run",
    "run_best_effort",
    "run_piped",
    "run_with_input",
]
