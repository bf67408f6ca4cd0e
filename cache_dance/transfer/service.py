"""Transfer service: fan transfers out over all configured cache mounts.

This module provides the high-level transfer API:
- transfer_caches(): run extract or inject for a list of mounts
- extract_caches() / inject_caches(): the same, driven by Settings

In per-mount mode every mount is an independent job with its own scratch
directory; all jobs run concurrently and are allowed to settle before any
failure is reported, so no sibling is abandoned halfway through its
cleanup. In batch mode one build handles every mount.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path

from cache_dance.config import Settings, load_cache_mounts
from cache_dance.errors import CacheTransferError, TransferTimeoutError
from cache_dance.logs import TransferLogger, get_transfer_logger
from cache_dance.transfer.cachemap import ensure_unique_sources
from cache_dance.transfer.extract import extract_batch, extract_cache
from cache_dance.transfer.inject import inject_batch, inject_cache
from cache_dance.transfer.models import CacheMount
from cache_dance.transfer.mounts import staging_keys
from cache_dance.transfer.runner import BuilderStrategy, get_strategy
from cache_dance.types import Direction, JobMode, TransferResult

SingleTransfer = Callable[..., Awaitable[TransferResult]]
BatchTransfer = Callable[..., Awaitable[list[TransferResult]]]

_SINGLE: dict[Direction, SingleTransfer] = {
    Direction.EXTRACT: extract_cache,
    Direction.INJECT: inject_cache,
}
_BATCH: dict[Direction, BatchTransfer] = {
    Direction.EXTRACT: extract_batch,
    Direction.INJECT: inject_batch,
}


async def _run_per_mount(
    mounts: list[CacheMount],
    direction: Direction,
    scratch_root: Path,
    image: str,
    strategy: BuilderStrategy,
    use_sudo: bool,
    log: TransferLogger,
) -> list[TransferResult]:
    operation = _SINGLE[direction]
    outcomes = await asyncio.gather(
        *(
            operation(
                mount,
                scratch_root=scratch_root,
                image=image,
                strategy=strategy,
                use_sudo=use_sudo,
                log=log,
            )
            for mount in mounts
        ),
        return_exceptions=True,
    )

    results: list[TransferResult] = []
    failures: dict[str, BaseException] = {}
    for mount, outcome in zip(mounts, outcomes):
        if isinstance(outcome, TransferResult):
            results.append(outcome)
            continue
        if not isinstance(outcome, Exception):
            raise outcome
        log.warning("Cache %s failed for '%s': %s", direction.value, mount.source, outcome)
        failures[mount.source] = outcome

    if failures:
        raise CacheTransferError(failures)
    return results


async def _run_batch(
    mounts: list[CacheMount],
    direction: Direction,
    scratch_root: Path,
    image: str,
    strategy: BuilderStrategy,
    use_sudo: bool,
    log: TransferLogger,
) -> list[TransferResult]:
    operation = _BATCH[direction]
    try:
        return await operation(
            mounts,
            scratch_root=scratch_root,
            image=image,
            strategy=strategy,
            use_sudo=use_sudo,
            log=log,
        )
    except CacheTransferError:
        raise
    except Exception as e:
        # Nothing was produced, so every mount failed with the build
        raise CacheTransferError({m.source: e for m in mounts}) from e


async def transfer_caches(
    mounts: list[CacheMount],
    direction: Direction,
    scratch_root: Path,
    image: str,
    strategy: BuilderStrategy,
    job_mode: JobMode = JobMode.PER_MOUNT,
    use_sudo: bool = True,
    timeout: float | None = None,
    log: TransferLogger | None = None,
) -> list[TransferResult]:
    """Extract or inject every mount.

    Args:
        mounts: Cache mounts; sources must be unique.
        direction: Extract or inject.
        scratch_root: Directory holding the job scratch directories.
        image: Utility image the dancefiles run in.
        strategy: Builder strategy.
        job_mode: One job per mount, or one batched job.
        use_sudo: Use sudo for removing cache directories.
        timeout: Deadline in seconds for the whole transfer.
        log: Log handle.

    Returns:
        One TransferResult per mount.

    Raises:
        ConfigError: If sources repeat or mounts collide in batch mode;
            raised before any process is started.
        CacheTransferError: If any job failed, after all jobs settled.
        TransferTimeoutError: If the deadline passed; running builder
            processes are killed.
    """
    log = log or get_transfer_logger(__name__)
    ensure_unique_sources(mounts)
    if not mounts:
        log.info("No cache mounts configured, nothing to %s", direction.value)
        return []
    if job_mode == JobMode.BATCH:
        staging_keys(mounts)

    log.info(
        "Running cache %s for %d mount(s) (%s, %s output)",
        direction.value,
        len(mounts),
        job_mode.value,
        strategy.name.value,
    )
    runner = _run_batch if job_mode == JobMode.BATCH else _run_per_mount
    work = runner(mounts, direction, scratch_root, image, strategy, use_sudo, log)
    if timeout is None:
        return await work
    try:
        return await asyncio.wait_for(work, timeout)
    except asyncio.TimeoutError:
        raise TransferTimeoutError(timeout) from None


def _strategy_for(settings: Settings) -> BuilderStrategy:
    return get_strategy(
        settings.output_strategy,
        builder=settings.builder,
        definition_input=settings.definition_input,
    )


async def extract_caches(
    settings: Settings,
    log: TransferLogger | None = None,
) -> list[TransferResult]:
    """Extract every configured cache mount, unless extraction is skipped."""
    log = log or get_transfer_logger(__name__)
    if settings.skip_extraction:
        log.info("skip-extraction is set. Skipping extraction step...")
        return []
    return await transfer_caches(
        load_cache_mounts(settings),
        Direction.EXTRACT,
        scratch_root=settings.scratch_dir,
        image=settings.utility_image,
        strategy=_strategy_for(settings),
        job_mode=settings.job_mode,
        use_sudo=settings.use_sudo,
        timeout=settings.timeout,
        log=log,
    )


async def inject_caches(
    settings: Settings,
    log: TransferLogger | None = None,
) -> list[TransferResult]:
    """Inject every configured cache source into its cache mount."""
    return await transfer_caches(
        load_cache_mounts(settings),
        Direction.INJECT,
        scratch_root=settings.scratch_dir,
        image=settings.utility_image,
        strategy=_strategy_for(settings),
        job_mode=settings.job_mode,
        use_sudo=settings.use_sudo,
        timeout=settings.timeout,
        log=log,
    )


__all__ = ["extract_caches", "inject_caches", "transfer_caches"]
