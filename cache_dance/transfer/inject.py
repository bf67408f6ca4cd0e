"""Cache injection: durable directory -> BuildKit cache mount.

The cache source directory is handed to the build as a named build context
and bind mounted next to the cache mount; the job scratch directory is the
main context and only carries the buildstamp. Once the build has copied the
source into the cache mount the directory has served its purpose and is
removed. Failing to remove it only produces a warning since the cache mount
is already populated.
"""

from __future__ import annotations

from pathlib import Path

from cache_dance.logs import TransferLogger, get_transfer_logger
from cache_dance.transfer.dancefile import (
    batch_inject_contexts,
    inject_contexts,
    render_batch_inject_definition,
    render_inject_definition,
)
from cache_dance.transfer.jobs import (
    batch_job_id,
    cleanup_job,
    create_job_id,
    new_job,
    reset_scratch_dir,
    write_buildstamp,
)
from cache_dance.transfer.models import CacheMount
from cache_dance.transfer.mounts import staging_keys
from cache_dance.transfer.relocate import discard_source
from cache_dance.transfer.runner import BuilderStrategy
from cache_dance.types import Direction, TransferResult, TransferState


async def inject_cache(
    mount: CacheMount,
    scratch_root: Path,
    image: str,
    strategy: BuilderStrategy,
    use_sudo: bool = True,
    log: TransferLogger | None = None,
) -> TransferResult:
    """Inject one cache source directory into its cache mount.

    Args:
        mount: Cache mount to fill.
        scratch_root: Directory holding per-job scratch directories.
        image: Utility image the dancefile runs in.
        strategy: Builder strategy running the build.
        use_sudo: Use sudo when removing the consumed source directory.
        log: Log handle; the job id is pushed on its group stack.

    Returns:
        TransferResult in the CLEANED_UP state, with a warning if the source
        directory could not be removed.

    Raises:
        BuilderExecutionError: If the build fails.
    """
    job = new_job(scratch_root, Direction.INJECT, create_job_id(mount.source))
    log = (log or get_transfer_logger(__name__)).group(job.job_id)
    result = TransferResult(
        source=mount.source, direction=Direction.INJECT, job_id=job.job_id
    )
    source = mount.source_path
    log.info(
        "Injecting '%s' into cache mount '%s' (%s)",
        mount.source,
        mount.mount_id,
        mount.target,
    )

    try:
        reset_scratch_dir(job.scratch_dir)
        source.mkdir(parents=True, exist_ok=True)
        log.verbose("Working directory prepared at '%s'", source)
        stamp = write_buildstamp(job.scratch_dir)
        log.verbose("Build timestamp written for cache busting: %s", stamp)
        result.state = TransferState.SCRATCH_PREPARED

        definition = render_inject_definition(image, mount)
        result.state = TransferState.DEFINITION_READY

        await strategy.build(
            definition,
            job.scratch_dir,
            job,
            build_contexts=inject_contexts(mount),
            log=log,
        )
        result.state = TransferState.BUILD_EXECUTED

        warning = await discard_source(source, use_sudo=use_sudo, log=log)
        if warning:
            result.warnings.append(warning)
        result.state = TransferState.RELOCATED
    except Exception as e:
        log.error("Cache injection failed for '%s': %s", mount.source, e)
        result.state = TransferState.FAILED
        raise
    finally:
        await cleanup_job(job, strategy, log)

    result.state = TransferState.CLEANED_UP
    log.info("Cache injection completed for '%s'", mount.source)
    return result


async def inject_batch(
    mounts: list[CacheMount],
    scratch_root: Path,
    image: str,
    strategy: BuilderStrategy,
    use_sudo: bool = True,
    log: TransferLogger | None = None,
) -> list[TransferResult]:
    """Inject all mounts with a single build.

    The scratch directory is the build context and carries the buildstamp;
    every source directory is passed as its own named build context.

    Raises:
        ConfigError: If two mounts share a staging directory.
        BuilderExecutionError: If the build fails.
    """
    job = new_job(scratch_root, Direction.INJECT, batch_job_id(Direction.INJECT))
    log = (log or get_transfer_logger(__name__)).group(job.job_id)
    results = {
        m.source: TransferResult(
            source=m.source, direction=Direction.INJECT, job_id=job.job_id
        )
        for m in mounts
    }
    log.info("Injecting %d cache mount(s) in one build", len(mounts))

    def advance(state: TransferState) -> None:
        for r in results.values():
            r.state = state

    try:
        staging_keys(mounts)
        reset_scratch_dir(job.scratch_dir)
        for mount in mounts:
            mount.source_path.mkdir(parents=True, exist_ok=True)
        stamp = write_buildstamp(job.scratch_dir)
        log.verbose("Build timestamp written for cache busting: %s", stamp)
        advance(TransferState.SCRATCH_PREPARED)

        definition = render_batch_inject_definition(image, mounts)
        contexts = batch_inject_contexts(mounts)
        advance(TransferState.DEFINITION_READY)

        await strategy.build(
            definition, job.scratch_dir, job, build_contexts=contexts, log=log
        )
        advance(TransferState.BUILD_EXECUTED)

        for mount in mounts:
            warning = await discard_source(mount.source_path, use_sudo=use_sudo, log=log)
            if warning:
                results[mount.source].warnings.append(warning)
        advance(TransferState.RELOCATED)
    except Exception as e:
        log.error("Batched cache injection failed: %s", e)
        advance(TransferState.FAILED)
        raise
    finally:
        await cleanup_job(job, strategy, log)

    advance(TransferState.CLEANED_UP)
    log.info("Batched cache injection completed")
    return list(results.values())


__all__ = ["inject_batch", "inject_cache"]
