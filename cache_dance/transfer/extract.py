"""Cache extraction: BuildKit cache mount -> durable directory.

A job walks through the TransferState steps in order: reset its scratch
directory and write the buildstamp, render the dancefile, build it into
``<scratch>/output``, move ``output/cache`` over the cache source, and
finally release the scratch directory and any docker objects. Cleanup runs
whatever the outcome; a failed build never touches the destination.
"""

from __future__ import annotations

from pathlib import Path

from cache_dance.errors import CacheTransferError, RelocationError
from cache_dance.logs import TransferLogger, get_transfer_logger
from cache_dance.transfer.dancefile import (
    OUTPUT_DIR_NAME,
    render_batch_extract_definition,
    render_extract_definition,
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
from cache_dance.transfer.relocate import move_into_place
from cache_dance.transfer.runner import BuilderStrategy
from cache_dance.types import Direction, TransferResult, TransferState


async def extract_cache(
    mount: CacheMount,
    scratch_root: Path,
    image: str,
    strategy: BuilderStrategy,
    use_sudo: bool = True,
    log: TransferLogger | None = None,
) -> TransferResult:
    """Extract one cache mount into its source directory.

    Args:
        mount: Cache mount to extract.
        scratch_root: Directory holding per-job scratch directories.
        image: Utility image the dancefile runs in.
        strategy: Builder strategy producing the filesystem tree.
        use_sudo: Use sudo when clearing the old destination.
        log: Log handle; the job id is pushed on its group stack.

    Returns:
        TransferResult in the CLEANED_UP state.

    Raises:
        BuilderExecutionError: If the build fails.
        RelocationError: If the extracted tree cannot be moved into place.
    """
    job = new_job(scratch_root, Direction.EXTRACT, create_job_id(mount.source))
    log = (log or get_transfer_logger(__name__)).group(job.job_id)
    result = TransferResult(
        source=mount.source, direction=Direction.EXTRACT, job_id=job.job_id
    )
    log.info(
        "Extracting cache mount '%s' (%s) into '%s'",
        mount.mount_id,
        mount.target,
        mount.source,
    )

    try:
        reset_scratch_dir(job.scratch_dir)
        stamp = write_buildstamp(job.scratch_dir)
        log.verbose("Build timestamp written for cache busting: %s", stamp)
        result.state = TransferState.SCRATCH_PREPARED

        definition = render_extract_definition(image, mount)
        result.state = TransferState.DEFINITION_READY

        await strategy.build(
            definition, job.scratch_dir, job, output_dir=job.output_dir, log=log
        )
        result.state = TransferState.BUILD_EXECUTED

        await move_into_place(
            job.output_dir / OUTPUT_DIR_NAME,
            mount.source_path,
            use_sudo=use_sudo,
            log=log,
        )
        result.state = TransferState.RELOCATED
    except Exception as e:
        log.error("Cache extraction failed for '%s': %s", mount.source, e)
        result.state = TransferState.FAILED
        raise
    finally:
        await cleanup_job(job, strategy, log)

    result.state = TransferState.CLEANED_UP
    log.info("Cache extraction completed for '%s'", mount.source)
    return result


async def extract_batch(
    mounts: list[CacheMount],
    scratch_root: Path,
    image: str,
    strategy: BuilderStrategy,
    use_sudo: bool = True,
    log: TransferLogger | None = None,
) -> list[TransferResult]:
    """Extract all mounts with a single build.

    Each mount lands in its own ``/cache/<key>`` directory of the output and
    is moved into place independently; one failing move does not stop the
    others.

    Raises:
        ConfigError: If two mounts share a staging directory.
        BuilderExecutionError: If the build fails (no destination is touched).
        CacheTransferError: If some mounts could not be moved into place.
    """
    job = new_job(scratch_root, Direction.EXTRACT, batch_job_id(Direction.EXTRACT))
    log = (log or get_transfer_logger(__name__)).group(job.job_id)
    results = {
        m.source: TransferResult(
            source=m.source, direction=Direction.EXTRACT, job_id=job.job_id
        )
        for m in mounts
    }
    failures: dict[str, BaseException] = {}
    log.info("Extracting %d cache mount(s) in one build", len(mounts))

    def advance(state: TransferState) -> None:
        for r in results.values():
            if r.state != TransferState.FAILED:
                r.state = state

    try:
        keys = staging_keys(mounts)
        reset_scratch_dir(job.scratch_dir)
        stamp = write_buildstamp(job.scratch_dir)
        log.verbose("Build timestamp written for cache busting: %s", stamp)
        advance(TransferState.SCRATCH_PREPARED)

        definition = render_batch_extract_definition(image, mounts)
        advance(TransferState.DEFINITION_READY)

        await strategy.build(
            definition, job.scratch_dir, job, output_dir=job.output_dir, log=log
        )
        advance(TransferState.BUILD_EXECUTED)

        for mount in mounts:
            key = keys[mount.source]
            try:
                await move_into_place(
                    job.output_dir / OUTPUT_DIR_NAME / key,
                    mount.source_path,
                    use_sudo=use_sudo,
                    log=log.group(key),
                )
            except RelocationError as e:
                log.error("Cache extraction failed for '%s': %s", mount.source, e)
                results[mount.source].state = TransferState.FAILED
                failures[mount.source] = e
                continue
            results[mount.source].state = TransferState.RELOCATED
    except Exception as e:
        log.error("Batched cache extraction failed: %s", e)
        for r in results.values():
            r.state = TransferState.FAILED
        raise
    finally:
        await cleanup_job(job, strategy, log)

    if failures:
        raise CacheTransferError(failures)

    advance(TransferState.CLEANED_UP)
    log.info("Batched cache extraction completed")
    return list(results.values())


__all__ = ["extract_batch", "extract_cache"]
