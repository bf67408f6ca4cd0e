"""Job identities and scratch directory lifecycle.

Each transfer job owns a scratch directory named after its job id. Job ids
are derived from the cache source so scratch directories and docker object
names stay readable, plus a random suffix so concurrent jobs never collide.
"""

from __future__ import annotations

import logging
import random
import re
import shutil
import string
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from cache_dance.errors import CacheDanceError, CleanupError
from cache_dance.logs import TransferLogger
from cache_dance.transfer.models import Job
from cache_dance.types import Direction

if TYPE_CHECKING:
    from cache_dance.transfer.runner import BuilderStrategy

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 40
SUFFIX_LENGTH = 8
SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
FALLBACK_SLUG = "cache"
BUILDSTAMP_NAME = "buildstamp"

_LEADING_SEPARATORS = re.compile(r"^[\\/]+")
_SEPARATORS = re.compile(r"[\\/]+")
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")


def slugify_source(source: str) -> str:
    """Turn a cache source path into a short filesystem-safe slug.

    Keeps the trailing part of the path, which is the most specific one.
    """
    slug = _LEADING_SEPARATORS.sub("", source)
    slug = _SEPARATORS.sub("-", slug)
    slug = _UNSAFE_CHARS.sub("-", slug)
    return slug.lower()[-SLUG_MAX_LENGTH:]


def create_job_id(source: str) -> str:
    """Derive a job id from a cache source path.

    Args:
        source: Cache source path.

    Returns:
        ``<slug>-<8 random [a-z0-9]>``, at most 49 characters.
    """
    suffix = "".join(random.choices(SUFFIX_ALPHABET, k=SUFFIX_LENGTH))
    return f"{slugify_source(source) or FALLBACK_SLUG}-{suffix}"


def new_job(scratch_root: Path, direction: Direction, job_id: str) -> Job:
    """Describe the resources of a job without touching the filesystem."""
    scratch_dir = scratch_root / job_id
    return Job(
        job_id=job_id,
        scratch_dir=scratch_dir,
        definition_path=scratch_dir / f"Dancefile.{direction.value}",
        image_tag=f"dance:{direction.value}-{job_id}",
        container_name=f"dance-{direction.value}-{job_id}",
    )


def batch_job_id(direction: Direction) -> str:
    """The fixed job id shared by all mounts of a batched run."""
    return f"batch-{direction.value}"


def reset_scratch_dir(path: Path) -> None:
    """Remove any stale scratch directory and create it empty.

    Raises:
        OSError: If the directory cannot be removed or created.
    """
    if path.exists() or path.is_symlink():
        shutil.rmtree(path)
    path.mkdir(parents=True)
    logger.debug("Scratch directory prepared at %s", path)


def write_buildstamp(directory: Path) -> str:
    """Write the layer cache busting timestamp into ``directory``.

    Returns:
        The timestamp written.
    """
    stamp = datetime.now(timezone.utc).isoformat()
    (directory / BUILDSTAMP_NAME).write_text(stamp, encoding="utf-8")
    return stamp


def remove_tree_best_effort(path: Path, log: TransferLogger, what: str) -> bool:
    """Remove a directory tree, logging instead of raising on failure.

    Returns:
        True if the tree is gone afterwards.
    """
    if not path.exists() and not path.is_symlink():
        return True
    try:
        shutil.rmtree(path)
    except OSError as e:
        error = CleanupError(f"Failed to remove {what} at '{path}': {e}")
        log.warning("%s", error)
        return False
    log.verbose("Removed %s at '%s'", what, path)
    return True


async def cleanup_job(job: Job, strategy: BuilderStrategy, log: TransferLogger) -> bool:
    """Release everything a job created. Never raises.

    Returns:
        True if every resource was released.
    """
    released = True
    try:
        await strategy.cleanup(job, log=log)
    except (CacheDanceError, OSError) as e:
        error = CleanupError(f"Failed to release builder resources of job {job.job_id}: {e}")
        log.warning("%s", error)
        released = False
    return remove_tree_best_effort(job.scratch_dir, log, "scratch directory") and released


__all__ = [
    "BUILDSTAMP_NAME",
    "batch_job_id",
    "cleanup_job",
    "create_job_id",
    "new_job",
    "remove_tree_best_effort",
    "reset_scratch_dir",
    "slugify_source",
    "write_buildstamp",
]
