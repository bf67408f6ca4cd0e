"""Moving staged trees into their durable location.

Extracted caches are staged inside the job's scratch directory and renamed
over the destination only once the build succeeded, so a destination never
shows a half-written tree. Cache contents often belong to root (they were
written inside a build), so the old destination is removed with
``sudo rm -rf`` first and with an unprivileged removal when sudo is not
available or fails.
"""

from __future__ import annotations

import asyncio
import errno
import os
import shutil
from pathlib import Path

from cache_dance.errors import RelocationError
from cache_dance.logs import TransferLogger, get_transfer_logger
from cache_dance.transfer import process

SUDO = "sudo"


def _remove_unprivileged(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


async def remove_privileged(path: Path, log: TransferLogger) -> bool:
    """Try ``sudo -n rm -rf``; report whether the path is gone."""
    if shutil.which(SUDO) is None:
        log.verbose("sudo is not available")
        return False
    await process.run_best_effort([SUDO, "-n", "rm", "-rf", str(path)], log=log)
    return not os.path.lexists(path)


async def remove_destination(
    path: Path,
    use_sudo: bool = True,
    log: TransferLogger | None = None,
) -> None:
    """Remove a destination tree, preferring a privileged removal.

    Args:
        path: Directory (or file) to remove. A missing path is not an error.
        use_sudo: Try ``sudo rm -rf`` before the unprivileged removal.
        log: Log handle.

    Raises:
        RelocationError: If neither removal got rid of the path.
    """
    log = log or get_transfer_logger(__name__)
    if not os.path.lexists(path):
        return

    if use_sudo:
        if await remove_privileged(path, log):
            log.verbose("Removed '%s' with sudo", path)
            return
        log.verbose("Privileged removal of '%s' failed, falling back", path)

    try:
        await asyncio.to_thread(_remove_unprivileged, path)
    except OSError as e:
        raise RelocationError(
            f"Failed to remove existing cache at '{path}': {e}", path=str(path)
        ) from e
    log.verbose("Removed '%s'", path)


async def move_into_place(
    staged: Path,
    destination: Path,
    use_sudo: bool = True,
    log: TransferLogger | None = None,
) -> None:
    """Replace ``destination`` with the staged tree.

    A missing staged tree means the cache was empty; the destination is then
    left as an empty directory.

    Raises:
        RelocationError: If the destination cannot be cleared or the staged
            tree cannot be moved.
    """
    log = log or get_transfer_logger(__name__)
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise RelocationError(
            f"Cannot create parent directory of '{destination}': {e}",
            path=str(destination),
        ) from e

    await remove_destination(destination, use_sudo=use_sudo, log=log)

    try:
        os.rename(staged, destination)
    except FileNotFoundError:
        if os.path.lexists(staged):
            raise RelocationError(
                f"Failed to move '{staged}' to '{destination}'",
                path=str(destination),
            ) from None
        log.info("Nothing was extracted, creating empty cache at '%s'", destination)
        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RelocationError(
                f"Cannot create empty cache at '{destination}': {e}",
                path=str(destination),
            ) from e
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise RelocationError(
                f"Failed to move '{staged}' to '{destination}': {e}",
                path=str(destination),
            ) from e
        log.verbose("'%s' is on another device, copying instead", destination)
        try:
            await asyncio.to_thread(shutil.move, str(staged), str(destination))
        except OSError as move_error:
            raise RelocationError(
                f"Failed to move '{staged}' to '{destination}': {move_error}",
                path=str(destination),
            ) from move_error

    log.verbose("Moved '%s' to '%s'", staged, destination)


async def discard_source(
    source: Path,
    use_sudo: bool = True,
    log: TransferLogger | None = None,
) -> str | None:
    """Remove an injected source directory without failing the run.

    The data already reached the cache mount, so a failure here only leaves
    clutter behind.

    Returns:
        The warning logged, or None when the directory is gone.
    """
    log = log or get_transfer_logger(__name__)
    try:
        await remove_destination(source, use_sudo=use_sudo, log=log)
    except RelocationError as e:
        warning = f"Error while cleaning cache source directory at '{source}': {e}. Ignoring..."
        log.warning("%s", warning)
        return warning
    return None


__all__ = [
    "discard_source",
    "move_into_place",
    "remove_destination",
    "remove_privileged",
]
