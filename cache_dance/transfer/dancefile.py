"""Dancefile rendering.

A dancefile is the throwaway Dockerfile that moves data between a BuildKit
cache mount and a plain directory. Every dancefile starts by copying the
buildstamp into the image so the RUN step below it is never served from
the layer cache.

Copy failures are ignored (``|| true``): a cache that was never populated
simply produces an empty tree.
"""

from __future__ import annotations

import os

from cache_dance.transfer.jobs import BUILDSTAMP_NAME
from cache_dance.transfer.models import CacheMount
from cache_dance.transfer.mounts import (
    mount_args_string,
    ownership_command,
    staging_keys,
    target_path,
)

EXTRACT_STAGE = "dance-extract"
# Where extracted data is collected inside the build
STAGE_DIR = "/var/dance-cache"
BATCH_STAGE_DIR = "/cache-store"
# Top-level directory of the exported filesystem
OUTPUT_DIR_NAME = "cache"
# Named build context carrying the source of a single inject
SOURCE_CONTEXT = "dance-source"

_CONTINUATION = " \\\n    "


def build_context_name(key: str) -> str:
    """Name of the named build context carrying one mount's data."""
    return f"dance-{key}"


def _run_line(mount_flags: list[str], commands: list[str]) -> str:
    flags = _CONTINUATION.join(f"--mount={flag}" for flag in mount_flags)
    body = f"{_CONTINUATION}&& ".join(commands)
    return f"RUN {flags}{_CONTINUATION}{body}"


def render_extract_definition(image: str, mount: CacheMount) -> str:
    """Render the dancefile copying one cache mount out to ``/cache``."""
    run = _run_line(
        [mount_args_string(mount)],
        [
            f"mkdir -p {STAGE_DIR}/",
            f"cp -p -R {target_path(mount)}/. {STAGE_DIR}/ || true",
        ],
    )
    return (
        f"FROM {image} AS {EXTRACT_STAGE}\n"
        f"COPY {BUILDSTAMP_NAME} {BUILDSTAMP_NAME}\n"
        f"{run}\n"
        "FROM scratch\n"
        f"COPY --from={EXTRACT_STAGE} {STAGE_DIR} /{OUTPUT_DIR_NAME}\n"
    )


def render_batch_extract_definition(image: str, mounts: list[CacheMount]) -> str:
    """Render one dancefile copying every mount to ``/cache/<key>``.

    Raises:
        ConfigError: If two mounts map to the same staging directory.
    """
    keys = staging_keys(mounts)
    stage_dirs = " ".join(f"{BATCH_STAGE_DIR}/{keys[m.source]}" for m in mounts)
    commands = [f"mkdir -p {BATCH_STAGE_DIR} {stage_dirs}".rstrip()]
    commands.extend(
        f"(cp -p -R {target_path(m)}/. {BATCH_STAGE_DIR}/{keys[m.source]}/ || true)"
        for m in mounts
    )
    run = _run_line([mount_args_string(m) for m in mounts], commands)
    return (
        f"FROM {image} AS {EXTRACT_STAGE}\n"
        f"COPY {BUILDSTAMP_NAME} {BUILDSTAMP_NAME}\n"
        f"{run}\n"
        "FROM scratch\n"
        f"COPY --from={EXTRACT_STAGE} {BATCH_STAGE_DIR} /{OUTPUT_DIR_NAME}\n"
    )


def render_inject_definition(image: str, mount: CacheMount) -> str:
    """Render the dancefile copying one source directory into its cache mount.

    The source directory is bind mounted from the named build context
    returned by :func:`inject_contexts`, so the buildstamp (which lives in
    the main context) never ends up in the cache.
    """
    copy = f"cp -p -R {STAGE_DIR}/. {target_path(mount)}"
    chown = ownership_command(mount)
    if chown:
        copy = f"{copy} && {chown}"
    run = _run_line(
        [
            mount_args_string(mount),
            f"type=bind,from={SOURCE_CONTEXT},target={STAGE_DIR}",
        ],
        [f"{copy} || true"],
    )
    return (
        f"FROM {image}\n"
        f"COPY {BUILDSTAMP_NAME} {BUILDSTAMP_NAME}\n"
        f"{run}\n"
    )


def render_batch_inject_definition(image: str, mounts: list[CacheMount]) -> str:
    """Render one dancefile filling every mount from its named build context.

    Each mount's data is passed as the build context returned by
    :func:`batch_inject_contexts`.

    Raises:
        ConfigError: If two mounts map to the same staging directory.
    """
    keys = staging_keys(mounts)
    flags: list[str] = []
    commands: list[str] = []
    for m in mounts:
        key = keys[m.source]
        stage = f"{STAGE_DIR}/{key}"
        flags.append(mount_args_string(m))
        flags.append(f"type=bind,from={build_context_name(key)},target={stage}")
        copy = f"cp -p -R {stage}/. {target_path(m)}"
        chown = ownership_command(m)
        if chown:
            copy = f"{copy} && {chown}"
        commands.append(f"({copy} || true)")
    run = _run_line(flags, commands)
    return (
        f"FROM {image}\n"
        f"COPY {BUILDSTAMP_NAME} {BUILDSTAMP_NAME}\n"
        f"{run}\n"
    )


def inject_contexts(mount: CacheMount) -> dict[str, str]:
    """Named build contexts (name -> host directory) for a single inject."""
    return {SOURCE_CONTEXT: os.path.abspath(mount.source)}


def batch_inject_contexts(mounts: list[CacheMount]) -> dict[str, str]:
    """Named build contexts (name -> host directory) for a batched inject."""
    keys = staging_keys(mounts)
    return {
        build_context_name(keys[m.source]): os.path.abspath(m.source) for m in mounts
    }


__all__ = [
    "BATCH_STAGE_DIR",
    "OUTPUT_DIR_NAME",
    "SOURCE_CONTEXT",
    "STAGE_DIR",
    "batch_inject_contexts",
    "build_context_name",
    "inject_contexts",
    "render_batch_extract_definition",
    "render_batch_inject_definition",
    "render_extract_definition",
    "render_inject_definition",
]
