"""Mount descriptor rendering.

Pure helpers turning a CacheMount into the pieces of a dancefile: the
``--mount=`` fragment, the builder-visible target path and the optional
ownership restore command.
"""

from __future__ import annotations

import re

from cache_dance.errors import ConfigError
from cache_dance.transfer.models import CacheMount

_STAGING_UNSAFE = re.compile(r"[^a-zA-Z0-9_.-]+")


def target_path(mount: CacheMount) -> str:
    """Return the path where the cache is visible inside the build."""
    return mount.target


def mount_args_string(mount: CacheMount) -> str:
    """Render the ``--mount=`` value for a cache mount.

    Example:
        ``type=cache,id=pip,target=/root/.cache/pip,sharing=locked``
    """
    parts = [
        "type=cache",
        f"id={mount.mount_id}",
        f"target={mount.target}",
    ]
    if mount.sharing:
        parts.append(f"sharing={mount.sharing}")
    if mount.readonly:
        parts.append("readonly")
    if mount.mode:
        parts.append(f"mode={mount.mode}")
    if mount.uid:
        parts.append(f"uid={mount.uid}")
    if mount.gid:
        parts.append(f"gid={mount.gid}")
    return ",".join(parts)


def mount_uid(mount: CacheMount) -> str:
    return mount.uid or ""


def mount_gid(mount: CacheMount) -> str:
    return mount.gid or ""


def ownership_command(mount: CacheMount) -> str:
    """Return ``chown -R uid:gid <target>`` when ownership is configured."""
    uid = mount_uid(mount)
    gid = mount_gid(mount)
    if uid == "" and gid == "":
        return ""
    return f"chown -R {uid}:{gid} {target_path(mount)}"


def staging_key(mount: CacheMount) -> str:
    """Directory name used for a mount inside a batched build.

    Raises:
        ConfigError: If the mount id leaves nothing usable.
    """
    key = _STAGING_UNSAFE.sub("-", mount.mount_id).strip("-.").lower()
    if not key:
        raise ConfigError(f"Cannot derive a staging name from mount id {mount.mount_id!r}")
    return key


def staging_keys(mounts: list[CacheMount]) -> dict[str, str]:
    """Map each mount source to a staging key, rejecting duplicates.

    Raises:
        ConfigError: If two mounts would share a staging directory.
    """
    keys: dict[str, str] = {}
    owners: dict[str, str] = {}
    for mount in mounts:
        key = staging_key(mount)
        if key in owners:
            raise ConfigError(
                f"Mounts for '{owners[key]}' and '{mount.source}' both stage "
                f"into '{key}'; give them distinct ids"
            )
        owners[key] = mount.source
        keys[mount.source] = key
    return keys


__all__ = [
    "mount_args_string",
    "mount_gid",
    "mount_uid",
    "ownership_command",
    "staging_key",
    "staging_keys",
    "target_path",
]
