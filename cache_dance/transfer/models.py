"""Pydantic models for cache mount configuration.

A cache map entry pairs a durable source directory on the host with a
BuildKit cache mount. The mount options mirror the ``RUN --mount=type=cache``
options that cache-dance knows how to render.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Values end up inside a comma separated --mount fragment
UNSAFE_VALUE_PATTERN = re.compile(r"[,\s\"'=]")
# Targets are also pasted unquoted into the RUN shell line
SHELL_META_PATTERN = re.compile(r"[;&|$`<>()*?\[\]{}#~!\\]")
OCTAL_MODE_PATTERN = re.compile(r"^0?[0-7]{3,4}$")
NUMERIC_ID_PATTERN = re.compile(r"^[0-9]+$")


def _check_fragment_value(field_name: str, value: str) -> str:
    if not value:
        raise ValueError(f"{field_name} must not be empty")
    if UNSAFE_VALUE_PATTERN.search(value):
        raise ValueError(
            f"{field_name} must not contain commas, quotes, '=' or whitespace, "
            f"got {value!r}"
        )
    if SHELL_META_PATTERN.search(value):
        raise ValueError(
            f"{field_name} must not contain shell metacharacters, got {value!r}"
        )
    return value


class CacheMount(BaseModel):
    """One cache map entry.

    Attributes:
        source: Durable directory on the host (identity of the mount).
        target: Path of the cache mount inside the build.
        id: BuildKit cache id; BuildKit defaults it to the target path.
        sharing: Sharing mode for concurrent builds using the same cache.
        readonly: Mount the cache read-only.
        mode: Octal file mode of the cache directory.
        uid: Owner user id of the cache directory (and injected files).
        gid: Owner group id of the cache directory (and injected files).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    source: str = Field(description="Durable cache directory on the host")
    target: str = Field(description="Builder-visible cache mount path")
    id: str | None = Field(default=None, description="BuildKit cache id")
    sharing: Literal["shared", "private", "locked"] | None = Field(default=None)
    readonly: bool = Field(default=False)
    mode: str | None = Field(default=None, description="Octal mode, e.g. '0755'")
    uid: str | None = Field(default=None)
    gid: str | None = Field(default=None)

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: str) -> str:
        """Validate source is a non-empty path."""
        if not v.strip():
            raise ValueError("source must not be empty")
        return v

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str) -> str:
        """Validate target is an absolute path safe to render."""
        _check_fragment_value("target", v)
        if not v.startswith("/"):
            raise ValueError(f"target must be an absolute path, got {v!r}")
        return v

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _check_fragment_value("id", v)

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str | None) -> str | None:
        """Validate mode is a valid octal string."""
        if v is None:
            return v
        if not OCTAL_MODE_PATTERN.match(v):
            raise ValueError(f"mode must be an octal string (e.g. '0755'), got {v!r}")
        return v

    @field_validator("uid", "gid", mode="before")
    @classmethod
    def validate_owner(cls, v: object) -> str | None:
        """Accept numeric ids given as int or string."""
        if v is None or v == "":
            return None
        if isinstance(v, bool):
            raise ValueError("ownership ids must be numeric")
        text = str(v)
        if not NUMERIC_ID_PATTERN.match(text):
            raise ValueError(f"ownership ids must be numeric, got {text!r}")
        return text

    @property
    def mount_id(self) -> str:
        """The effective BuildKit cache id."""
        return self.id or self.target

    @property
    def source_path(self) -> Path:
        return Path(self.source)


@dataclass
class Job:
    """Resources owned by one transfer job.

    Attributes:
        job_id: Filesystem safe identifier, unique within a run.
        scratch_dir: Private working directory of the job.
        definition_path: Where the dancefile is written.
        image_tag: Image created by the image round-trip strategy.
        container_name: Container created by the image round-trip strategy.
    """

    job_id: str
    scratch_dir: Path
    definition_path: Path
    image_tag: str | None = None
    container_name: str | None = None

    @property
    def output_dir(self) -> Path:
        return self.scratch_dir / "output"


__all__ = ["CacheMount", "Job"]
