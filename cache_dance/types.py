"""Shared type definitions for cache_dance.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class Direction(str, Enum):
    """Which way a transfer moves data."""

    EXTRACT = "extract"
    INJECT = "inject"


class JobMode(str, Enum):
    """How mounts are grouped into builder invocations."""

    PER_MOUNT = "per-mount"
    BATCH = "batch"


class OutputStrategy(str, Enum):
    """How the builder hands back the extracted filesystem."""

    LOCAL = "local"
    IMAGE = "image"


class DefinitionInput(str, Enum):
    """How the dancefile reaches the builder."""

    FILE = "file"
    STDIN = "stdin"


class TransferState(str, Enum):
    """Lifecycle of a single transfer job."""

    INIT = "init"
    SCRATCH_PREPARED = "scratch_prepared"
    DEFINITION_READY = "definition_ready"
    BUILD_EXECUTED = "build_executed"
    RELOCATED = "relocated"
    CLEANED_UP = "cleaned_up"
    FAILED = "failed"


@dataclass
class TransferResult:
    """Outcome of one transfer job.

    Attributes:
        source: Durable cache path the job worked on.
        direction: Extract or inject.
        job_id: Identifier of the job that ran.
        state: Last state reached.
        warnings: Non-fatal problems (e.g. inject source removal failures).
    """

    source: str
    direction: Direction
    job_id: str
    state: TransferState = TransferState.INIT
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state == TransferState.CLEANED_UP


__all__ = [
    "DefinitionInput",
    "Direction",
    "JobMode",
    "OutputStrategy",
    "TransferResult",
    "TransferState",
]
