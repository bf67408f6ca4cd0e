"""cache-dance - persist BuildKit cache mounts across ephemeral builders.

This package moves the contents of `RUN --mount=type=cache` directories
into and out of plain filesystem trees by running small throwaway builds
with docker buildx, so CI cache steps can save and restore them.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
