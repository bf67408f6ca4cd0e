"""Cache transfer engine.

This module handles:
- Job ids and scratch directories
- Rendering cache mount descriptors and dancefiles
- Running docker buildx and recovering its output
- Moving extracted trees into place
- Fanning transfers out over all cache mounts
"""

from cache_dance.transfer.models import CacheMount, Job

__all__ = ["CacheMount", "Job"]

# Submodules are imported directly (cache_dance.transfer.service, etc.)
