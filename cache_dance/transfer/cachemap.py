"""Cache map loading.

A cache map is a mapping of host source directory to either a target path
string or an object of mount options::

    {
      "var-cache-apt": "/var/cache/apt",
      "root-cache": {"target": "/root/.cache", "id": "pip", "sharing": "locked"}
    }

It can be given as JSON text or as a JSON/YAML file.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from cache_dance.errors import ConfigError
from cache_dance.transfer.models import CacheMount


def _format_validation_error(source: str, error: ValidationError) -> str:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in item['loc']) or 'value'}: {item['msg']}"
        for item in error.errors()
    )
    return f"Invalid cache map entry for '{source}': {problems}"


def parse_cache_map(data: Mapping[str, Any]) -> list[CacheMount]:
    """Validate a cache map into CacheMount instances.

    Args:
        data: Mapping of source path to target string or options mapping.

    Returns:
        CacheMount list in map order.

    Raises:
        ConfigError: If an entry is malformed or a source is repeated.
    """
    if not isinstance(data, Mapping):
        raise ConfigError(
            f"Cache map must be a mapping, got {type(data).__name__}"
        )

    mounts: list[CacheMount] = []
    for source, options in data.items():
        if isinstance(options, str):
            payload: dict[str, Any] = {"source": source, "target": options}
        elif isinstance(options, Mapping):
            if "source" in options:
                raise ConfigError(
                    f"Invalid cache map entry for '{source}': "
                    "'source' is given by the map key"
                )
            payload = {**options, "source": source}
        else:
            raise ConfigError(
                f"Invalid cache map entry for '{source}': expected a target "
                f"path or an options object, got {type(options).__name__}"
            )

        try:
            mounts.append(CacheMount.model_validate(payload))
        except ValidationError as e:
            raise ConfigError(_format_validation_error(str(source), e)) from None

    ensure_unique_sources(mounts)
    return mounts


def ensure_unique_sources(mounts: list[CacheMount]) -> None:
    """Reject mounts whose sources resolve to the same directory.

    Raises:
        ConfigError: If two mounts share a normalized source path.
    """
    seen: dict[str, str] = {}
    for mount in mounts:
        key = os.path.normpath(os.path.abspath(mount.source))
        if key in seen:
            raise ConfigError(
                f"Cache sources '{seen[key]}' and '{mount.source}' point to "
                "the same directory"
            )
        seen[key] = mount.source


def load_cache_map_text(text: str) -> list[CacheMount]:
    """Parse a cache map given as JSON text.

    Raises:
        ConfigError: If the text is not valid JSON or not a valid map.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Cache map is not valid JSON: {e}") from None
    return parse_cache_map(data)


def load_cache_map_file(path: Path) -> list[CacheMount]:
    """Load a cache map from a JSON or YAML file.

    Files ending in ``.json`` are parsed as JSON, everything else as YAML
    (which also accepts JSON).

    Raises:
        ConfigError: If the file is missing or does not hold a valid map.
    """
    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Cache map file not found: {path}") from None
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read cache map file {path}: {e}") from None
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot parse cache map file {path}: {e}") from None

    if data is None:
        return []
    return parse_cache_map(data)


__all__ = [
    "ensure_unique_sources",
    "load_cache_map_file",
    "load_cache_map_text",
    "parse_cache_map",
]
