"""
Configuration for weave documents and branch generation.

All tunable parameters in one place. Loaded from defaults (this file),
optionally overridden by a YAML file:

    sync:
      coalesce_typing: true
    persistence:
      compressed: false
    generation:
      requests: 3
      depth: 2
      parameters:
        temperature: "0.8"
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from weavetree.common import SchemaClass

logger = logging.getLogger(__name__)

UNCOMPRESSED_FRONT_MATTER_KEY = "TapestryLoomWeave"
COMPRESSED_FRONT_MATTER_KEY = "TapestryLoomWeaveCompressed"


@dataclass
class SyncConfig(SchemaClass):
    """Buffer synchronization behavior."""

    # Absorb typing into the current non-root leaf instead of growing a new child
    coalesce_typing: bool = False
    # Never prune nodes that carry a model reference or parameters
    protect_generated: bool = False


@dataclass
class PersistenceConfig(SchemaClass):
    """How the weave is embedded in the buffer's front matter."""

    compressed: bool = True
    uncompressed_key: str = UNCOMPRESSED_FRONT_MATTER_KEY
    compressed_key: str = COMPRESSED_FRONT_MATTER_KEY


@dataclass
class GenerationConfig(SchemaClass):
    """Branch generation settings."""

    requests: int = 5  # per provider
    depth: int = 1
    parameters: Dict[str, str] = field(default_factory=dict)
    debounce_seconds: float = 0.1

    def __post_init__(self):
        super().__post_init__()
        if self.requests < 1:
            raise ValueError(f"requests must be >= 1, got {self.requests}")
        if self.depth < 1:
            raise ValueError(f"depth must be >= 1, got {self.depth}")


@dataclass
class LoomConfig(SchemaClass):
    """Root config with all settings."""

    sync: SyncConfig = field(default_factory=SyncConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)


def _build(cls, data: Optional[Dict[str, Any]]):
    """Instantiate a config dataclass from a dict, ignoring unknown keys."""
    if not data:
        return cls()
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    kwargs = {k: v for k, v in data.items() if k in known}
    if "parameters" in kwargs:
        kwargs["parameters"] = {
            str(k): str(v) for k, v in (kwargs["parameters"] or {}).items()
        }
    return cls(**kwargs)


def config_from_dict(data: Dict[str, Any]) -> LoomConfig:
    """Build a LoomConfig from a nested dict."""
    return LoomConfig(
        sync=_build(SyncConfig, data.get("sync")),
        persistence=_build(PersistenceConfig, data.get("persistence")),
        generation=_build(GenerationConfig, data.get("generation")),
    )


def load_config(path: Optional[Union[str, Path]] = None) -> LoomConfig:
    """
    Load config from a YAML file.

    Args:
        path: YAML file; None or a missing file yields defaults

    Raises:
        ValueError: If the file exists but is not a YAML mapping
    """
    if path is None:
        return LoomConfig()
    path = Path(path)
    if not path.exists():
        return LoomConfig()

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return LoomConfig()
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    config = config_from_dict(data)
    logger.debug(f"Loaded config from {path}:\n{config}")
    return config
