"""
Storage Layer.

This package handles all data persistence: the configuration file, the
key-value state database with its migrations, the tracked-file manifests,
the version metadata and the release cache.
"""

from .config_manager import ConfigManager
from .kv_store import MemoryKeyValueStore, SqliteKeyValueStore
from .manifest import ExtractionTracker
from .metadata import VersionMetadataStore
from .migrations import run_migrations
from .release_cache import ReleaseCache

__all__ = [
    "ConfigManager",
    "ExtractionTracker",
    "MemoryKeyValueStore",
    "ReleaseCache",
    "SqliteKeyValueStore",
    "VersionMetadataStore",
    "run_migrations",
]
