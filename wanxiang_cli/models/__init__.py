"""
Data Models Layer.

This package contains the data structures used throughout the application:
configuration, component records, exclusion rules and download progress.
"""

from .components import (
    ComponentKind,
    ComponentVersionRecord,
    InstallReport,
    InstallTarget,
    OverwritePolicy,
    RemoteAsset,
    TrackedManifest,
    UpdateResult,
)
from .config import UpdaterConfig
from .exclusions import ExclusionRuleSet
from .progress import (
    DownloadEvent,
    DownloadProgress,
    DownloadState,
    DownloadTask,
    RawProgress,
)

__all__ = [
    "ComponentKind",
    "ComponentVersionRecord",
    "DownloadEvent",
    "DownloadProgress",
    "DownloadState",
    "DownloadTask",
    "ExclusionRuleSet",
    "InstallReport",
    "InstallTarget",
    "OverwritePolicy",
    "RawProgress",
    "RemoteAsset",
    "TrackedManifest",
    "UpdateResult",
    "UpdaterConfig",
]
