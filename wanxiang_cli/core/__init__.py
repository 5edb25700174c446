"""
Core update engine.

This package contains the primary logic. The `UpdateManager` drives one
component update end to end, delegating root resolution to the
`InstallRootResolver`, the transfer to the `DownloadOrchestrator` and the
payload copy to the `ArchiveInstaller`.
"""

from .filesystem import LocalFileSystem
from .installer import ArchiveInstaller
from .orchestrator import DownloadOrchestrator
from .progress import ProgressEmitter
from .resolver import FileBookmarkResolver, InstallRootResolver, MappingBookmarkResolver
from .transfer import StreamingTransfer, create_session, fetch_content_length
from .update_manager import UpdateCheck, UpdateManager

__all__ = [
    "ArchiveInstaller",
    "DownloadOrchestrator",
    "FileBookmarkResolver",
    "InstallRootResolver",
    "LocalFileSystem",
    "MappingBookmarkResolver",
    "ProgressEmitter",
    "StreamingTransfer",
    "UpdateCheck",
    "UpdateManager",
    "create_session",
    "fetch_content_length",
]
