"""
The filesystem capability used by the engine, exposed as one asynchronous
interface over the local disk.
"""

import asyncio
import logging
import os
import shutil
import zipfile
from pathlib import Path

import aiofiles.os

from wanxiang_cli.exceptions import InvalidArchiveError

log = logging.getLogger(__name__)

MAX_ARCHIVE_ENTRIES = 20000
MAX_ARCHIVE_FILE_SIZE = 1024 * 1024 * 1024
MAX_ARCHIVE_TOTAL_BYTES = 4 * 1024 * 1024 * 1024
MAX_COMPRESSION_RATIO = 200


def extract_zip_safely(archive: zipfile.ZipFile, target_dir: Path) -> list[Path]:
    """
    Extracts every member under ``target_dir``, refusing absolute paths,
    entries that escape the target and members that expand beyond safe limits.
    Returns the extracted file paths.
    """
    root = target_dir.resolve()
    total_bytes = 0
    processed_entries = 0
    extracted: list[Path] = []
    for member in archive.infolist():
        name = member.filename
        if not name:
            continue
        processed_entries += 1
        if processed_entries > MAX_ARCHIVE_ENTRIES:
            raise InvalidArchiveError("Archive contained too many entries")
        path = Path(name)
        if path.is_absolute() or name.startswith(("/", "\\")):
            raise InvalidArchiveError(f"Archive contained an absolute path entry: {name}")
        destination = (root / path).resolve()
        try:
            destination.relative_to(root)
        except ValueError:
            raise InvalidArchiveError(f"Archive contained an unsafe relative path: {name}")
        if member.is_dir():
            destination.mkdir(parents=True, exist_ok=True)
            continue
        if member.file_size > MAX_ARCHIVE_FILE_SIZE:
            raise InvalidArchiveError(f"Archive member '{name}' is too large")
        if (
            member.compress_size > 0
            and member.file_size > member.compress_size * MAX_COMPRESSION_RATIO
        ):
            raise InvalidArchiveError(
                f"Archive member '{name}' exceeded the safe compression ratio"
            )
        total_bytes += member.file_size
        if total_bytes > MAX_ARCHIVE_TOTAL_BYTES:
            raise InvalidArchiveError("Archive expanded beyond safe limits")
        destination.parent.mkdir(parents=True, exist_ok=True)
        with archive.open(member) as source, destination.open("wb") as target:
            shutil.copyfileobj(source, target)
        extracted.append(destination)

    log.debug(f"Extracted {len(extracted)} files totalling {total_bytes} bytes")
    return extracted


class LocalFileSystem:
    """Async wrappers around local filesystem operations."""

    async def exists(self, path: Path) -> bool:
        return await aiofiles.os.path.exists(path)

    async def is_dir(self, path: Path) -> bool:
        return await aiofiles.os.path.isdir(path)

    async def is_file(self, path: Path) -> bool:
        return await aiofiles.os.path.isfile(path)

    async def makedirs(self, path: Path) -> None:
        await aiofiles.os.makedirs(path, exist_ok=True)

    async def mkdir(self, path: Path) -> None:
        """Creates exactly one directory; fails if it already exists."""
        await aiofiles.os.mkdir(path)

    async def rmdir(self, path: Path) -> None:
        await aiofiles.os.rmdir(path)

    async def listdir(self, path: Path) -> list[str]:
        return await aiofiles.os.listdir(path)

    async def walk_files(self, path: Path) -> list[Path]:
        """Recursively lists every regular file under ``path``."""

        def _walk() -> list[Path]:
            found = []
            for dirpath, _dirnames, filenames in os.walk(path):
                for filename in filenames:
                    found.append(Path(dirpath) / filename)
            return sorted(found)

        return await asyncio.to_thread(_walk)

    async def file_size(self, path: Path) -> int:
        return await aiofiles.os.path.getsize(path)

    async def copy_file(self, src: Path, dst: Path) -> None:
        await aiofiles.os.makedirs(dst.parent, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, src, dst)

    async def replace(self, src: Path, dst: Path) -> None:
        """Moves ``src`` over ``dst``, atomically when both share a volume."""
        await aiofiles.os.makedirs(dst.parent, exist_ok=True)
        try:
            await aiofiles.os.replace(src, dst)
        except OSError:
            await asyncio.to_thread(shutil.move, src, dst)

    async def remove(self, path: Path) -> None:
        await aiofiles.os.remove(path)

    async def remove_tree(self, path: Path) -> None:
        await asyncio.to_thread(shutil.rmtree, path)

    async def remove_quietly(self, path: Path) -> bool:
        """
        Best-effort removal of a file or directory tree. Errors are logged and
        swallowed so they never mask the failure that triggered the cleanup.
        """
        try:
            if await aiofiles.os.path.isdir(path):
                await asyncio.to_thread(shutil.rmtree, path)
            elif await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
            else:
                return False
            return True
        except OSError as e:
            log.warning(f"Could not remove '{path}': {e}")
            return False

    async def rmdir_if_empty(self, path: Path) -> bool:
        try:
            if await aiofiles.os.listdir(path):
                return False
            await aiofiles.os.rmdir(path)
            return True
        except OSError:
            return False

    async def extract_zip(self, archive_path: Path, target_dir: Path) -> list[Path]:
        """Extracts a zip archive, mapping every failure to InvalidArchiveError."""

        def _extract() -> list[Path]:
            target_dir.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(archive_path) as archive:
                return extract_zip_safely(archive, target_dir)

        try:
            return await asyncio.to_thread(_extract)
        except (OSError, zipfile.BadZipFile) as e:
            raise InvalidArchiveError(f"Failed to extract '{archive_path.name}': {e}") from e
