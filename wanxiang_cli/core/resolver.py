"""
Turns a configured install location, possibly indirected through a named
bookmark, into a verified, writable absolute path.
"""

import asyncio
import json
import logging
import os
import uuid
from pathlib import Path

from wanxiang_cli.exceptions import AccessDeniedError, ConfigurationError

log = logging.getLogger(__name__)

PROBE_PREFIX = ".wanxiang_perm_check_"
RIME_USER_DATA = "RimeUserData"
PREFERRED_RIME_SUBDIR = "wanxiang"
RIME_SUBDIRS = ("RIME/Rime", "Rime")


class MappingBookmarkResolver:
    """Bookmarks held in memory, keyed by name."""

    def __init__(self, mapping: dict[str, str] | None = None):
        self.mapping = dict(mapping or {})

    async def resolve(self, name: str) -> str | None:
        return self.mapping.get(name)


class FileBookmarkResolver:
    """
    Named bookmarks persisted in a JSON file. The file is re-read on every
    lookup, so a bookmark relocated or removed by another process is seen.
    """

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not read bookmarks file '{self.path}': {e}") from e
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items() if k and v}

    def _write(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
        except OSError as e:
            raise ConfigurationError(f"Could not save bookmarks file '{self.path}': {e}") from e

    def add(self, name: str, path: str | Path) -> None:
        data = self.load()
        data[name.strip()] = os.path.abspath(os.path.expanduser(str(path)))
        self._write(data)

    def remove(self, name: str) -> bool:
        data = self.load()
        if data.pop(name.strip(), None) is None:
            return False
        self._write(data)
        return True

    async def resolve(self, name: str) -> str | None:
        data = await asyncio.to_thread(self.load)
        return data.get(name)


class InstallRootResolver:
    """
    Resolves the install root for every operation. Nothing else may assume a
    root is writable without going through :meth:`resolve`.
    """

    def __init__(self, fs, bookmarks=None, detect_rime_dir: bool = True):
        self._fs = fs
        self._bookmarks = bookmarks
        self.detect_rime_dir = detect_rime_dir

    async def resolve(self, raw_path: str | Path | None, bookmark_name: str | None = None) -> Path:
        """
        Returns the absolute, existing, writable install root.

        A bookmark name takes precedence over ``raw_path`` and is re-resolved on
        every call. A bookmark that cannot be resolved never falls back to
        ``raw_path``.

        Raises:
            AccessDeniedError: The root is unset, missing, or not writable.
        """
        base = await self._resolve_base(raw_path, bookmark_name)
        if not await self._fs.exists(base):
            raise AccessDeniedError("Install root does not exist", str(base))
        if not await self._fs.is_dir(base):
            raise AccessDeniedError("Install root is not a directory", str(base))

        root = await self._detect_rime_dir(base) if self.detect_rime_dir else base
        await self._probe_write_access(root)
        log.debug(f"Install root resolved to '{root}'")
        return root

    async def _resolve_base(self, raw_path, bookmark_name) -> Path:
        name = (bookmark_name or "").strip()
        if name:
            resolved = await self._bookmarks.resolve(name) if self._bookmarks else None
            if not resolved:
                raise AccessDeniedError(f"Bookmark '{name}' cannot be resolved")
            text = resolved
        else:
            text = str(raw_path or "").strip()
            if not text:
                raise AccessDeniedError("No install root configured")
        return Path(os.path.abspath(os.path.expanduser(text)))

    async def _detect_rime_dir(self, base: Path) -> Path:
        """
        Finds the Rime user folder inside a frontend's data folder, falling
        back to ``base`` itself.
        """
        user_data = base / RIME_USER_DATA
        if await self._fs.is_dir(user_data):
            subdirs = []
            for name in sorted(await self._fs.listdir(user_data)):
                if name.startswith(".") or name == "__MACOSX":
                    continue
                if await self._fs.is_dir(user_data / name):
                    subdirs.append(name)
            if PREFERRED_RIME_SUBDIR in subdirs:
                return user_data / PREFERRED_RIME_SUBDIR
            if subdirs:
                return user_data / subdirs[0]
            return user_data
        for sub in RIME_SUBDIRS:
            if await self._fs.is_dir(base / sub):
                return base / sub
        return base

    async def _probe_write_access(self, root: Path) -> None:
        marker = root / f"{PROBE_PREFIX}{uuid.uuid4().hex}"
        try:
            await self._fs.mkdir(marker)
        except OSError as e:
            raise AccessDeniedError(f"Install root is not writable: {e.strerror or e}", str(root)) from e
        try:
            await self._fs.rmdir(marker)
        except OSError as e:
            raise AccessDeniedError(
                f"Probe folder could not be removed: {e.strerror or e}", str(root)
            ) from e
