"""
Extracts a downloaded archive and copies its payload into an install root
under the user's exclusion and overwrite policy.
"""

import logging
import re
import tempfile
import uuid
from pathlib import Path

from wanxiang_cli.exceptions import InvalidArchiveError
from wanxiang_cli.models.components import InstallReport, InstallTarget, OverwritePolicy

log = logging.getLogger(__name__)

NOISE_NAMES = frozenset({"__MACOSX", ".DS_Store", "Thumbs.db", "desktop.ini"})


def is_noise(name: str) -> bool:
    """Host metadata that archivers add and that must never be installed."""
    return name in NOISE_NAMES or name.startswith("._")


class ArchiveInstaller:
    """Installs one archive into one :class:`InstallTarget`."""

    def __init__(self, fs, temp_dir: Path | None = None):
        self._fs = fs
        self._temp_dir = temp_dir or Path(tempfile.gettempdir()) / "wanxiang-cli"

    async def install(self, archive_path: Path, target: InstallTarget) -> InstallReport:
        """
        Extracts ``archive_path`` into an isolated staging folder and copies
        the payload into ``target.destination``.

        A single wrapping top-level folder is flattened away. When the target
        names a ``merge_pattern``, top-level folders matching it are merged
        into the destination itself; every other folder is merged by name.

        Returns:
            An :class:`InstallReport`. Excluded files are in neither list;
            destinations left alone under ``keep_existing`` are in ``kept``
            so the caller can keep tracking the ones it installed earlier.

        Raises:
            InvalidArchiveError: Extraction failed or produced no usable files.
        """
        staging = self._temp_dir / f"unpack_{uuid.uuid4().hex}"
        try:
            await self._fs.extract_zip(archive_path, staging)
            source = await self._effective_root(staging)
            plan = await self._plan(source, target)
            if not plan:
                raise InvalidArchiveError(
                    f"Archive '{archive_path.name}' contained no usable files"
                )

            written: list[str] = []
            kept: list[str] = []
            skipped = 0
            for src, dst in plan:
                rule = target.exclusions.match(dst, target.root)
                if rule is not None:
                    log.debug(f"Skipping '{dst.name}' (excluded by '{rule}')")
                    skipped += 1
                    continue
                if await self._fs.is_dir(dst):
                    log.warning(f"Skipping '{dst}': a folder with that name exists")
                    skipped += 1
                    continue
                if (
                    target.overwrite_policy is OverwritePolicy.KEEP_EXISTING
                    and await self._fs.exists(dst)
                ):
                    kept.append(dst.as_posix())
                    continue
                await self._fs.copy_file(src, dst)
                written.append(dst.as_posix())

            log.info(
                f"Installed {len(written)} file(s) into '{target.destination}'"
                + (f", kept {len(kept)}" if kept else "")
                + (f", skipped {skipped}" if skipped else "")
            )
            return InstallReport(written=sorted(written), kept=sorted(kept))
        finally:
            await self._fs.remove_quietly(staging)

    async def _effective_root(self, staging: Path) -> Path:
        entries = [name for name in await self._fs.listdir(staging) if not is_noise(name)]
        if len(entries) == 1 and await self._fs.is_dir(staging / entries[0]):
            log.debug(f"Flattening wrapper folder '{entries[0]}'")
            return staging / entries[0]
        return staging

    async def _plan(self, source: Path, target: InstallTarget) -> list[tuple[Path, Path]]:
        """Maps every usable extracted file to its destination path."""
        merge = re.compile(target.merge_pattern, re.IGNORECASE) if target.merge_pattern else None
        destination = target.destination
        plan: dict[Path, Path] = {}

        for src in await self._fs.walk_files(source):
            rel = src.relative_to(source)
            if any(is_noise(part) for part in rel.parts):
                continue
            parts = rel.parts
            if merge and len(parts) > 1 and merge.search(parts[0]):
                parts = parts[1:]
            dst = destination.joinpath(*parts)
            # Files at the top level win over merged folders on a name clash.
            if dst in plan and len(rel.parts) > len(parts):
                continue
            plan[dst] = src

        return sorted(((src, dst) for dst, src in plan.items()), key=lambda p: p[1])
