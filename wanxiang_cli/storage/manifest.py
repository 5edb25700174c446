"""
Tracks which files each install wrote, so a later install can remove exactly
those files and nothing the user created.
"""

import json
import logging
from pathlib import Path

from wanxiang_cli.models.components import ComponentKind, TrackedManifest
from wanxiang_cli.models.exclusions import ExclusionRuleSet
from wanxiang_cli.utils.path import normalize_root

log = logging.getLogger(__name__)

EXTRACTED_FILES_KEY = "wanxiang_extracted_files"


class ExtractionTracker:
    """Persists a :class:`TrackedManifest` per (root, kind) and reconciles it."""

    def __init__(self, kv_store, fs):
        self._kv = kv_store
        self._fs = fs

    async def _load_store(self) -> dict[str, dict]:
        raw = await self._kv.get(EXTRACTED_FILES_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            log.warning(f"Tracked file list is corrupt, starting fresh: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    async def _save_store(self, data: dict[str, dict]) -> None:
        await self._kv.set(EXTRACTED_FILES_KEY, json.dumps(data, ensure_ascii=False))

    async def load(self, root: str | Path, kind: ComponentKind) -> TrackedManifest:
        data = await self._load_store()
        bucket = data.get(normalize_root(root))
        entry = bucket.get(kind.value) if isinstance(bucket, dict) else None
        if not isinstance(entry, dict):
            return TrackedManifest()
        return TrackedManifest.from_dict(entry)

    async def save(
        self, root: str | Path, kind: ComponentKind, files: set[str] | list[str]
    ) -> TrackedManifest:
        key = normalize_root(root)
        manifest = TrackedManifest(
            files={normalize_root(f) for f in files if normalize_root(f)}
        )
        data = await self._load_store()
        bucket = data.get(key)
        if not isinstance(bucket, dict):
            bucket = {}
        if manifest.files:
            bucket[kind.value] = manifest.to_dict()
        else:
            bucket.pop(kind.value, None)
        if bucket:
            data[key] = bucket
        else:
            data.pop(key, None)
        await self._save_store(data)
        return manifest

    async def clear_root(self, root: str | Path) -> bool:
        data = await self._load_store()
        if data.pop(normalize_root(root), None) is None:
            return False
        await self._save_store(data)
        return True

    async def reconcile(
        self,
        root: str | Path,
        kind: ComponentKind,
        new_files: list[str] | set[str],
        exclusions: ExclusionRuleSet,
        retained: list[str] | set[str] = (),
    ) -> int:
        """
        Replaces the manifest for ``(root, kind)`` with ``new_files`` and deletes
        the previously tracked files that are no longer part of it.

        Stale files listed in ``retained`` were left in place by the install
        (``keep_existing``) and stay tracked without being touched. Stale files
        matching the current exclusions are preserved and stay tracked. A
        stale file that cannot be deleted also stays tracked so a later run
        can retry. Empty parent directories are pruned up to, but
        not including, the root.

        Returns:
            The number of files removed.
        """
        root_path = Path(normalize_root(root))
        previous = await self.load(root_path, kind)
        current = {normalize_root(f) for f in new_files if normalize_root(f)}
        untouched = {normalize_root(f) for f in retained if normalize_root(f)}

        kept: set[str] = set()
        removed = 0
        for stale in sorted(previous.files - current):
            if stale in untouched:
                kept.add(stale)
                continue
            stale_path = Path(stale)
            if exclusions.is_excluded(stale_path, root_path):
                log.debug(f"Keeping excluded file '{stale}'")
                kept.add(stale)
                continue
            if not await self._fs.exists(stale_path):
                continue
            try:
                await self._fs.remove(stale_path)
            except OSError as e:
                log.warning(f"Could not remove stale file '{stale}': {e}")
                kept.add(stale)
                continue
            removed += 1
            await self._prune_parents(stale_path, root_path)

        await self.save(root_path, kind, current | kept)
        if removed:
            log.info(f"Removed {removed} file(s) left over from the previous {kind.value}")
        return removed

    async def _prune_parents(self, path: Path, root: Path) -> None:
        current = path.parent
        while current != root and root in current.parents:
            if not await self._fs.rmdir_if_empty(current):
                break
            current = current.parent
