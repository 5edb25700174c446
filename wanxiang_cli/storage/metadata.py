"""
Persists the remote identifier last applied per (install root, component kind)
and decides whether a download is needed at all.
"""

import json
import logging
from pathlib import Path
from typing import Any

from wanxiang_cli.models.components import ComponentKind, ComponentVersionRecord
from wanxiang_cli.utils.path import is_related_root, normalize_root, path_variants

log = logging.getLogger(__name__)

META_STORE_KEY = "wanxiang_meta_store"


def empty_store() -> dict[str, dict]:
    return {"records": {}, "aliases": {}, "bookmarks": {}}


def normalize_mark(value: str | None) -> str:
    return str(value or "").strip().lower()


class VersionMetadataStore:
    """
    A table of :class:`ComponentVersionRecord` keyed by canonical root and kind.

    Alternative spellings of a root (``/private`` variants) are stored as
    aliases of the canonical key, and a bookmark name maps to the canonical
    root it was last used with, so a relocated bookmark still finds its
    records.
    """

    def __init__(self, kv_store):
        self._kv = kv_store

    async def _load(self) -> dict[str, dict]:
        raw = await self._kv.get(META_STORE_KEY)
        if not raw:
            return empty_store()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            log.warning(f"Version metadata is corrupt, starting fresh: {e}")
            return empty_store()
        if not isinstance(data, dict):
            return empty_store()
        store = empty_store()
        for section in store:
            if isinstance(data.get(section), dict):
                store[section] = data[section]
        return store

    async def _save(self, data: dict[str, dict]) -> None:
        await self._kv.set(META_STORE_KEY, json.dumps(data, ensure_ascii=False))

    @staticmethod
    def _lookup_keys(data: dict[str, dict], root: str) -> list[str]:
        """Candidate record keys for a root, direct spellings first."""
        keys: list[str] = []
        for variant in path_variants(root):
            keys.append(variant)
            aliased = normalize_root(data["aliases"].get(variant))
            if aliased:
                keys.append(aliased)
        return list(dict.fromkeys(keys))

    async def get_record(
        self,
        root: str | Path,
        kind: ComponentKind,
        bookmark_name: str | None = None,
    ) -> ComponentVersionRecord | None:
        """Returns the applied record for ``(root, kind)``, if one exists."""
        data = await self._load()
        bookmark = (bookmark_name or "").strip()

        if bookmark:
            mapped = normalize_root(data["bookmarks"].get(bookmark))
            if mapped:
                rec = data["records"].get(mapped, {}).get(kind.value)
                if rec:
                    return ComponentVersionRecord.from_dict(rec)

        for key in self._lookup_keys(data, normalize_root(root)):
            rec = data["records"].get(key, {}).get(kind.value)
            if rec:
                return ComponentVersionRecord.from_dict(rec)
        return None

    async def load_all(
        self, root: str | Path, bookmark_name: str | None = None
    ) -> dict[ComponentKind, ComponentVersionRecord | None]:
        return {
            kind: await self.get_record(root, kind, bookmark_name)
            for kind in ComponentKind
        }

    async def should_download(
        self,
        root: str | Path,
        kind: ComponentKind,
        remote_identifier: str,
        bookmark_name: str | None = None,
    ) -> bool:
        """
        False iff the stored identifier for ``(root, kind)`` equals the
        candidate. Identifiers are compared for equality only, never ordered.
        """
        record = await self.get_record(root, kind, bookmark_name)
        if record is None:
            return True
        candidate = normalize_mark(remote_identifier)
        if not candidate:
            return True
        return normalize_mark(record.remote_identifier) != candidate

    async def record_applied(
        self,
        root: str | Path,
        kind: ComponentKind,
        remote_identifier: str,
        display_tag: str,
        asset_name: str = "",
        release_source: str = "",
        bookmark_name: str | None = None,
    ) -> ComponentVersionRecord:
        """
        Stores the identifier of a successfully applied install. Must only be
        called after the install and reconciliation both succeeded.
        """
        path_key = normalize_root(root)
        if not path_key:
            raise ValueError("Cannot record metadata for an empty install root.")

        data = await self._load()
        bookmark = (bookmark_name or "").strip()
        mapped = normalize_root(data["bookmarks"].get(bookmark)) if bookmark else ""

        canonical = path_key
        if mapped and is_related_root(mapped, path_key):
            canonical = mapped
        elif not mapped:
            for key in self._lookup_keys(data, path_key):
                if key in data["records"]:
                    canonical = key
                    break

        bucket: dict[str, Any] = dict(data["records"].get(canonical, {}))

        # Fold fragments recorded under other spellings (or a bookmark's old
        # location) into the canonical bucket so other kinds are not lost.
        candidates = set(self._lookup_keys(data, path_key))
        if mapped:
            candidates.add(mapped)
        for key in candidates:
            if key == canonical or key not in data["records"]:
                continue
            for k, rec in data["records"].pop(key).items():
                bucket.setdefault(k, rec)
            log.debug(f"Merged version records from '{key}' into '{canonical}'")

        record = ComponentVersionRecord(
            remote_identifier=remote_identifier.strip(),
            display_tag=display_tag,
            asset_name=asset_name,
            release_source=release_source,
        )
        bucket[kind.value] = record.to_dict()
        data["records"][canonical] = bucket

        data["aliases"] = {
            alias: target
            for alias, target in data["aliases"].items()
            if normalize_root(target) in data["records"]
        }
        for variant in path_variants(canonical) + path_variants(path_key):
            if variant != canonical:
                data["aliases"][variant] = canonical
        if bookmark:
            data["bookmarks"][bookmark] = canonical

        await self._save(data)
        log.debug(
            f"Recorded {kind.value} '{record.remote_identifier}' for '{canonical}'"
        )
        return record

    async def clear_root(self, root: str | Path) -> bool:
        """Forgets records, aliases and bookmarks for a root and its spellings."""
        path_key = normalize_root(root)
        if not path_key:
            return False
        data = await self._load()
        canonical = set(self._lookup_keys(data, path_key))

        changed = False
        for key in canonical:
            if data["records"].pop(key, None) is not None:
                changed = True
        for section in ("aliases", "bookmarks"):
            for name, target in list(data[section].items()):
                if name in canonical or normalize_root(target) in canonical:
                    del data[section][name]
                    changed = True

        if changed:
            await self._save(data)
        return changed
