"""
Versioned schema migrations for the key-value state store.

Each migration is a declarative ``(version, name, apply)`` entry. The highest
applied version is recorded under :data:`SCHEMA_VERSION_KEY`, so every step
runs at most once and re-running the table is a no-op.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from wanxiang_cli.models.components import ComponentKind
from wanxiang_cli.storage.manifest import EXTRACTED_FILES_KEY
from wanxiang_cli.storage.metadata import META_STORE_KEY
from wanxiang_cli.utils.path import is_related_root, normalize_root, path_variants

log = logging.getLogger(__name__)

SCHEMA_VERSION_KEY = "wanxiang_schema_version"
LEGACY_EXTRACTED_FILES_KEY = "wanxiang_extracted_files_v1"
LEGACY_META_STORE_KEY = "wanxiang_meta_store_v1"
LEGACY_KEYS = (LEGACY_EXTRACTED_FILES_KEY, LEGACY_META_STORE_KEY)

KIND_NAMES = tuple(kind.value for kind in ComponentKind)
LEGACY_FILE_FIELDS = {"scheme": "scheme_file", "dict": "dict_file", "model": "model_name"}


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    apply: Callable[[Any], Awaitable[None]]


def _parse_json(raw: str | None) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def _parse_time(value: Any) -> datetime | None:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def _record_time(record: dict) -> datetime | None:
    for field in ("applied_at", "apply_time", "update_time"):
        parsed = _parse_time(record.get(field))
        if parsed is not None:
            return parsed
    return None


def pick_newer(a: dict | None, b: dict | None) -> dict | None:
    """
    Chooses between two records for the same kind found under aliases of one
    root. A record whose timestamp cannot be parsed counts as older; when
    neither parses, or both are equal, the later record ``b`` wins.
    """
    if not a:
        return b
    if not b:
        return a
    ta, tb = _record_time(a), _record_time(b)
    if ta is not None and tb is not None:
        try:
            return b if tb >= ta else a
        except TypeError:
            # naive vs aware timestamps
            return b
    if ta is not None:
        return a
    return b


def convert_legacy_record(kind: str, record: dict) -> dict | None:
    """Maps a legacy record's field names onto the current record shape."""
    if "remote_identifier" in record:
        return record
    asset_name = str(record.get(LEGACY_FILE_FIELDS.get(kind, ""), "") or "")
    tag = str(record.get("tag") or "")
    remote_identifier = (
        record.get("sha256")
        or record.get("cnb_id")
        or (tag or asset_name if kind == "scheme" else asset_name)
    )
    if not remote_identifier:
        return None
    release_source = str(record.get("release_source") or "").lower()
    if release_source not in ("cnb", "github"):
        if record.get("sha256"):
            release_source = "github"
        elif record.get("cnb_id"):
            release_source = "cnb"
        else:
            release_source = ""
    return {
        "remote_identifier": str(remote_identifier).strip(),
        "display_tag": tag or asset_name,
        "applied_at": str(record.get("apply_time") or record.get("update_time") or ""),
        "asset_name": asset_name,
        "release_source": release_source,
    }


def _canonical_for(cluster: list[str], bookmarks: dict[str, str]) -> str:
    for target in bookmarks.values():
        if target in cluster:
            return target
    return sorted(
        cluster, key=lambda k: (k.startswith("/private/"), len(k), k)
    )[0]


def cleanup_meta_store(raw: Any) -> dict[str, dict]:
    """
    Normalizes any historical meta store shape into
    ``{"records", "aliases", "bookmarks"}`` and merges records kept under
    alternative spellings of the same root.
    """
    if isinstance(raw, dict) and isinstance(raw.get("records"), dict):
        records_in = raw["records"]
        bookmarks_in = raw.get("bookmarks") if isinstance(raw.get("bookmarks"), dict) else {}
    elif isinstance(raw, dict):
        records_in, bookmarks_in = raw, {}
    else:
        records_in, bookmarks_in = {}, {}

    records: dict[str, dict] = {}
    for key, bucket in records_in.items():
        root = normalize_root(key)
        if not root or not isinstance(bucket, dict):
            continue
        converted = {}
        for kind in KIND_NAMES:
            if isinstance(bucket.get(kind), dict):
                rec = convert_legacy_record(kind, bucket[kind])
                if rec:
                    converted[kind] = rec
        if converted:
            records[root] = converted

    bookmarks = {
        str(name).strip(): normalize_root(target)
        for name, target in bookmarks_in.items()
        if str(name).strip() and normalize_root(target)
    }

    new_records: dict[str, dict] = {}
    aliases: dict[str, str] = {}
    new_bookmarks: dict[str, str] = {}
    visited: set[str] = set()

    for start in records:
        if start in visited:
            continue
        cluster = [k for k in records if k not in visited and is_related_root(start, k)]
        visited.update(cluster)
        canonical = _canonical_for(cluster, bookmarks)

        merged: dict[str, dict] = {}
        for key in cluster:
            for kind in KIND_NAMES:
                chosen = pick_newer(merged.get(kind), records[key].get(kind))
                if chosen:
                    merged[kind] = chosen
        new_records[canonical] = merged

        for key in set(cluster) | set(path_variants(canonical)):
            if key != canonical:
                aliases[key] = canonical
        for name, target in bookmarks.items():
            if target in cluster:
                new_bookmarks[name] = canonical

    return {"records": new_records, "aliases": aliases, "bookmarks": new_bookmarks}


def convert_extracted_files(raw: Any) -> dict[str, dict]:
    """Converts the legacy tracked-files table to the current manifest shape."""
    if not isinstance(raw, dict):
        return {}
    out: dict[str, dict] = {}
    for key, bucket in raw.items():
        root = normalize_root(key)
        if not root or not isinstance(bucket, dict):
            continue
        converted = {}
        for kind in KIND_NAMES:
            entry = bucket.get(kind)
            if not isinstance(entry, dict):
                continue
            files = sorted({normalize_root(f) for f in entry.get("files", []) if normalize_root(f)})
            if files:
                converted[kind] = {
                    "files": files,
                    "updated_at": entry.get("updated_at") or entry.get("updatedAt") or "",
                }
        if converted:
            out[root] = converted
    return out


async def adopt_legacy_extracted_files(store) -> None:
    if await store.get(EXTRACTED_FILES_KEY):
        return
    legacy = _parse_json(await store.get(LEGACY_EXTRACTED_FILES_KEY))
    if legacy is None:
        return
    converted = convert_extracted_files(legacy)
    await store.set(EXTRACTED_FILES_KEY, json.dumps(converted, ensure_ascii=False))
    log.debug(f"Adopted tracked files for {len(converted)} root(s)")


async def adopt_legacy_meta_store(store) -> None:
    source = await store.get(META_STORE_KEY) or await store.get(LEGACY_META_STORE_KEY)
    if not source:
        return
    parsed = _parse_json(source)
    if parsed is None:
        log.warning("Discarding unreadable version metadata during migration")
        return
    cleaned = cleanup_meta_store(parsed)
    await store.set(META_STORE_KEY, json.dumps(cleaned, ensure_ascii=False))
    log.debug(f"Normalized version metadata for {len(cleaned['records'])} root(s)")


async def remove_legacy_keys(store) -> None:
    for key in LEGACY_KEYS:
        await store.remove(key)


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "adopt legacy tracked files", adopt_legacy_extracted_files),
    Migration(2, "adopt and normalize legacy version metadata", adopt_legacy_meta_store),
    Migration(3, "remove legacy keys", remove_legacy_keys),
)


async def get_schema_version(store) -> int:
    raw = await store.get(SCHEMA_VERSION_KEY)
    try:
        return int(raw) if raw else 0
    except ValueError:
        return 0


async def run_migrations(store, migrations: tuple[Migration, ...] = MIGRATIONS) -> list[int]:
    """
    Applies every migration newer than the recorded schema version, in order.

    Returns:
        The versions applied by this call (empty when already current).
    """
    current = await get_schema_version(store)
    applied = []
    for migration in sorted(migrations, key=lambda m: m.version):
        if migration.version <= current:
            continue
        log.debug(f"Applying state migration {migration.version}: {migration.name}")
        await migration.apply(store)
        await store.set(SCHEMA_VERSION_KEY, str(migration.version))
        applied.append(migration.version)
    if applied:
        log.info(f"State store migrated to schema version {applied[-1]}")
    return applied
