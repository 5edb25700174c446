"""
Core data structures describing components, install targets and the records
persisted between runs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from .exclusions import ExclusionRuleSet


class ComponentKind(str, Enum):
    """Logical category of a downloadable artifact."""

    SCHEME = "scheme"
    DICT = "dict"
    MODEL = "model"


class OverwritePolicy(str, Enum):
    """What to do when an installed file already exists at the destination."""

    OVERWRITE = "overwrite"
    KEEP_EXISTING = "keep_existing"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class InstallTarget:
    """
    Where and how one component is materialized.

    ``root`` is always a resolved, write-verified absolute path. ``subdir`` is
    the folder under the root the payload lands in (empty for the root itself),
    and ``merge_pattern`` names top-level archive folders whose contents are
    merged directly into that folder.
    """

    root: Path
    kind: ComponentKind
    exclusions: ExclusionRuleSet = field(default_factory=ExclusionRuleSet)
    overwrite_policy: OverwritePolicy = OverwritePolicy.OVERWRITE
    subdir: str = ""
    merge_pattern: str | None = None

    @property
    def destination(self) -> Path:
        return self.root / self.subdir if self.subdir else self.root


@dataclass
class TrackedManifest:
    """The files written by the most recent successful install of one kind."""

    files: set[str] = field(default_factory=set)
    updated_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {"files": sorted(self.files), "updated_at": self.updated_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackedManifest":
        raw_files = data.get("files")
        if not isinstance(raw_files, list):
            raw_files = []
        files = {str(f).rstrip("/") for f in raw_files if f}
        return cls(files=files, updated_at=data.get("updated_at") or utc_now_iso())


@dataclass
class ComponentVersionRecord:
    """The remote identifier last successfully applied for one root and kind."""

    remote_identifier: str
    display_tag: str = ""
    applied_at: str = field(default_factory=utc_now_iso)
    asset_name: str = ""
    release_source: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "remote_identifier": self.remote_identifier,
            "display_tag": self.display_tag,
            "applied_at": self.applied_at,
            "asset_name": self.asset_name,
            "release_source": self.release_source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ComponentVersionRecord | None":
        remote_identifier = str(data.get("remote_identifier") or "").strip()
        if not remote_identifier:
            return None
        return cls(
            remote_identifier=remote_identifier,
            display_tag=str(data.get("display_tag") or ""),
            applied_at=str(data.get("applied_at") or ""),
            asset_name=str(data.get("asset_name") or ""),
            release_source=str(data.get("release_source") or ""),
        )


@dataclass
class RemoteAsset:
    """A release asset resolved from a release source."""

    name: str
    url: str
    tag: str | None = None
    body: str | None = None
    updated_at: str | None = None
    remote_id: str | None = None
    size: int | None = None

    def remote_mark(self, kind: ComponentKind) -> str:
        """
        Returns the opaque identifier used to decide whether this asset is
        already installed. Falls back to a synthetic mark built from the most
        stable metadata available when the source provides no id or hash.
        """
        if self.remote_id and self.remote_id.strip():
            return self.remote_id.strip()
        if kind is ComponentKind.SCHEME and (self.tag or "").strip():
            return self.tag.strip()
        for extra in (self.size, self.updated_at, self.tag, self.url):
            if extra:
                return f"{kind.value}:{self.name}:{extra}"
        return f"{kind.value}:{self.name}"

    @property
    def display_tag(self) -> str:
        return self.tag or self.name


@dataclass
class InstallReport:
    """
    What one archive install did. ``written`` holds the files copied in;
    ``kept`` holds destinations left as they were under ``keep_existing``.
    Both are sorted absolute paths.
    """

    written: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)


@dataclass
class UpdateResult:
    """The outcome of one component update."""

    kind: ComponentKind
    applied: bool
    remote_identifier: str
    display_tag: str
    install_root: Path
    files_written: int = 0
    files_removed: int = 0
