"""
Utilities for normalizing install-root paths and building temporary paths.
"""

import tempfile
import uuid
from pathlib import Path

from pathvalidate import sanitize_filename

PRIVATE_PREFIX = "/private"


def normalize_root(root: str | Path | None) -> str:
    """Strips whitespace and trailing slashes; the root '/' is kept as is."""
    text = str(root or "").strip()
    if not text:
        return ""
    stripped = text.rstrip("/")
    return stripped or "/"


def path_variants(root: str | Path | None) -> list[str]:
    """
    Returns the spellings under which the same directory may be recorded.
    On macOS-style hosts ``/var/...`` and ``/private/var/...`` name the same
    folder.
    """
    n = normalize_root(root)
    if not n:
        return []
    variants = [n]
    if n.startswith(PRIVATE_PREFIX + "/"):
        variants.append(n[len(PRIVATE_PREFIX) :])
    elif n.startswith("/") and n != "/":
        variants.append(PRIVATE_PREFIX + n)
    return variants


def is_related_root(a: str | Path | None, b: str | Path | None) -> bool:
    """True when both values spell the same root."""
    x, y = normalize_root(a), normalize_root(b)
    if not x or not y:
        return False
    return y in path_variants(x)


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def temp_download_path(name: str, base_dir: Path | None = None) -> Path:
    """
    Builds a unique, filesystem-safe path for a download in progress.
    """
    safe_name = sanitize_filename(name, platform="auto") or "download"
    directory = base_dir or Path(tempfile.gettempdir()) / "wanxiang-cli"
    return directory / f"{uuid.uuid4().hex[:8]}_{safe_name}"
