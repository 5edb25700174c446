import zipfile
from pathlib import Path

import pytest

from wanxiang_cli.core.filesystem import LocalFileSystem
from wanxiang_cli.storage.kv_store import MemoryKeyValueStore


def write_zip(path: Path, entries: dict[str, str | bytes]) -> Path:
    """Writes an uncompressed zip archive holding ``entries``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_STORED) as archive:
        for name, content in entries.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            archive.writestr(name, data)
    return path


class FakeClock:
    """A monotonic clock that only moves when the code under test sleeps."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fs() -> LocalFileSystem:
    return LocalFileSystem()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def install_root(tmp_path: Path) -> Path:
    root = tmp_path / "r1"
    root.mkdir()
    return root


@pytest.fixture
def make_zip(tmp_path: Path):
    counter = {"n": 0}

    def _make(entries: dict[str, str | bytes], name: str | None = None) -> Path:
        counter["n"] += 1
        return write_zip(tmp_path / "archives" / (name or f"archive_{counter['n']}.zip"), entries)

    return _make
