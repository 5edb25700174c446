from pathlib import Path

from wanxiang_cli.utils.path import (
    is_related_root,
    normalize_root,
    path_variants,
    temp_download_path,
)


def test_normalize_root():
    assert normalize_root("  /data/r1/// ") == "/data/r1"
    assert normalize_root("/") == "/"
    assert normalize_root(None) == ""
    assert normalize_root(Path("/data/r1")) == "/data/r1"


def test_path_variants_add_and_strip_private_prefix():
    assert path_variants("/var/r") == ["/var/r", "/private/var/r"]
    assert path_variants("/private/var/r/") == ["/private/var/r", "/var/r"]
    assert path_variants("/") == ["/"]
    assert path_variants("") == []


def test_related_roots():
    assert is_related_root("/var/r", "/private/var/r/")
    assert is_related_root("/data/r1", "/data/r1")
    assert not is_related_root("/data/r1", "/data/r2")
    assert not is_related_root("", "/data/r1")


def test_temp_download_path_is_unique_and_safe(tmp_path):
    first = temp_download_path("pkg/evil.zip", tmp_path)
    second = temp_download_path("pkg/evil.zip", tmp_path)

    assert first != second
    assert first.parent == tmp_path
    assert "/" not in first.name
    assert first.name.endswith("evil.zip")
