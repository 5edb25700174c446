from pathlib import Path

import pytest

from wanxiang_cli.core.installer import ArchiveInstaller, is_noise
from wanxiang_cli.exceptions import InvalidArchiveError
from wanxiang_cli.models.components import ComponentKind, InstallTarget, OverwritePolicy
from wanxiang_cli.models.exclusions import ExclusionRuleSet


def _relative(paths: list[str], root: Path) -> list[str]:
    return [Path(p).relative_to(root).as_posix() for p in paths]


@pytest.fixture
def installer(fs, tmp_path):
    return ArchiveInstaller(fs, temp_dir=tmp_path / "staging")


def _target(root, **kwargs):
    return InstallTarget(root=root, kind=ComponentKind.SCHEME, **kwargs)


@pytest.mark.asyncio
async def test_single_wrapper_folder_is_flattened(installer, make_zip, tmp_path):
    wrapped = make_zip({"pkg-v2/foo.txt": "foo", "pkg-v2/lua/bar.lua": "return 1"})
    plain = make_zip({"foo.txt": "foo", "lua/bar.lua": "return 1"})
    root_a = tmp_path / "a"
    root_b = tmp_path / "b"
    root_a.mkdir()
    root_b.mkdir()

    written_a = (await installer.install(wrapped, _target(root_a))).written
    written_b = (await installer.install(plain, _target(root_b))).written

    assert _relative(written_a, root_a) == ["foo.txt", "lua/bar.lua"]
    assert _relative(written_a, root_a) == _relative(written_b, root_b)
    assert (root_a / "foo.txt").read_text() == "foo"
    assert not (root_a / "pkg-v2").exists()


@pytest.mark.asyncio
async def test_returned_paths_are_absolute_and_sorted(installer, make_zip, install_root):
    archive = make_zip({"b.yaml": "b", "a.yaml": "a", "sub/c.yaml": "c"})

    written = (await installer.install(archive, _target(install_root))).written

    assert written == sorted(written)
    assert all(Path(p).is_absolute() for p in written)


@pytest.mark.asyncio
async def test_host_noise_is_discarded(installer, make_zip, install_root):
    archive = make_zip(
        {
            "__MACOSX/pkg/._foo.txt": "meta",
            "pkg/foo.txt": "foo",
            "pkg/.DS_Store": "meta",
            "pkg/sub/._bar.txt": "meta",
            "pkg/sub/bar.txt": "bar",
        }
    )

    written = (await installer.install(archive, _target(install_root))).written

    assert _relative(written, install_root) == ["foo.txt", "sub/bar.txt"]
    assert not (install_root / "__MACOSX").exists()
    assert not (install_root / ".DS_Store").exists()


def test_noise_names():
    assert is_noise("__MACOSX")
    assert is_noise("._default.yaml")
    assert is_noise("Thumbs.db")
    assert not is_noise("default.yaml")


@pytest.mark.asyncio
async def test_multiple_top_level_folders_merge_by_name(installer, make_zip, install_root):
    (install_root / "lua").mkdir()
    (install_root / "lua" / "mine.lua").write_text("user")
    archive = make_zip({"lua/new.lua": "new", "opencc/t.json": "{}", "default.yaml": "d"})

    written = (await installer.install(archive, _target(install_root))).written

    assert _relative(written, install_root) == ["default.yaml", "lua/new.lua", "opencc/t.json"]
    assert (install_root / "lua" / "mine.lua").read_text() == "user"


@pytest.mark.asyncio
async def test_excluded_file_is_never_copied_or_overwritten(installer, make_zip, install_root):
    (install_root / "user.yaml").write_text("mine")
    archive = make_zip({"foo.txt": "foo", "user.yaml": "theirs", "custom/x.custom.yaml": "x"})
    target = _target(install_root, exclusions=ExclusionRuleSet(["user.yaml", "*.custom.yaml"]))

    written = (await installer.install(archive, target)).written

    assert _relative(written, install_root) == ["foo.txt"]
    assert (install_root / "user.yaml").read_text() == "mine"
    assert not (install_root / "custom" / "x.custom.yaml").exists()


@pytest.mark.asyncio
async def test_root_relative_exclusion(installer, make_zip, install_root):
    archive = make_zip({"lua/a.lua": "a", "lua/b.lua": "b"})
    target = _target(install_root, exclusions=ExclusionRuleSet(["^lua/a\\.lua$"]))

    written = (await installer.install(archive, target)).written

    assert _relative(written, install_root) == ["lua/b.lua"]


@pytest.mark.asyncio
async def test_keep_existing_skips_present_files(installer, make_zip, install_root):
    (install_root / "foo.txt").write_text("old")
    archive = make_zip({"foo.txt": "new", "bar.txt": "bar"})
    target = _target(install_root, overwrite_policy=OverwritePolicy.KEEP_EXISTING)

    report = await installer.install(archive, target)

    assert _relative(report.written, install_root) == ["bar.txt"]
    assert _relative(report.kept, install_root) == ["foo.txt"]
    assert (install_root / "foo.txt").read_text() == "old"


@pytest.mark.asyncio
async def test_overwrite_replaces_present_files(installer, make_zip, install_root):
    (install_root / "foo.txt").write_text("old")
    archive = make_zip({"foo.txt": "new"})

    written = (await installer.install(archive, _target(install_root))).written

    assert _relative(written, install_root) == ["foo.txt"]
    assert (install_root / "foo.txt").read_text() == "new"


@pytest.mark.asyncio
async def test_dictionary_folders_merge_into_subdir(installer, make_zip, install_root):
    archive = make_zip(
        {
            "wanxiang-dicts/cn_dicts/base.dict.yaml": "base",
            "wanxiang-dicts/en_dicts/en.dict.yaml": "en",
            "wanxiang-dicts/extra/notes.txt": "notes",
        }
    )
    target = InstallTarget(
        root=install_root,
        kind=ComponentKind.DICT,
        subdir="dicts",
        merge_pattern="dict",
    )

    written = (await installer.install(archive, target)).written

    assert _relative(written, install_root) == [
        "dicts/base.dict.yaml",
        "dicts/en.dict.yaml",
        "dicts/extra/notes.txt",
    ]


@pytest.mark.asyncio
async def test_archive_with_only_noise_is_invalid(installer, make_zip, install_root, tmp_path):
    archive = make_zip({"__MACOSX/._x": "meta", ".DS_Store": "meta"})

    with pytest.raises(InvalidArchiveError):
        await installer.install(archive, _target(install_root))

    assert list((tmp_path / "staging").glob("unpack_*")) == []


@pytest.mark.asyncio
async def test_corrupt_archive_is_invalid(installer, install_root, tmp_path):
    archive = tmp_path / "broken.zip"
    archive.write_bytes(b"this is not a zip file")

    with pytest.raises(InvalidArchiveError):
        await installer.install(archive, _target(install_root))

    assert list((tmp_path / "staging").glob("unpack_*")) == []


@pytest.mark.asyncio
async def test_entry_escaping_the_staging_folder_is_rejected(
    installer, make_zip, install_root, tmp_path
):
    archive = make_zip({"../evil.txt": "x", "ok.txt": "ok"}, name="evil.zip")

    with pytest.raises(InvalidArchiveError):
        await installer.install(archive, _target(install_root))

    assert not (tmp_path / "staging" / "evil.txt").exists()
    assert not (install_root / "ok.txt").exists()
