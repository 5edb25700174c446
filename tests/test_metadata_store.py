import pytest

from wanxiang_cli.models.components import ComponentKind
from wanxiang_cli.storage.metadata import VersionMetadataStore

SCHEME = ComponentKind.SCHEME
DICT = ComponentKind.DICT


@pytest.fixture
def metadata(kv):
    return VersionMetadataStore(kv)


@pytest.mark.asyncio
async def test_download_needed_until_identifier_is_recorded(metadata):
    assert await metadata.should_download("/data/r1", SCHEME, "abc123")

    await metadata.record_applied("/data/r1", SCHEME, "abc123", "v1.0")

    assert not await metadata.should_download("/data/r1", SCHEME, "abc123")
    assert await metadata.should_download("/data/r1", SCHEME, "def456")


@pytest.mark.asyncio
async def test_identifiers_compare_trimmed_and_case_insensitive(metadata):
    await metadata.record_applied("/data/r1", SCHEME, " ABC123 ", "v1.0")

    assert not await metadata.should_download("/data/r1/", SCHEME, "abc123")
    assert await metadata.should_download("/data/r1", SCHEME, "   ")


@pytest.mark.asyncio
async def test_kinds_and_roots_are_independent(metadata):
    await metadata.record_applied("/data/r1", SCHEME, "abc", "v1")

    assert await metadata.should_download("/data/r1", DICT, "abc")
    assert await metadata.should_download("/data/r2", SCHEME, "abc")


@pytest.mark.asyncio
async def test_record_keeps_details(metadata):
    await metadata.record_applied(
        "/data/r1",
        SCHEME,
        "abc",
        "v1",
        asset_name="rime-wanxiang-base.zip",
        release_source="github",
    )

    record = await metadata.get_record("/data/r1", SCHEME)

    assert record.remote_identifier == "abc"
    assert record.display_tag == "v1"
    assert record.asset_name == "rime-wanxiang-base.zip"
    assert record.release_source == "github"
    assert record.applied_at


@pytest.mark.asyncio
async def test_private_prefix_spellings_find_the_same_records(metadata):
    await metadata.record_applied("/private/var/r", SCHEME, "abc", "v1")

    assert not await metadata.should_download("/var/r", SCHEME, "abc")

    await metadata.record_applied("/var/r", DICT, "d1", "d1")
    records = await metadata.load_all("/private/var/r")

    assert records[SCHEME].remote_identifier == "abc"
    assert records[DICT].remote_identifier == "d1"
    assert records[ComponentKind.MODEL] is None


@pytest.mark.asyncio
async def test_relocated_bookmark_carries_its_records(metadata):
    await metadata.record_applied("/data/old", SCHEME, "s1", "v1", bookmark_name="phone")

    await metadata.record_applied("/data/new", DICT, "d1", "d1", bookmark_name="phone")

    new_records = await metadata.load_all("/data/new")
    assert new_records[SCHEME].remote_identifier == "s1"
    assert new_records[DICT].remote_identifier == "d1"
    assert await metadata.get_record("/data/old", SCHEME) is None
    bookmarked = await metadata.get_record("/elsewhere", SCHEME, bookmark_name="phone")
    assert bookmarked.remote_identifier == "s1"


@pytest.mark.asyncio
async def test_empty_root_cannot_be_recorded(metadata):
    with pytest.raises(ValueError):
        await metadata.record_applied("  ", SCHEME, "abc", "v1")


@pytest.mark.asyncio
async def test_clear_root_forgets_records_and_aliases(metadata):
    await metadata.record_applied("/private/var/r", SCHEME, "abc", "v1", bookmark_name="mac")
    await metadata.record_applied("/data/other", SCHEME, "xyz", "v2")

    assert await metadata.clear_root("/var/r")

    assert await metadata.get_record("/private/var/r", SCHEME) is None
    assert await metadata.get_record("/x", SCHEME, bookmark_name="mac") is None
    assert (await metadata.get_record("/data/other", SCHEME)).remote_identifier == "xyz"
    assert not await metadata.clear_root("/var/r")


@pytest.mark.asyncio
async def test_corrupt_store_reads_as_empty(metadata, kv):
    await kv.set("wanxiang_meta_store", "[1, 2")

    assert await metadata.get_record("/data/r1", SCHEME) is None
