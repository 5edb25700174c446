import pytest
from typer.testing import CliRunner

from wanxiang_cli import __version__
from wanxiang_cli.cli import app as cli
from wanxiang_cli.storage.config_manager import ConfigManager

runner = CliRunner()


@pytest.fixture(autouse=True)
def config_dir(tmp_path, monkeypatch):
    directory = tmp_path / "config"
    monkeypatch.setattr(cli, "CONFIG_DIR", directory)
    monkeypatch.setattr(cli, "CONFIG_FILE", directory / "config.ini")
    monkeypatch.setattr(cli, "BOOKMARKS_FILE", directory / "bookmarks.json")
    return directory


def test_version():
    result = runner.invoke(cli.app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_writes_configuration(config_dir, install_root):
    result = runner.invoke(
        cli.app,
        ["init", str(install_root), "--source", "github", "-e", "user.yaml", "-e", "*.custom.yaml"],
    )

    assert result.exit_code == 0, result.output
    config = ConfigManager(config_dir / "config.ini").load_config()
    assert config.install_root == str(install_root)
    assert config.release_source == "github"
    assert config.exclude_patterns == ["user.yaml", "*.custom.yaml"]


def test_init_requires_a_folder_or_bookmark(config_dir):
    result = runner.invoke(cli.app, ["init"])

    assert result.exit_code == 1
    assert not (config_dir / "config.ini").exists()


def test_init_rejects_unknown_source(config_dir, install_root):
    result = runner.invoke(cli.app, ["init", str(install_root), "--source", "ftp"])

    assert result.exit_code != 0
    assert not (config_dir / "config.ini").exists()


def test_bookmark_lifecycle(install_root):
    added = runner.invoke(cli.app, ["bookmark", "add", "phone", str(install_root)])
    listed = runner.invoke(cli.app, ["bookmark", "list"])
    removed = runner.invoke(cli.app, ["bookmark", "remove", "phone"])

    assert added.exit_code == 0
    assert "phone" in listed.output
    assert removed.exit_code == 0
    assert "removed" in removed.output


def test_bookmark_to_missing_folder_fails(tmp_path):
    result = runner.invoke(cli.app, ["bookmark", "add", "phone", str(tmp_path / "nope")])

    assert result.exit_code == 1


def test_status_and_forget_on_fresh_state(install_root):
    runner.invoke(cli.app, ["init", str(install_root)])

    status = runner.invoke(cli.app, ["status"])
    forget = runner.invoke(cli.app, ["forget", "--force"])

    assert status.exit_code == 0, status.output
    assert forget.exit_code == 0, forget.output
    assert "Nothing was recorded" in forget.output
