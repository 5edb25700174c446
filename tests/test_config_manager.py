import pytest
from pydantic import ValidationError

from wanxiang_cli.exceptions import ConfigurationError
from wanxiang_cli.models.components import OverwritePolicy
from wanxiang_cli.models.config import UpdaterConfig
from wanxiang_cli.storage.config_manager import ConfigManager


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "conf" / "config.ini"


def test_saved_config_loads_back(config_file):
    manager = ConfigManager(config_file)
    manager.save_new_config(
        {
            "install_root": "/data/rime",
            "release_source": "GitHub",
            "exclude_patterns": ["user.yaml", "*.custom.yaml"],
            "overwrite_policy": "keep_existing",
        }
    )

    config = ConfigManager(config_file).load_config()

    assert config.install_root == "/data/rime"
    assert config.release_source == "github"
    assert config.exclude_patterns == ["user.yaml", "*.custom.yaml"]
    assert config.overwrite_policy is OverwritePolicy.KEEP_EXISTING
    assert config.github_token == ""
    assert config.config_path == str(config_file.parent)


def test_missing_keys_are_added_with_defaults(config_file):
    config_file.parent.mkdir(parents=True)
    config_file.write_text("[DEFAULT]\ninstall_root = /data/rime\n")

    config = ConfigManager(config_file).load_config()

    assert config.stall_timeout == 180.0
    assert config.release_source == "cnb"
    text = config_file.read_text()
    assert "stall_timeout" in text
    assert "hard_timeout" in text
    assert "install_root = /data/rime" in text


def test_cli_options_override_file_values(config_file):
    ConfigManager(config_file).save_new_config({"install_root": "/data/rime"})

    config = ConfigManager(config_file).load_config(
        {"release_source": "github", "install_root": None, "scheme_edition": "pro"}
    )

    assert config.release_source == "github"
    assert config.scheme_edition == "pro"
    assert config.install_root == "/data/rime"


def test_missing_file_is_a_configuration_error(config_file):
    with pytest.raises(ConfigurationError, match="init"):
        ConfigManager(config_file).load_config()


@pytest.mark.parametrize(
    "line",
    ["release_source = ftp", "stall_timeout = soon", "max_attempts = 5"],
)
def test_invalid_values_are_configuration_errors(config_file, line):
    config_file.parent.mkdir(parents=True)
    config_file.write_text(f"[DEFAULT]\ninstall_root = /data/rime\n{line}\n")

    with pytest.raises(ConfigurationError):
        ConfigManager(config_file).load_config()


def test_invalid_settings_are_not_saved(config_file):
    with pytest.raises(ConfigurationError):
        ConfigManager(config_file).save_new_config({"scheme_edition": "deluxe"})

    assert not config_file.exists()


def test_exclude_patterns_accept_text():
    config = UpdaterConfig(exclude_patterns="user.yaml\n\n  *.custom.yaml  \n")

    assert config.exclude_patterns == ["user.yaml", "*.custom.yaml"]
    assert config.exclusions.is_excluded("/r/default.custom.yaml", "/r")


def test_pro_scheme_key_is_normalized():
    config = UpdaterConfig(scheme_edition="PRO", pro_scheme_key=" Flypy ")

    assert config.scheme_edition == "pro"
    assert config.pro_scheme_key == "flypy"


@pytest.mark.parametrize(
    "settings",
    [
        {"poll_interval": 1.0},
        {"poll_interval": 0},
        {"stall_timeout": 60, "hard_timeout": 60},
        {"stall_timeout": 0},
        {"max_attempts": 0},
        {"pro_scheme_key": "qwerty"},
    ],
)
def test_invalid_transfer_settings_are_rejected(settings):
    with pytest.raises(ValidationError):
        UpdaterConfig(**settings)


def test_ini_keys_exclude_internal_fields():
    keys = UpdaterConfig.get_ini_keys()

    assert "config_path" not in keys
    assert {"install_root", "exclude_patterns", "stall_timeout"} <= keys
