"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from wanxiang_cli.exceptions import ConfigurationError
from wanxiang_cli.models.components import OverwritePolicy
from wanxiang_cli.models.config import UpdaterConfig

log = logging.getLogger(__name__)


def _to_ini_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, OverwritePolicy):
        return value.value
    if isinstance(value, list):
        # Multi-line values are written as indented continuation lines.
        return "\n".join(map(str, value))
    return "" if value is None else str(value)


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> UpdaterConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated UpdaterConfig object.

        Raises:
            ConfigurationError: If the config file is missing, invalid, or validation
            fails.
        """
        if not self.config_file_path.is_file():
            raise ConfigurationError(
                f"Configuration file not found at '{self.config_file_path}'. "
                "Please run 'wanxiang-cli init' first."
            )

        try:
            self._parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing configuration file: {e}") from e

        if self._migrate_if_needed():
            log.info(
                "[yellow]Configuration file was updated with new default values."
                "[/yellow]"
            )

        config_from_file = self._get_config_as_dict()

        # Override with CLI options
        if cli_options:
            config_from_file.update(
                {k: v for k, v in cli_options.items() if v is not None}
            )

        try:
            config_dir = self.config_file_path.parent
            return UpdaterConfig(**config_from_file, config_path=str(config_dir))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a new configuration file.

        Args:
            settings: A dictionary of settings to save.
        """
        try:
            validated = UpdaterConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

        config = configparser.ConfigParser(interpolation=None)
        config["DEFAULT"] = {}
        for key in sorted(UpdaterConfig.get_ini_keys()):
            config["DEFAULT"][key] = _to_ini_value(getattr(validated, key))

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        defaults = UpdaterConfig()
        try:
            return {
                "install_root": section.get("install_root", ""),
                "bookmark_name": section.get("bookmark_name", ""),
                "release_source": section.get("release_source", defaults.release_source),
                "github_token": section.get("github_token", ""),
                "scheme_edition": section.get("scheme_edition", defaults.scheme_edition),
                "pro_scheme_key": section.get("pro_scheme_key", defaults.pro_scheme_key),
                "exclude_patterns": section.get("exclude_patterns", ""),
                "overwrite_policy": section.get(
                    "overwrite_policy", defaults.overwrite_policy.value
                ),
                "poll_interval": section.getfloat("poll_interval", defaults.poll_interval),
                "stall_timeout": section.getfloat("stall_timeout", defaults.stall_timeout),
                "hard_timeout": section.getfloat("hard_timeout", defaults.hard_timeout),
                "max_attempts": section.getint("max_attempts", defaults.max_attempts),
            }
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in configuration file: {e}") from e

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = UpdaterConfig()
        needs_saving = False
        config_section = self._parser["DEFAULT"]

        for key in sorted(UpdaterConfig.get_ini_keys()):
            if key not in config_section:
                config_section[key] = _to_ini_value(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{config_section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
