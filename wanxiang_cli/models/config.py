"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .components import OverwritePolicy
from .exclusions import ExclusionRuleSet

RELEASE_SOURCES = ("cnb", "github")
SCHEME_EDITIONS = ("base", "pro")
PRO_SCHEME_KEYS = ("moqi", "flypy", "zrm", "tiger", "wubi", "hanxin", "shouyou")


class UpdaterConfig(BaseModel):
    """A validated configuration model for the application."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Install location
    install_root: str = ""
    bookmark_name: str = ""

    # Release source
    release_source: str = "cnb"
    github_token: str = ""
    scheme_edition: str = "base"
    pro_scheme_key: str = "moqi"

    # Install behaviour
    exclude_patterns: list[str] = Field(default_factory=list)
    overwrite_policy: OverwritePolicy = OverwritePolicy.OVERWRITE

    # Transfer tuning (seconds)
    poll_interval: float = 0.5
    stall_timeout: float = 180.0
    hard_timeout: float = 3600.0
    max_attempts: int = 2

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)

    @field_validator("release_source")
    @classmethod
    def validate_release_source(cls, v: str) -> str:
        v = v.lower()
        if v not in RELEASE_SOURCES:
            raise ValueError(f"Release source must be one of {', '.join(RELEASE_SOURCES)}.")
        return v

    @field_validator("scheme_edition")
    @classmethod
    def validate_scheme_edition(cls, v: str) -> str:
        v = v.lower()
        if v not in SCHEME_EDITIONS:
            raise ValueError("Scheme edition must be 'base' or 'pro'.")
        return v

    @field_validator("pro_scheme_key")
    @classmethod
    def validate_pro_scheme_key(cls, v: str) -> str:
        v = v.lower()
        if v not in PRO_SCHEME_KEYS:
            raise ValueError(
                f"Pro scheme key must be one of {', '.join(PRO_SCHEME_KEYS)}."
            )
        return v

    @field_validator("exclude_patterns", mode="before")
    @classmethod
    def split_patterns(cls, v):
        """Accepts either a list or newline-separated text."""
        if isinstance(v, str):
            v = v.splitlines()
        return [p.strip() for p in v if p and p.strip()]

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: float) -> float:
        """The poll loop must stay sub-second."""
        if v <= 0 or v >= 1:
            raise ValueError("Poll interval must be between 0 and 1 second.")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1 or v > 2:
            raise ValueError("Max attempts must be 1 or 2.")
        return v

    @model_validator(mode="after")
    def validate_timeouts(self) -> "UpdaterConfig":
        """Checks that the two timeout tiers are ordered."""
        if self.stall_timeout <= 0:
            raise ValueError("Stall timeout must be positive.")
        if self.hard_timeout <= self.stall_timeout:
            raise ValueError("Hard timeout must be longer than the stall timeout.")
        return self

    @property
    def exclusions(self) -> ExclusionRuleSet:
        return ExclusionRuleSet(self.exclude_patterns)

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
