"""Updater configuration."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

TRUNK_CDN_URL = "https://cdn.cocoapods.org/"


class UpdaterSettings(BaseSettings):
    """Settings for one update run, overridable through ``PODFIX_*`` variables."""

    model_config = SettingsConfigDict(env_prefix="PODFIX_")

    cdn_url: str = TRUNK_CDN_URL
    github_api_url: str = "https://api.github.com"
    github_raw_url: str = "https://raw.githubusercontent.com"
    spec_repo_branch: str = "master"

    timeout: float = Field(10.0, gt=0)
    max_attempts: int = Field(3, ge=1)
    backoff_base: float = Field(0.5, ge=0)
    backoff_multiplier: float = Field(2.0, ge=1)
    backoff_max: float = Field(8.0, ge=0)
    max_concurrency: int = Field(6, ge=1)

    @field_validator("cdn_url")
    @classmethod
    def _trailing_slash(cls, value: str) -> str:
        return value if value.endswith("/") else value + "/"

    @field_validator("github_api_url", "github_raw_url")
    @classmethod
    def _no_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @classmethod
    def from_env(cls, prefix: str = "PODFIX_", **overrides) -> "UpdaterSettings":
        """Build settings from the environment under ``prefix``.

        Keyword overrides that are not None win over the environment.
        """
        values = {key: value for key, value in overrides.items() if value is not None}
        return cls(_env_prefix=prefix, **values)
