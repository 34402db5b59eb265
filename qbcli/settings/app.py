"""Application settings powered by Pydantic BaseSettings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_HOST_URL = "http://127.0.0.1:8080"
DEFAULT_CACHE_DIR = Path("~/.cache/qbcli")


class AppSettings(BaseSettings):
    """Environment defaults for the command line."""

    model_config = SettingsConfigDict(
        env_prefix="QBCLI_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host_url: str = Field(default=DEFAULT_HOST_URL)
    username: str = Field(default="")
    password: str = Field(default="", repr=False)
    cache_dir: Path = Field(default=DEFAULT_CACHE_DIR)
    log_level: str = Field(default="warn")

    def resolved_cache_dir(self) -> Path:
        """Return the cache directory with ``~`` expanded."""
        return self.cache_dir.expanduser()


def get_settings() -> AppSettings:
    """Get a settings instance."""
    return AppSettings()
