"""Application configuration using Pydantic Settings."""

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, computed_field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class VirtualUserRecord:
    """A locally-defined OPDS login mapped to an upstream API token."""

    username: str
    upstream_api_key: str = field(repr=False)
    password: str = field(repr=False)


def parse_virtual_users(raw: str) -> tuple[VirtualUserRecord, ...]:
    """
    Parse ``username:token:password`` triples separated by commas.

    The password is everything after the second colon, so it may contain colons.

    Raises:
        ValueError: If an entry is not a complete triple.
    """
    records: list[VirtualUserRecord] = []
    for index, chunk in enumerate((raw or "").split(",")):
        entry = chunk.strip()
        if not entry:
            continue
        parts = entry.split(":", 2)
        if len(parts) != 3 or not all(part.strip() for part in parts):
            raise ValueError(
                f"OPDS_USERS entry #{index + 1} must be 'username:token:password'"
            )
        username, token, password = parts
        records.append(
            VirtualUserRecord(
                username=username.strip(),
                upstream_api_key=token.strip(),
                password=password,
            )
        )
    return tuple(records)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Application
    app_name: str = "ABS OPDS Bridge"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "production"
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 3010

    # Upstream
    abs_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the upstream library server",
    )
    upstream_timeout_seconds: float = Field(default=30.0, gt=0)
    proxy_timeout_seconds: float = Field(default=15.0, gt=0)

    # Catalog
    use_proxy: bool = Field(default=False, description="Route covers and downloads through /opds/proxy")
    show_audiobooks: bool = Field(default=False, description="Include audiobook items in listings")
    show_char_cards: bool = Field(default=False, description="Insert alphabetical cards above axis listings")
    opds_page_size: int = Field(default=20, ge=1, le=500)
    default_library_id: str | None = None
    languages_dir: Path = Field(default=Path("languages"))

    # Authentication
    # NOTE: Kept as a raw string so pydantic-settings does not attempt JSON parsing.
    opds_users: str = Field(
        default="",
        description="Virtual users as comma-separated 'username:token:password' triples",
    )
    opds_no_auth: bool = False
    abs_noauth_username: str = ""
    abs_noauth_password: str = Field(default="", repr=False)
    abs_noauth_api_key: str = Field(default="", repr=False)
    allow_upstream_login: bool = Field(
        default=True,
        description="Delegate Basic credentials to the upstream login when no virtual users exist",
    )
    login_cache_ttl_seconds: int = Field(default=600, ge=0)

    @field_validator("abs_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("ABS_URL must be an http(s) URL")
        return value.rstrip("/")

    @field_validator("opds_users")
    @classmethod
    def _validate_users(cls, value: str) -> str:
        parse_virtual_users(value)
        return value

    @model_validator(mode="after")
    def _validate_no_auth_identity(self) -> "Settings":
        if self.opds_no_auth:
            if not self.abs_noauth_username:
                raise ValueError("OPDS_NO_AUTH requires ABS_NOAUTH_USERNAME")
            if not (self.abs_noauth_api_key or self.abs_noauth_password):
                raise ValueError(
                    "OPDS_NO_AUTH requires ABS_NOAUTH_API_KEY or ABS_NOAUTH_PASSWORD"
                )
        return self

    @computed_field
    @property
    def virtual_users(self) -> tuple[VirtualUserRecord, ...]:
        """Parsed virtual-user table."""
        return parse_virtual_users(self.opds_users)

    @property
    def asset_base_url(self) -> str:
        """Prefix for cover and download links rendered into feeds."""
        return "/opds/proxy" if self.use_proxy else self.abs_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
