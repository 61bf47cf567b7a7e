"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Settings live in config.toml. Environment variables override it using ``__``
as the nested delimiter (e.g. ``CHANNELS__IMESSAGE__ENABLED=true``).

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from imbridge.config import get_settings

    s = get_settings()
    print(s.channels.imessage.poll_interval_ms)
    print(s.messages_db_path)
"""

from __future__ import annotations

from functools import cached_property
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models. Unknown keys are rejected."""

    model_config = {"extra": "forbid"}


DmPolicy = Literal["allowlist", "open", "disabled"]


class IMessageChannelConfig(_StrictModel):
    """``[channels.imessage]``. Accepts both snake_case and camelCase keys."""

    model_config = {
        "extra": "forbid",
        "alias_generator": to_camel,
        "populate_by_name": True,
    }

    enabled: bool = False
    dm_policy: DmPolicy = "allowlist"
    allow_from: list[str] = []
    poll_interval_ms: int = 1000
    include_tapbacks: bool = True
    resolve_contact_names: bool = True

    @field_validator("poll_interval_ms")
    @classmethod
    def clamp_poll_interval(cls, v: int) -> int:
        return max(100, v)

    @field_validator("allow_from")
    @classmethod
    def strip_entries(cls, v: list[str]) -> list[str]:
        return [entry.strip() for entry in v if entry.strip()]


class ChannelsConfig(_StrictModel):
    imessage: IMessageChannelConfig = IMessageChannelConfig()


class PathsConfig(_StrictModel):
    """Filesystem locations. ``~`` is expanded at use time."""

    messages_db: str = "~/Library/Messages/chat.db"
    address_book_sources: str = "~/Library/Application Support/AddressBook/Sources"
    state_file: str = "~/.imbridge/imessage-state.json"
    lease_file: str = "~/.imbridge/imessage-active-instance"


class OutboundConfig(_StrictModel):
    osascript_timeout_seconds: float = 30.0
    text_chunk_limit: int = 4000


class PipelineConfig(_StrictModel):
    """Built-in command pipeline: message body on stdin, reply on stdout."""

    command: str | None = None
    cwd: str | None = None
    timeout_seconds: float = 600.0


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


class PluginConfig(_StrictModel):
    enabled: bool = True


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    channels: ChannelsConfig = ChannelsConfig()
    paths: PathsConfig = PathsConfig()
    outbound: OutboundConfig = OutboundConfig()
    pipeline: PipelineConfig = PipelineConfig()
    logging: LoggingConfig = LoggingConfig()
    plugins: dict[str, PluginConfig] = {}

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def messages_db_path(self) -> Path:
        return Path(self.paths.messages_db).expanduser()

    @cached_property
    def address_book_dir(self) -> Path:
        return Path(self.paths.address_book_sources).expanduser()

    @cached_property
    def state_path(self) -> Path:
        return Path(self.paths.state_file).expanduser()

    @cached_property
    def lease_path(self) -> Path:
        return Path(self.paths.lease_file).expanduser()


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
