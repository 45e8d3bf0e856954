"""Central configuration for the agent runtime.

Settings come from environment variables (``.env`` files are loaded by
*python-dotenv* in :mod:`agent_runtime.__main__`) and are validated by
``pydantic-settings``.

Usage::

    from agent_runtime.config import get_settings

    settings = get_settings()
    print(settings.RUN_TIMEOUT_SECONDS)

:func:`get_settings` builds the :class:`RuntimeSettings` singleton lazily, so
importing this module never validates anything before the caller has had a
chance to populate the environment.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, ClassVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_runtime.types import ModelType

log = logging.getLogger(__name__)

# Checked in order by __main__ before settings are built.
ENV_PATHS: list[str] = ["config/.env", ".env"]

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class RuntimeSettings(BaseSettings):
    """Validated configuration for one agent process.

    Only ``OPENROUTER_API_KEY`` is required.  ``DISCORD_TOKEN`` is needed to
    run the Discord connector but not for ``--check`` or library use.
    """

    model_config = SettingsConfigDict(
        # .env files are loaded by load_dotenv() in __main__ so list values
        # can be normalised first; do not set env_file here.
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------
    OPENROUTER_API_KEY: str = Field(
        ...,
        description="API key for OpenRouter (https://openrouter.ai).",
    )
    DISCORD_TOKEN: str | None = Field(
        default=None,
        description="Discord bot token.  Required to run the Discord connector.",
    )

    # ------------------------------------------------------------------
    # Character and models
    # ------------------------------------------------------------------
    CHARACTER_FILE: str = Field(
        default="characters/default.json",
        description="Path to the character JSON file.",
    )
    SMALL_MODEL: str | None = Field(
        default=None,
        description="OpenRouter model id for TEXT_SMALL calls (should-respond, reflection).",
    )
    LARGE_MODEL: str | None = Field(
        default=None,
        description="OpenRouter model id for TEXT_LARGE calls (reply generation).",
    )
    EMBEDDING_MODEL: str | None = Field(
        default=None,
        description=(
            "OpenRouter model id for embeddings.  Changing it invalidates "
            "vectors stored by earlier runs."
        ),
    )

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------
    RUN_TIMEOUT_SECONDS: float = Field(
        default=300.0,
        gt=0,
        description="Wall-clock budget for handling one inbound message.",
    )
    RESPONSE_MAX_ATTEMPTS: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Generation attempts before accepting an incomplete structured reply.",
    )
    RECENT_MESSAGE_COUNT: int = Field(
        default=20,
        ge=1,
        description="How many recent room messages providers include in prompts.",
    )

    # ------------------------------------------------------------------
    # Discord
    # ------------------------------------------------------------------
    DISCORD_CHANNEL_IDS: list[int] = Field(
        default_factory=list,
        description="Comma-separated channel ids the bot listens in.  Empty means every channel.",
    )
    DISCORD_MEMBERS_INTENT: bool = Field(
        default=False,
        description=(
            "Request the privileged Server Members intent (enable it in the developer portal "
            "first).  Needed for member join/leave sync."
        ),
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level.",
    )
    LOG_JSON_FORMAT: bool = Field(
        default=False,
        description="Emit one JSON object per log line instead of plain text.",
    )

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("DISCORD_CHANNEL_IDS", mode="before")
    @classmethod
    def _split_channel_ids(cls, value: Any) -> list[int]:
        """Accept a comma-separated string as well as a list."""
        if value is None or value == "":
            return []
        if isinstance(value, str):
            try:
                return [int(part.strip()) for part in value.split(",") if part.strip()]
            except ValueError as exc:
                raise ValueError(f"DISCORD_CHANNEL_IDS must be integers, got {value!r}") from exc
        if isinstance(value, (list, tuple)):
            return [int(v) for v in value]
        raise TypeError(
            f"DISCORD_CHANNEL_IDS must be a comma-separated string or list, got {type(value).__name__}"
        )

    @field_validator("LOG_LEVEL")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}, got {value!r}")
        return level

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    def model_overrides(self) -> dict[ModelType, str | None]:
        """Model id overrides keyed by model type, for :func:`resolve_models`."""
        return {
            ModelType.TEXT_SMALL: self.SMALL_MODEL,
            ModelType.TEXT_LARGE: self.LARGE_MODEL,
            ModelType.TEXT_EMBEDDING: self.EMBEDDING_MODEL,
        }

    _SENSITIVE_FIELDS: ClassVar[set[str]] = {"OPENROUTER_API_KEY", "DISCORD_TOKEN"}

    def __repr__(self) -> str:
        fields = []
        for name in type(self).model_fields:
            val = getattr(self, name)
            if name in self._SENSITIVE_FIELDS:
                val = "***" if val else None
            fields.append(f"{name}={val!r}")
        return f"RuntimeSettings({', '.join(fields)})"


@functools.lru_cache(maxsize=1)
def get_settings() -> RuntimeSettings:
    """Return the process-wide :class:`RuntimeSettings`, built on first call.

    Raises:
        pydantic.ValidationError: If ``OPENROUTER_API_KEY`` is missing or a
            value fails validation.
    """
    log.debug("Loading RuntimeSettings from environment.")
    return RuntimeSettings()  # type: ignore[call-arg]
