from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from prompter_live.llm.settings import LLMSettings

DEFAULT_SYSTEM_INSTRUCTION = (
    "You reply to viewer comments on behalf of a live streamer. "
    "Answer kindly and briefly, in plain text, matching the mood of the stream."
)


class AppSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    dry_run: bool = False


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int = 5


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = "data/logs/prompter-live.log"
    rotation: FileRotationSettings = Field(default_factory=FileRotationSettings)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = "INFO"
    file: FileLoggingSettings = Field(default_factory=FileLoggingSettings)


class YouTubeSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    channel_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    token_path: str = "data/auth/token.json"
    oauth_port: int = 8080
    oauth_timeout_seconds: float = 300
    request_timeout_seconds: float = 15


class AISettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    llm: LLMSettings = Field(default_factory=LLMSettings)

    system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION
    comment_template: str = "{author} says: {text}"

    # "aggregate" emits one chunk per reply, "delta" one chunk per streamed piece.
    chunk_mode: Literal["aggregate", "delta"] = "aggregate"
    exchange_timeout_seconds: float = 60
    max_history_turns: int = 20
    halt_on_error: bool = False


class PipelineSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    poll_interval_seconds: float = 5
    max_retries: int = Field(default=3, ge=1)
    initial_backoff_seconds: float = Field(default=1, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    comment_length_cap: int = 500
    truncation_suffix: str = "..."

    rediscovery_interval_seconds: float = 30
    retention_seconds: float = 3600

    @model_validator(mode="after")
    def _check_cap(self) -> "PipelineSettings":
        if self.comment_length_cap < len(self.truncation_suffix):
            raise ValueError(
                f"comment_length_cap ({self.comment_length_cap}) must be at least the truncation suffix length "
                f"({len(self.truncation_suffix)})"
            )
        return self


class AppConfig(BaseModel):
    """Effective runtime configuration after applying all precedence rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    app: AppSettings = Field(default_factory=AppSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    youtube: YouTubeSettings = Field(default_factory=YouTubeSettings)
    ai: AISettings = Field(default_factory=AISettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)


@dataclass(frozen=True, slots=True)
class CliOverrides:
    """Values given on the command line; None means the flag was not used."""

    channel_id: Optional[str] = None
    oauth_port: Optional[int] = None
    poll_interval_seconds: Optional[float] = None
    api_key: Optional[str] = None
    model: Optional[str] = None
    system_instruction: Optional[str] = None
    comment_length_cap: Optional[int] = None
    dry_run: Optional[bool] = None


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """Inputs for a configuration loader; `overrides` win over every other source."""

    yaml_path: str = "data/config/config.yaml"
    yaml_optional: bool = False
    env_prefix: str = "PROMPTER__"
    dotenv_path: Optional[str] = ".env"
    overrides: CliOverrides = field(default_factory=CliOverrides)
