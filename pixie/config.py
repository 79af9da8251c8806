# pixie/config.py
"""
Configuration for Pixie.

All configuration flows through this module. Values are loaded from environment
variables (and a ``.env`` file at the project root) and validated with
Pydantic. Each concern gets its own settings class; ``PixieConfig`` composes
them and is the only object the rest of the program receives.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import structlog
from pydantic import BeforeValidator, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings

from pixie.errors import ConfigurationError

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above pixie/ package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

# Billing multipliers per model family. Keys are matched as case-insensitive
# substrings of the model id reported by the API.
DEFAULT_MODEL_MULTIPLIERS: dict[str, float] = {
    "haiku": 0.33,
    "sonnet": 1.0,
    "opus": 3.0,
}


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of stripped, non-empty strings.

    Accepts:
      - A single int or str  → ["value"]
      - Comma-separated str  → ["a", "b"]
      - JSON array str       → (parsed by pydantic-settings before this runs)
      - An existing list     → passthrough with str coercion
    """
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, (int, float)):
        return [str(int(value))]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if "," in stripped:
            return [part.strip() for part in stripped.split(",") if part.strip()]
        return [stripped]
    return []


StrList = Annotated[list[str], BeforeValidator(_coerce_str_list)]


class AnthropicConfig(BaseSettings):
    """Connection and model settings for the Claude runtime."""

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    auth_token: Optional[str] = Field(None, alias="ANTHROPIC_AUTH_TOKEN")
    max_tokens: int = Field(8192, alias="PIXIE_MAX_TOKENS")
    request_timeout_seconds: float = Field(120.0, alias="PIXIE_REQUEST_TIMEOUT_SECONDS")
    max_tool_rounds: int = Field(25, alias="PIXIE_MAX_TOOL_ROUNDS")
    retry_max_retries: int = Field(3, alias="PIXIE_RETRY_MAX_RETRIES")
    retry_base_delay: float = Field(0.5, alias="PIXIE_RETRY_BASE_DELAY")
    retry_max_delay: float = Field(8.0, alias="PIXIE_RETRY_MAX_DELAY")
    model_multipliers: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_MODEL_MULTIPLIERS),
        alias="PIXIE_MODEL_MULTIPLIERS",
    )
    # Empty = offer every model the API lists.
    model_allowlist: StrList = Field(default_factory=list, alias="PIXIE_MODEL_ALLOWLIST")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def require_credentials(self) -> "AnthropicConfig":
        if self.api_key or self.auth_token:
            return self
        raise ValueError(
            "No authentication configured. Set ANTHROPIC_API_KEY or ANTHROPIC_AUTH_TOKEN."
        )

    @model_validator(mode="after")
    def normalize_limits(self) -> "AnthropicConfig":
        self.max_tokens = max(1, int(self.max_tokens))
        self.request_timeout_seconds = max(1.0, float(self.request_timeout_seconds))
        self.max_tool_rounds = max(1, int(self.max_tool_rounds))
        self.retry_max_retries = max(0, int(self.retry_max_retries))
        self.model_multipliers = {
            str(key).strip().lower(): max(0.0, float(value))
            for key, value in self.model_multipliers.items()
            if str(key).strip()
        }
        return self


class TelegramConfig(BaseSettings):
    """Configuration for the Telegram operator channel."""

    bot_token: Optional[str] = Field(None, alias="TELEGRAM_BOT_TOKEN")
    authorized_user_id: Optional[str] = Field(None, alias="TELEGRAM_AUTHORIZED_USER_ID")
    # Maximum concurrent updates PTB will process in parallel (0 = sequential).
    concurrent_updates: int = Field(8, alias="TELEGRAM_CONCURRENT_UPDATES")

    model_config = {
        "env_file": _ENV_FILE,
        "extra": "ignore",
        "populate_by_name": True,
        "env_ignore_empty": True,
    }

    @model_validator(mode="after")
    def require_identity(self) -> "TelegramConfig":
        token = (self.bot_token or "").strip().strip("'\"")
        user_id = (self.authorized_user_id or "").strip()
        missing = [
            name
            for name, value in (
                ("TELEGRAM_BOT_TOKEN", token),
                ("TELEGRAM_AUTHORIZED_USER_ID", user_id),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Missing required setting(s): {', '.join(missing)}.")
        if not user_id.lstrip("-").isdigit():
            raise ValueError("TELEGRAM_AUTHORIZED_USER_ID must be a numeric Telegram user id.")
        self.bot_token = token
        self.authorized_user_id = user_id
        self.concurrent_updates = max(0, int(self.concurrent_updates))
        return self


class AssistantConfig(BaseSettings):
    """Paths, timeouts and behaviour of the assistant process itself."""

    data_dir: Path = Field(Path("./pixie_data"), alias="PIXIE_DATA_DIR")
    skills_dir: Path = Field(Path("./skills"), alias="PIXIE_SKILLS_DIR")
    persona_file: Optional[Path] = Field(None, alias="PIXIE_PERSONA_FILE")
    working_dir: Path = Field(Path("."), alias="PIXIE_WORKING_DIR")
    # Source paths watched for self-modification (relative to working_dir).
    watch_paths: StrList = Field(default_factory=lambda: ["pixie"], alias="PIXIE_WATCH_PATHS")
    primary_session_id: str = Field("pixie-primary", alias="PIXIE_PRIMARY_SESSION_ID")
    reply_timeout_seconds: float = Field(120.0, alias="PIXIE_REPLY_TIMEOUT_SECONDS")
    delegate_timeout_seconds: float = Field(60.0, alias="PIXIE_DELEGATE_TIMEOUT_SECONDS")
    shutdown_grace_seconds: float = Field(0.1, alias="PIXIE_SHUTDOWN_GRACE_SECONDS")
    tool_timeout_seconds: float = Field(60.0, alias="PIXIE_TOOL_TIMEOUT_SECONDS")
    log_level: str = Field("INFO", alias="PIXIE_LOG_LEVEL")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "AssistantConfig":
        self.reply_timeout_seconds = max(1.0, float(self.reply_timeout_seconds))
        self.delegate_timeout_seconds = max(1.0, float(self.delegate_timeout_seconds))
        self.shutdown_grace_seconds = max(0.0, float(self.shutdown_grace_seconds))
        self.tool_timeout_seconds = max(1.0, float(self.tool_timeout_seconds))
        self.log_level = self.log_level.strip().upper() or "INFO"
        return self

    @property
    def delegates_dir(self) -> Path:
        return self.data_dir / "delegates"

    @property
    def notes_dir(self) -> Path:
        return self.data_dir / "notes"

    @property
    def tools_dir(self) -> Path:
        return self.data_dir / "tools"

    @property
    def usage_dir(self) -> Path:
        return self.data_dir / "usage"

    @property
    def request_log_path(self) -> Path:
        return self.usage_dir / "requests.jsonl"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    def resolved_watch_paths(self) -> list[Path]:
        return [
            path if path.is_absolute() else self.working_dir / path
            for path in (Path(p) for p in self.watch_paths)
        ]


def _resolve(p: Path) -> Path:
    if p.is_absolute():
        return p
    return (_PROJECT_ROOT / p).resolve()


class PixieConfig:
    """
    Master configuration that composes all settings classes.

    Construction validates every section; any failure is re-raised as a
    single ``ConfigurationError`` so the entry point can report it and exit.
    """

    def __init__(self, *, require_credentials: bool = True):
        try:
            self.assistant = AssistantConfig()
            if require_credentials:
                self.anthropic = AnthropicConfig()
                self.telegram = TelegramConfig()
        except ValidationError as exc:
            raise ConfigurationError(_describe_validation_error(exc)) from exc

        self.assistant.data_dir = _resolve(self.assistant.data_dir)
        self.assistant.skills_dir = _resolve(self.assistant.skills_dir)
        self.assistant.working_dir = _resolve(self.assistant.working_dir)
        if self.assistant.persona_file is not None:
            self.assistant.persona_file = _resolve(self.assistant.persona_file)

        self.assistant.data_dir.mkdir(parents=True, exist_ok=True)

    def __repr__(self) -> str:
        return (
            f"PixieConfig(data_dir={self.assistant.data_dir}, "
            f"reply_timeout={self.assistant.reply_timeout_seconds}s)"
        )


def _describe_validation_error(exc: ValidationError) -> str:
    messages = []
    for err in exc.errors():
        msg = str(err.get("msg", "invalid value"))
        messages.append(msg.removeprefix("Value error, "))
    return "; ".join(messages) or str(exc)
