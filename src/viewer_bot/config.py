"""Configuration loading and validation."""

from enum import Enum
from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BOT_PROMPT = (
    "You are ViewerAIBot, a friendly chat bot engaging with Twitch chat and the "
    "streamer, {STREAMER_NAME}. Respond using emojis and twitch messages. When asked "
    "a question, answer it directly. Occasionally roast the chatters and/or the streamer. "
)

GLOBAL_PROMPT_SUFFIX = (
    "Based on the recent messages, generate a natural, engaging response. "
    "Respond naturally as a Twitch chat bot. Keep responses short (1-3 lines) and "
    "casual, emojis welcome. Do not respond to yourself and do not greet people again "
    "if you already did. Prioritize responding to the most recent or unanswered "
    "messages first. Avoid any metadata formatting aside from the response, and do "
    "not repeat your own name or prefix responses with your name."
)


class PriorityPolicy(str, Enum):
    """Which stored message a reply should address."""

    TRIGGER = "trigger"
    OLDEST_UNANSWERED = "oldest_unanswered"


class TwitchConfig(BaseModel):
    """Twitch application and EventSub configuration."""

    client_id: str = ""
    client_secret: SecretStr | None = None
    webhook_secret: SecretStr | None = None
    bot_user_id: str = ""
    callback_url: str = "http://localhost:3000/api/twitch/webhook"
    api_base: str = "https://api.twitch.tv/helix"
    auth_base: str = "https://id.twitch.tv/oauth2"
    scopes: list[str] = Field(default_factory=lambda: ["user:read:chat", "user:bot", "user:write:chat"])
    token_refresh_buffer_seconds: Annotated[int, Field(ge=0)] = 60


class LLMConfig(BaseModel):
    """Completion provider configuration."""

    anthropic_api_key: SecretStr | None = None
    model: str = "claude-haiku-4-5-20251001"
    max_tokens: Annotated[int, Field(ge=1)] = 100
    temperature: Annotated[float, Field(ge=0.0, le=1.0)] = 0.7


class ChatConfig(BaseModel):
    """Chat interaction behaviour."""

    default_cooldown_seconds: Annotated[int, Field(ge=1, le=300)] = 6
    message_window: Annotated[int, Field(ge=1)] = 10  # events fetched from the store
    context_size: Annotated[int, Field(ge=1)] = 10  # user/assistant turns sent to the model
    spam_keywords: list[str] = Field(
        default_factory=lambda: ["cheap viewers", "followers.online", "followers.ru"]
    )
    default_prompt: str = DEFAULT_BOT_PROMPT
    global_prompt_suffix: str = GLOBAL_PROMPT_SUFFIX
    anonymous_name: str = "anonymous"
    priority_policy: PriorityPolicy = PriorityPolicy.TRIGGER


class PacingConfig(BaseModel):
    """Artificial typing delay before a reply is posted."""

    base_thinking_ms: Annotated[float, Field(ge=0.0)] = 500.0
    chars_per_second: Annotated[float, Field(gt=0.0)] = 7.0
    variation: Annotated[float, Field(ge=0.0, le=1.0)] = 0.2
    min_delay_ms: Annotated[float, Field(ge=0.0)] = 300.0
    max_delay_ms: Annotated[float, Field(ge=0.0)] = 3000.0


class RateLimitConfig(BaseModel):
    """Sliding-window limit for the token endpoint."""

    window_seconds: Annotated[float, Field(gt=0.0)] = 60.0
    max_requests: Annotated[int, Field(ge=1)] = 30


class TranscriptConfig(BaseModel):
    """Live transcription buffering."""

    flush_delay_seconds: Annotated[float, Field(gt=0.0)] = 2.0


class StorageConfig(BaseModel):
    """SQLite storage locations."""

    database_path: Path = Path("./data/viewer_bot.db")
    traces_path: Path = Path("./data/traces.db")
    max_messages_per_channel: Annotated[int, Field(ge=10)] = 1000
    keep_traces: Annotated[int, Field(ge=1)] = 500


class ServerConfig(BaseModel):
    """HTTP server binding."""

    host: str = "127.0.0.1"
    port: int = 3000


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="VIEWER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    twitch: TwitchConfig = Field(default_factory=TwitchConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    pacing: PacingConfig = Field(default_factory=PacingConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    transcript: TranscriptConfig = Field(default_factory=TranscriptConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (VIEWER_* prefix)
    2. YAML config file
    3. Default values

    Args:
        config_path: Path to YAML config file. If None, tries ./config.yaml

    Returns:
        Validated configuration object
    """
    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    yaml_config: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}

    # "chat:" with no values parses as None
    yaml_config = {k: v for k, v in yaml_config.items() if v is not None}

    return Config(**yaml_config)
