"""Configuration management for the patch notes bot."""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import boto3
from botocore.exceptions import ClientError

from .exceptions import ConfigError
from .logging_config import create_execution_logger

FEED_KINDS = ("html", "rss", "json")

TRUE_VALUES = ("1", "true", "yes", "on")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in TRUE_VALUES


@dataclass
class DiscordConfig:
    """Configuration for the Discord channel publisher."""

    bot_token: str
    channel_id: str
    api_base: str = "https://discord.com/api/v10"
    message_limit: int = 2000
    slice_size: int = 1900
    retry_attempts: int = 3
    backoff_factor: float = 2.0
    pacing_seconds: float = 1.0
    min_retry_after_ms: int = 1000
    max_rate_limit_retries: int | None = None
    history_depth: int = 20


@dataclass
class FeedSource:
    """One upstream news source, tried in configured order."""

    kind: str
    url: str
    language: str | None = None
    link_pattern: str = r"/news/updates/"
    content_class: str = "patchnotes"
    content_id: str = "patchnotes"
    app_id: str | None = None
    # Overrides the selector's dedicated update path for this source only
    update_path_pattern: str | None = None
    enabled: bool = True


@dataclass
class SelectorConfig:
    """Configuration for the update acceptance heuristic."""

    product_names: list[str] = field(
        default_factory=lambda: ["Counter-Strike 2", "CS2"]
    )
    keywords: list[str] = field(
        default_factory=lambda: ["update", "patch", "release notes", "client update"]
    )
    update_path_pattern: str = r"/news/updates/"
    news_post_patterns: list[str] = field(
        default_factory=lambda: [
            r"/news/post/",
            r"/news/app/",
            r"/announcements/detail/",
            r"/newsentry/",
        ]
    )


@dataclass
class MessageConfig:
    """Configuration for the posted message header."""

    header_text: str = "New CS2 update!"
    custom_emoji: str = ""
    startup_message: str = ""


class Config:
    """Main configuration manager."""

    # Default feeds file path
    FEEDS_FILE = "feeds.json"
    DEFAULT_MARKER_FILE = ".last_update_marker.json"
    DEFAULT_POLL_SECONDS = 300

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.channel_id = os.getenv("DISCORD_CHANNEL_ID", "").strip()
        self.bot_token = os.getenv("DISCORD_BOT_TOKEN", "").strip()
        self.discord_secret_name = os.getenv("DISCORD_SECRET_NAME", "").strip()
        self.feeds_file = os.getenv("FEEDS_FILE", self.FEEDS_FILE)
        self.aws_region = os.getenv(
            "CURRENT_AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")
        )
        self.marker_table = os.getenv("MARKER_TABLE", "").strip()
        self.marker_key = os.getenv("MARKER_KEY", "latest-update")
        self.marker_file = os.getenv("MARKER_FILE", self.DEFAULT_MARKER_FILE)
        self.force_post_on_boot = _env_flag("FORCE_POST_ON_BOOT")
        self.debug = _env_flag("DEBUG")
        self.log_level = "DEBUG" if self.debug else os.getenv("LOG_LEVEL", "INFO")
        self.poll_seconds = self._int_env("POLL_SECONDS", self.DEFAULT_POLL_SECONDS)

    def _int_env(self, name: str, default: int) -> int:
        raw = os.getenv(name, "").strip()
        if not raw:
            return default
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {raw!r}")

    def _feeds_path(self) -> Path:
        feeds_file = Path(self.feeds_file)
        if not feeds_file.exists() and not feeds_file.is_absolute():
            # Try in Lambda root directory
            feeds_file = Path("/var/task") / self.feeds_file
        return feeds_file

    def get_feed_sources(self) -> list[FeedSource]:
        """Get enabled feed sources from the feeds file, in fallback order."""
        feeds_file = self._feeds_path()
        if not feeds_file.exists():
            raise ConfigError(f"Feeds file not found: {self.feeds_file}")

        try:
            with open(feeds_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in feeds file: {e}")
        except OSError as e:
            raise ConfigError(f"Error reading feeds file: {e}")

        sources = []
        for entry in data.get("feeds", []):
            if not entry.get("enabled", True) or "url" not in entry:
                continue
            kind = entry.get("type", "rss")
            if kind not in FEED_KINDS:
                raise ConfigError(
                    f"Unknown feed type {kind!r} for {entry['url']}; "
                    f"expected one of {', '.join(FEED_KINDS)}"
                )
            known = {k: v for k, v in entry.items() if k in FeedSource.__dataclass_fields__}
            known.pop("kind", None)
            pattern = known.get("update_path_pattern")
            if pattern:
                try:
                    re.compile(pattern)
                except re.error as e:
                    raise ConfigError(
                        f"Invalid update_path_pattern for {entry['url']}: {e}"
                    )
            sources.append(FeedSource(kind=kind, **known))

        if not sources:
            raise ConfigError("No enabled feeds found in feeds file")

        return sources

    def get_discord_config(self, bot_token: str | None = None) -> DiscordConfig:
        """Get Discord configuration."""
        return DiscordConfig(
            bot_token=bot_token or self.bot_token,
            channel_id=self.channel_id,
        )

    def get_selector_config(self) -> SelectorConfig:
        """Get selector configuration, with product names overridable."""
        selector = SelectorConfig()
        raw_names = os.getenv("PRODUCT_NAMES", "")
        names = [name.strip() for name in raw_names.split(",") if name.strip()]
        if names:
            selector.product_names = names
        return selector

    def get_message_config(self) -> MessageConfig:
        """Get message header configuration."""
        message = MessageConfig()
        message.header_text = os.getenv("HEADER_TEXT", message.header_text)
        message.custom_emoji = os.getenv("CUSTOM_EMOJI", "").strip()
        message.startup_message = os.getenv("STARTUP_MESSAGE", "").strip()
        return message

    def validate(self) -> None:
        """Fail fast when required settings are absent.

        Raises:
            ConfigError: listing every missing or invalid value
        """
        problems = []
        if not self.channel_id:
            problems.append("DISCORD_CHANNEL_ID is not set")
        if not self.bot_token and not self.discord_secret_name:
            problems.append("DISCORD_BOT_TOKEN or DISCORD_SECRET_NAME must be set")
        try:
            self.get_feed_sources()
        except ConfigError as e:
            problems.append(str(e))
        if self.poll_seconds <= 0:
            problems.append("POLL_SECONDS must be positive")

        if problems:
            raise ConfigError("Invalid configuration: " + "; ".join(problems))


def get_discord_token(secret_name: str, aws_region: str, execution_id: str) -> str:
    """
    Retrieve the Discord bot token from AWS Secrets Manager.

    Supports both plain string and JSON secret formats and never logs the
    secret value.

    Args:
        secret_name: Name of the secret in Secrets Manager
        aws_region: AWS region for Secrets Manager client
        execution_id: Execution ID for logging context

    Returns:
        Discord bot token

    Raises:
        ConfigError: If the secret cannot be retrieved or holds no token
    """
    secrets_logger = create_execution_logger("secrets_manager", execution_id)

    if not secret_name or not secret_name.strip():
        raise ConfigError("Secret name cannot be empty")

    try:
        secrets_logger.info(
            f"Retrieving Discord token from Secrets Manager: {secret_name}"
        )
        secrets_client = boto3.client("secretsmanager", region_name=aws_region)
        response = secrets_client.get_secret_value(SecretId=secret_name)
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        secrets_logger.error(
            f"AWS Secrets Manager error retrieving {secret_name}: {error_code}"
        )
        raise ConfigError(f"Failed to retrieve secret {secret_name}") from e

    secret_value = response.get("SecretString", "")
    if not secret_value or not secret_value.strip():
        raise ConfigError(f"Secret {secret_name} contains empty value")

    try:
        secret_data = json.loads(secret_value)
    except json.JSONDecodeError:
        secrets_logger.info("Retrieved token from plain text secret")
        return secret_value.strip()

    if not isinstance(secret_data, dict):
        raise ConfigError(f"JSON secret {secret_name} must be an object")

    for key in ["token", "bot_token", "discord_token", "discord_bot_token"]:
        value = secret_data.get(key)
        if isinstance(value, str) and value.strip():
            secrets_logger.info("Retrieved token from JSON secret")
            return value.strip()

    raise ConfigError(f"No token found in JSON secret {secret_name}")


def resolve_bot_token(config: Config, execution_id: str) -> str:
    """Return the bot token from the environment or Secrets Manager."""
    if config.bot_token:
        return config.bot_token
    return get_discord_token(config.discord_secret_name, config.aws_region, execution_id)
