import configparser
import json
import tomllib
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import yaml
from dotenv import dotenv_values
from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigLoadError
from .llm.prompts import DEFAULT_MODEL, SYSTEM_PROMPT
from .schemas.completion import CompletionSettings

# Extension (or --type value) -> canonical format name
FORMATS = {
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "toml": "toml",
    "env": "env",
    "ini": "ini",
    "cfg": "ini",
}

ROOT_SECTION = "slackgpt"


class Settings(BaseSettings):
    SLACK_BOT_TOKEN: str = Field(..., min_length=1, description="Slack Bot User OAuth Token (xoxb-...)")
    SLACK_APP_TOKEN: str = Field(..., min_length=1, description="Slack App-Level Token for Socket Mode (xapp-...)")
    OPENAI_API_KEY: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("OPENAI_API_KEY", "CHATGPT_KEY"),
        description="OpenAI API Key",
    )

    # Completion request
    OPENAI_MODEL: str = DEFAULT_MODEL
    SYSTEM_PROMPT: str = SYSTEM_PROMPT
    MAX_TOKENS: int = Field(1000, gt=0)
    TEMPERATURE: float = Field(0.5, ge=0.0, le=2.0)
    OPENAI_MAX_RETRIES: int = Field(2, ge=0, description="Retries done inside the OpenAI SDK")
    OPENAI_TIMEOUT_SECONDS: float = Field(60.0, gt=0)
    COMPLETION_TIMEOUT_SECONDS: float = Field(60.0, gt=0, description="Per-mention completion deadline")

    # Event bridge
    MAX_CONCURRENT_DISPATCHES: int = Field(8, gt=0)
    REPLY_IN_THREAD: bool = False
    REPLY_ON_ERROR: bool = False
    ERROR_REPLY_TEXT: str = "Sorry, I could not get an answer for that. Please try again later."
    SOCKET_HEALTH_CHECK_SECONDS: float = Field(10.0, gt=0)
    SOCKET_MAX_UNHEALTHY_CHECKS: int = Field(6, gt=0)

    # Process
    SHUTDOWN_GRACE_SECONDS: float = Field(10.0, ge=0, description="Time given to in-flight replies on shutdown")
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _upper_log_level(cls, value):
        return value.upper() if isinstance(value, str) else value

    def completion_settings(self) -> CompletionSettings:
        return CompletionSettings(
            model=self.OPENAI_MODEL,
            system_prompt=self.SYSTEM_PROMPT,
            max_tokens=self.MAX_TOKENS,
            temperature=self.TEMPERATURE,
        )

    @property
    def error_reply(self) -> Optional[str]:
        return self.ERROR_REPLY_TEXT if self.REPLY_ON_ERROR else None


def resolve_format(path: Path, config_type: Optional[str] = None) -> str:
    """Pick the config format from an explicit hint, else from the file extension."""
    name = (config_type or path.suffix.lstrip(".") or path.name.lstrip(".")).lower()
    fmt = FORMATS.get(name)
    if fmt is None:
        supported = ", ".join(sorted(set(FORMATS.values())))
        raise ConfigLoadError(f"unsupported config type {name!r} for {path} (supported: {supported})")
    return fmt


def _flatten(values: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    # {"slack": {"bot_token": ...}} -> {"SLACK_BOT_TOKEN": ...}
    flat: Dict[str, Any] = {}
    for key, value in values.items():
        name = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(_flatten(value, name))
        elif value is not None:
            flat[name.upper()] = value
    return flat


def _unwrap_root_section(values: Dict[str, Any]) -> Dict[str, Any]:
    # A [slackgpt] table or section holds top-level keys, whatever the format.
    merged = {key: value for key, value in values.items() if str(key).lower() != ROOT_SECTION}
    for key, value in values.items():
        if str(key).lower() == ROOT_SECTION and isinstance(value, dict):
            merged.update(value)
    return merged


def read_config_file(path: Union[str, Path], config_type: Optional[str] = None) -> Dict[str, Any]:
    """Read a config file into a flat dict with upper-cased keys."""
    path = Path(path)
    fmt = resolve_format(path, config_type)
    if not path.is_file():
        raise ConfigLoadError(f"config file not found: {path}")

    try:
        if fmt == "json":
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        elif fmt == "yaml":
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        elif fmt == "toml":
            with open(path, "rb") as f:
                raw = tomllib.load(f)
        elif fmt == "env":
            raw = dotenv_values(path)
        else:
            parser = configparser.ConfigParser(interpolation=None)
            parser.optionxform = str
            parser.read(path, encoding="utf-8")
            defaults = parser.defaults()
            raw = dict(defaults)
            for section in parser.sections():
                raw[section] = {
                    key: parser.get(section, key) for key in parser.options(section) if key not in defaults
                }
    except (OSError, ValueError, yaml.YAMLError, configparser.Error) as e:
        raise ConfigLoadError(f"could not parse {fmt} config {path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigLoadError(f"config {path} must contain a mapping at the top level")
    return _flatten(_unwrap_root_section(raw))


def load_settings(path: Optional[Union[str, Path]] = None, config_type: Optional[str] = None) -> Settings:
    """
    Build Settings from a config file, falling back to the environment and .env
    for anything the file does not set. Missing secrets raise ConfigLoadError.
    """
    values = read_config_file(path, config_type) if path is not None else {}
    try:
        return Settings(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigLoadError(f"invalid configuration: {problems}") from e
