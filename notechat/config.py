"""
Configuration constants and Pydantic models for notechat.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# DEFAULTS - User-configurable via notechat.yaml
# ─────────────────────────────────────────────────────────────────────

DEFAULT_PROVIDER_ID: str = "ollama"
DEFAULT_TEMPERATURE: float = 0.7
DEFAULT_MAX_TOKENS: int = 2048
DEFAULT_SYSTEM_PROMPT: str = (
    "You are a helpful assistant working inside the user's notes. "
    "Answer concisely and use Markdown."
)
DEFAULT_COMMAND_TEMPERATURE: float = 0.2
DEFAULT_HISTORY_DIR: str = ".notechat/chat-history"
DEFAULT_CONFIG_FILE: str = "notechat.yaml"


# ─────────────────────────────────────────────────────────────────────
# INTERNAL CONSTANTS - Not exposed in the settings file
# ─────────────────────────────────────────────────────────────────────

MODEL_LIST_TIMEOUT_SECONDS: float = 10.0
ANTHROPIC_API_VERSION: str = "2023-06-01"
GENERATING_PLACEHOLDER: str = "✍️"

PROVIDER_NAMES: dict[str, str] = {
    "ollama": "🦙 Ollama (Local)",
    "openai": "🤖 OpenAI (GPT)",
    "anthropic": "🧠 Anthropic (Claude)",
    "groq": "⚡ Groq (Fast)",
    "gemini": "✨ Google Gemini",
}


# ─────────────────────────────────────────────────────────────────────
# DATA MODELS
# ─────────────────────────────────────────────────────────────────────

class ProviderSettings(BaseModel):
    """Configuration for one provider."""
    enabled: bool = False
    api_key: str = ""
    base_url: Optional[str] = None  # None = vendor default endpoint
    default_model: str = ""


class ProviderConfig(BaseModel):
    """Per-provider settings, keyed by provider id."""
    ollama: ProviderSettings = Field(default_factory=lambda: ProviderSettings(
        enabled=True, base_url="http://localhost:11434", default_model="llama2"
    ))
    openai: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(default_model="gpt-3.5-turbo")
    )
    anthropic: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(default_model="claude-3-haiku-20240307")
    )
    groq: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(default_model="llama2-70b-4096")
    )
    gemini: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(default_model="gemini-1.5-pro")
    )

    def get(self, provider_id: str) -> Optional[ProviderSettings]:
        return getattr(self, provider_id, None) if provider_id in PROVIDER_NAMES else None


class PromptCommand(BaseModel):
    """A canned prompt run over a document or selection."""
    name: str
    prompt: str
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=1.0)


DEFAULT_COMMANDS: list[PromptCommand] = [
    PromptCommand(name="Summarize", prompt="Summarize the following text in a few bullet points."),
    PromptCommand(name="Explain simply", prompt="Explain the following text in simple terms."),
    PromptCommand(name="Rewrite", prompt="Rewrite the following text to be clearer and more concise."),
    PromptCommand(name="Key points", prompt="List the key points of the following text."),
]


class Settings(BaseModel):
    """Complete application settings."""
    providers: ProviderConfig = Field(default_factory=ProviderConfig)
    active_provider: str = DEFAULT_PROVIDER_ID
    chat_system_prompt: str = DEFAULT_SYSTEM_PROMPT
    chat_temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=1.0)
    chat_max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0)
    save_history: bool = True
    history_dir: str = DEFAULT_HISTORY_DIR
    commands: list[PromptCommand] = Field(default_factory=lambda: list(DEFAULT_COMMANDS))

    def find_command(self, name: str) -> Optional[PromptCommand]:
        lowered = name.lower()
        for command in self.commands:
            if command.name.lower() == lowered:
                return command
        return None


# ─────────────────────────────────────────────────────────────────────
# ENVIRONMENT LOADING
# ─────────────────────────────────────────────────────────────────────

# Environment variable -> (provider id, settings field)
PROVIDER_ENV_VARS: dict[str, tuple[str, str]] = {
    "OLLAMA_URL": ("ollama", "base_url"),
    "OLLAMA_MODEL": ("ollama", "default_model"),
    "OPENAI_API_KEY": ("openai", "api_key"),
    "OPENAI_BASE_URL": ("openai", "base_url"),
    "ANTHROPIC_API_KEY": ("anthropic", "api_key"),
    "GROQ_API_KEY": ("groq", "api_key"),
    "GEMINI_API_KEY": ("gemini", "api_key"),
}


def get_config_path() -> Path:
    """
    Get settings file path from environment or default.

    Set NOTECHAT_CONFIG in .env (default: ./notechat.yaml).
    """
    return Path(os.environ.get("NOTECHAT_CONFIG", DEFAULT_CONFIG_FILE))


def apply_env_overrides(settings: Settings) -> Settings:
    """
    Overlay environment variables onto loaded settings.

    An API key supplied through the environment also enables its provider.
    """
    data = settings.model_dump()
    for var, (provider_id, field_name) in PROVIDER_ENV_VARS.items():
        value = os.environ.get(var, "").strip()
        if not value:
            continue
        data["providers"][provider_id][field_name] = value
        if field_name == "api_key":
            data["providers"][provider_id]["enabled"] = True

    provider = os.environ.get("NOTECHAT_PROVIDER", "").strip()
    if provider:
        data["active_provider"] = provider
    history_dir = os.environ.get("NOTECHAT_HISTORY_DIR", "").strip()
    if history_dir:
        data["history_dir"] = history_dir
    return Settings.model_validate(data)


def _merge(base: dict, override: dict) -> dict:
    """Recursively overlay override onto base (nested dicts merge, rest replaces)."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path: Optional[Path] = None) -> Settings:
    """
    Load settings from YAML, then apply environment overrides.

    File values are merged over the defaults, so a file may name only the
    fields it changes. A missing file means defaults. Malformed YAML raises ValueError;
    schema violations raise pydantic.ValidationError.
    """
    path = Path(path) if path is not None else get_config_path()
    data: dict = {}
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid settings file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Invalid settings file {path}: expected a mapping")
        logger.debug("Loaded settings from %s", path)
    merged = _merge(Settings().model_dump(), data)
    return apply_env_overrides(Settings.model_validate(merged))
