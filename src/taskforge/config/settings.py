"""
config/settings.py - Taskforge Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered: all fields are validated and typed.

  - AgentConfig carries the per-engine knobs (step budget, retry budget,
    confidence gate, reflection switch, logical model names). Every
    AgentEngine receives its own copy.
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a clear, human-readable message listing every problem
  - load_settings() respects the TASKFORGE_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_KNOWN_PROVIDERS = {"openai", "ollama"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class AgentConfig(BaseModel):
    max_steps: int = 20
    max_retries: int = 3
    timeout_seconds: float = 300.0
    enable_reflection: bool = True
    enable_memory: bool = True
    enable_progress_tracking: bool = True
    reasoning_model: str = "advanced"
    action_model: str = "advanced"
    reflection_model: str = "advanced"
    confidence_threshold: float = 0.7
    history_window: int = 5
    memory_snippets: int = 5

    @field_validator("max_steps", "history_window")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("agent.max_steps and agent.history_window must be >= 1")
        return v

    @field_validator("max_retries", "memory_snippets")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("agent.max_retries and agent.memory_snippets must be >= 0")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("agent.timeout_seconds must be > 0")
        return v

    @field_validator("confidence_threshold")
    @classmethod
    def _valid_threshold(cls, v: float) -> float:
        if not (0.0 <= v <= 1.0):
            raise ValueError("agent.confidence_threshold must be between 0.0 and 1.0")
        return v


class LLMRetryConfig(BaseModel):
    """Exponential backoff config for transient LLM errors."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0


class LLMConfig(BaseModel):
    default_provider: str = "openai"
    default_model: str = "gpt-4o"
    # Logical model name (as used in AgentConfig) -> provider model
    model_aliases: dict[str, str] = Field(
        default_factory=lambda: {"advanced": "gpt-4o", "basic": "gpt-4o-mini"}
    )
    timeout_seconds: float = 60.0
    retry: LLMRetryConfig = Field(default_factory=LLMRetryConfig)
    fallback_providers: list[str] = Field(default_factory=list)

    @field_validator("default_provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        if v not in _KNOWN_PROVIDERS:
            raise ValueError(
                f"llm.default_provider '{v}' is not supported. "
                f"Supported: {sorted(_KNOWN_PROVIDERS)}"
            )
        return v

    @field_validator("fallback_providers")
    @classmethod
    def _known_fallbacks(cls, v: list[str]) -> list[str]:
        bad = [p for p in v if p not in _KNOWN_PROVIDERS]
        if bad:
            raise ValueError(
                f"llm.fallback_providers has unknown providers: {bad}. "
                f"Supported: {sorted(_KNOWN_PROVIDERS)}"
            )
        return v

    def resolve_model(self, name: Optional[str]) -> str:
        if not name:
            return self.default_model
        return self.model_aliases.get(name, name)


class SessionConfig(BaseModel):
    max_age_hours: float = 24.0
    event_queue_size: int = 256

    @field_validator("max_age_hours")
    @classmethod
    def _positive_age(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("sessions.max_age_hours must be > 0")
        return v

    @field_validator("event_queue_size")
    @classmethod
    def _positive_queue(cls, v: int) -> int:
        if v < 1:
            raise ValueError("sessions.event_queue_size must be >= 1")
        return v


class ToolsConfig(BaseModel):
    timeout_seconds: float = 30.0
    workspace_dir: str = "./data/workspace"
    enable_workspace_tools: bool = True

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("tools.timeout_seconds must be > 0")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Taskforge runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")
    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")

    # -- Structured config (from config.yaml) --------------------------------
    agent: AgentConfig = Field(default_factory=AgentConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("agent", mode="before")
    @classmethod
    def _coerce_agent(cls, v: Any) -> Any:
        return AgentConfig(**v) if isinstance(v, dict) else v

    @field_validator("llm", mode="before")
    @classmethod
    def _coerce_llm(cls, v: Any) -> Any:
        return LLMConfig(**v) if isinstance(v, dict) else v

    @field_validator("sessions", mode="before")
    @classmethod
    def _coerce_sessions(cls, v: Any) -> Any:
        return SessionConfig(**v) if isinstance(v, dict) else v

    @field_validator("tools", mode="before")
    @classmethod
    def _coerce_tools(cls, v: Any) -> Any:
        return ToolsConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def ollama_base_url_v1(self) -> str:
        return self.ollama_base_url.rstrip("/") + "/v1"

    def api_key_for(self, provider: str) -> Optional[str]:
        if provider == "openai":
            return self.openai_api_key
        return None

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field problems Pydantic can't see (API key
        presence for the chosen provider, logical model names used by the
        agent that have no alias).
        """
        errors: list[str] = []

        # ── LLM provider API key ─────────────────────────────────────────────
        if self.llm.default_provider == "openai" and not self.openai_api_key:
            errors.append(
                "LLM provider 'openai' requires OPENAI_API_KEY to be set "
                "in your .env file."
            )

        # ── Fallback providers also need their keys ──────────────────────────
        for fp in self.llm.fallback_providers:
            if fp == "openai" and not self.openai_api_key:
                errors.append(
                    f"Fallback provider '{fp}' requires OPENAI_API_KEY but it "
                    f"is not set. Remove '{fp}' from llm.fallback_providers "
                    f"or add the key to .env."
                )

        # ── Logical model names resolve to something ─────────────────────────
        for field_name in ("reasoning_model", "action_model", "reflection_model"):
            name = getattr(self.agent, field_name)
            if not name.strip():
                errors.append(f"agent.{field_name} must not be empty.")

        for alias, target in self.llm.model_aliases.items():
            if not target.strip():
                errors.append(f"llm.model_aliases['{alias}'] maps to an empty model name.")

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nTaskforge startup failed: {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader
# ─────────────────────────────────────────────────────────────────────────────

_KNOWN_SECTIONS = {"agent", "llm", "sessions", "tools", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. TASKFORGE_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("TASKFORGE_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings by merging config.yaml with environment variables.

    No module-level cache: callers own the returned instance and pass it
    down explicitly (see kernel/bootstrap.py).
    """
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
    return Settings(**init_kwargs)
