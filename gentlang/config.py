"""Runtime settings from the process environment and an optional `.gent.env` file."""
from __future__ import annotations
import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError

ENV_FILE = ".gent.env"

# setting name -> environment variable
ENV_VARS = {
    "openai_api_key": "OPENAI_API_KEY",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "default_provider": "GENT_DEFAULT_PROVIDER",
    "default_model": "GENT_DEFAULT_MODEL",
    "mock": "GENT_MOCK",
    "mock_response": "GENT_MOCK_RESPONSE",
    "claude_bin": "GENT_CLAUDE_BIN",
    "provider_timeout": "GENT_PROVIDER_TIMEOUT",
}


class GentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    default_provider: str = "openai"
    default_model: Optional[str] = None
    mock: bool = False
    mock_response: Optional[str] = None
    claude_bin: str = "claude"
    provider_timeout: float = Field(default=300.0, gt=0)

    @field_validator("default_provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return str(v).strip().lower()

    @field_validator("mock", mode="before")
    @classmethod
    def parse_flag(cls, v: object) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("1", "true", "yes", "on")
        return bool(v)

    @classmethod
    def load(cls, env_file: Optional[str | Path] = ENV_FILE,
             environ: Optional[Mapping[str, str]] = None, **overrides: object) -> "GentConfig":
        """Merge `.gent.env` (if present), then the environment, then explicit overrides."""
        merged = {}
        if env_file is not None and Path(env_file).is_file():
            merged.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        merged.update(os.environ if environ is None else environ)
        data = {field: merged[var] for field, var in ENV_VARS.items() if merged.get(var)}
        data.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from None
