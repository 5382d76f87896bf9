"""Run configuration: YAML file, environment and CLI overrides."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from .mcp_bridge import DEFAULT_COMMAND
from .schema import ContrastPolicy

DEFAULT_CONFIG_FILE = Path("config/fixer.yaml")

# Environment variable -> settings field
ENV_OVERRIDES = {
    "A11Y_FIXER_MODEL": "model",
    "A11Y_FIXER_MAX_ITERATIONS": "max_iterations",
    "A11Y_FIXER_CONTRAST_POLICY": "contrast_policy",
}


class ConfigError(RuntimeError):
    """Required configuration is missing or invalid."""


class FixerSettings(BaseModel):
    model: str = "gpt-4"
    temperature: float = 0.1
    max_tokens: int = 2000
    max_iterations: int = 5
    api_key_env: str = "OPENAI_API_KEY"
    server_command: List[str] = list(DEFAULT_COMMAND)
    request_timeout_s: float = 60.0
    require_server: bool = False
    contrast_policy: ContrastPolicy = ContrastPolicy.SKIP
    wcag_tags: List[str] = ["wcag2aa"]
    # Resolved from ``api_key_env``; never written to results files
    api_key: Optional[str] = None

    @field_validator("max_iterations")
    @classmethod
    def _positive_iterations(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_iterations must be >= 1")
        return v

    def public_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"api_key"})


def load_settings(
    config_file: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
    require_api_key: bool = True,
) -> FixerSettings:
    """Merge defaults < YAML file < environment < explicit overrides.

    Raises ConfigError when the file is unreadable, a value is invalid or the
    API key is missing.
    """
    data: Dict[str, Any] = {}
    path = Path(config_file) if config_file is not None else DEFAULT_CONFIG_FILE
    if path.exists():
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        data.update(loaded)
    elif config_file is not None:
        raise ConfigError(f"Config file not found: {path}")

    for env_name, field in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            data[field] = value
    data.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        settings = FixerSettings(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    if settings.api_key is None:
        settings.api_key = os.environ.get(settings.api_key_env) or None
    if require_api_key and not settings.api_key:
        raise ConfigError(f"{settings.api_key_env} environment variable is required")
    return settings
