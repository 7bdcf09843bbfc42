"""Runtime configuration for the turn orchestration core."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .snapshot import DEFAULT_WORK_DIR
from .state import DEFAULT_READ_EXEMPTIONS, ReadExemptions

__all__ = [
    "ConfigError",
    "ContextSettings",
    "DEFAULT_CONFIG_TEMPLATE",
    "ModelSettings",
    "ProjectSettings",
    "SessionSettings",
    "Settings",
    "load_settings",
]

DEFAULT_MAX_TOKENS = 8000

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "work_dir": DEFAULT_WORK_DIR,
        "manifest_path": "package.json",
        "status_doc": "PROJECT.md",
        "resource_index": "src/assets.json",
    },
    "read_exemptions": list(DEFAULT_READ_EXEMPTIONS),
    "context": {
        "history_window": 3,
        "diff_mode": False,
    },
    "models": {
        "default_provider": "OpenAI",
        "default_model": "gpt-5",
        "default_max_tokens": DEFAULT_MAX_TOKENS,
    },
    "session": {
        "max_steps": 20,
        "max_response_segments": 2,
        "terminal_tools": [],
    },
}


class ConfigError(ValueError):
    """Raised when a configuration file cannot be loaded or validated."""


class SettingsModel(BaseModel):
    """Base model rejecting unknown keys so typos surface early."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class ProjectSettings(SettingsModel):
    work_dir: str = DEFAULT_WORK_DIR
    manifest_path: str = "package.json"
    status_doc: str = "PROJECT.md"
    resource_index: str = "src/assets.json"


class ContextSettings(SettingsModel):
    history_window: int = Field(default=3, ge=1)
    diff_mode: bool = False


class ModelSettings(SettingsModel):
    default_provider: str = "OpenAI"
    default_model: str = "gpt-5"
    default_max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0)


class SessionSettings(SettingsModel):
    max_steps: int = Field(default=20, ge=1)
    max_response_segments: int = Field(default=2, ge=1)
    terminal_tools: List[str] = Field(default_factory=list)


class Settings(SettingsModel):
    """Top-level settings object consumed by the controller and tools."""

    project: ProjectSettings = Field(default_factory=ProjectSettings)
    read_exemptions: List[str] = Field(default_factory=lambda: list(DEFAULT_READ_EXEMPTIONS))
    context: ContextSettings = Field(default_factory=ContextSettings)
    models: ModelSettings = Field(default_factory=ModelSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)

    @field_validator("read_exemptions", mode="before")
    @classmethod
    def _coerce_exemptions(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "Settings":
        """Validate ``data`` layered over the defaults."""
        merged = _deep_merge(copy.deepcopy(DEFAULT_CONFIG_TEMPLATE), data or {})
        try:
            return cls.model_validate(merged)
        except ValidationError as error:
            raise ConfigError(f"Invalid configuration: {error}") from error

    def exemptions(self) -> ReadExemptions:
        return ReadExemptions.from_patterns(self.read_exemptions)


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            base[key] = _deep_merge(current, value)
        else:
            base[key] = value
    return base


def load_settings(path: Path | str | None = None) -> Settings:
    """Load settings from a YAML file, falling back to defaults when ``path`` is None."""
    if path is None:
        return Settings.from_mapping({})
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Config file {config_path} is not valid YAML: {error}") from error
    if not isinstance(data, Mapping):
        raise ConfigError(f"Expected mapping at top level of {config_path}")
    return Settings.from_mapping(data)
