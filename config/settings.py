"""
Configuration loader for the guideline engine.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Be brief, accurate and use the available "
    "tools if you need them. Always respond in the message's language. "
    "Follow the behavioral guidelines provided below."
)


@dataclass
class LLMConfig:
    provider: str = "openai"
    base_url: str = ""                          # OpenAI-compatible endpoint, empty = api.openai.com
    api_key: str = ""
    model: str = "qwen2.5:7b-instruct"
    temperature: float = 0.0
    max_tokens: int = 300
    embed_model: str = "bge-m3"
    embed_url: str = "http://localhost:11434/api/embed"
    embed_timeout: float = 30.0


@dataclass
class GuidelinesConfig:
    fuzzy_match_count: int = 3                  # top-K nearest guidelines considered
    similarity_threshold: float = 0.8           # minimum cosine similarity
    catalog_path: str = ""                      # optional YAML catalog loaded at startup


@dataclass
class DatabaseConfig:
    store_backend: str = "memory"               # "memory" | "file"
    store_file_dir: str = "./data"              # directory for file backend
    history_limit: int = 6                      # messages loaded with a chat


@dataclass
class AgentConfig:
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    extract_information: bool = True            # proactive slot extraction each turn
    summarize: bool = True                      # rolling chat summary after each turn
    professionals_path: str = ""                # optional YAML directory for the booking tools


@dataclass
class Settings:
    app_name: str = "GuidelineEngine"
    debug: bool = False
    llm: LLMConfig = field(default_factory=LLMConfig)
    guidelines: GuidelinesConfig = field(default_factory=GuidelinesConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)


_settings: Optional[Settings] = None

ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _expand_env(obj: Any) -> Any:
    """Substitute ${VAR} in every string of a decoded YAML tree; unknown vars stay as-is."""
    if isinstance(obj, str):
        return ENV_VAR_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(0)), obj)
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    return obj


def _build_section(cls: type, raw: Optional[dict]) -> Any:
    """Instantiate a config dataclass from a YAML mapping, ignoring unknown keys."""
    known = {f.name for f in fields(cls)}
    values = {k: v for k, v in (raw or {}).items() if k in known}
    return cls(**values)


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML; a missing file yields the defaults."""
    global _settings

    path = Path(config_path or os.environ.get(
        "GUIDELINE_CONFIG", Path(__file__).parent / "settings.yaml",
    ))

    raw: dict[str, Any] = {}
    if path.exists():
        with open(path) as f:
            raw = _expand_env(yaml.safe_load(f) or {})

    settings = Settings(
        app_name=raw.get("app_name", "GuidelineEngine"),
        debug=raw.get("debug", False),
        llm=_build_section(LLMConfig, raw.get("llm")),
        guidelines=_build_section(GuidelinesConfig, raw.get("guidelines")),
        database=_build_section(DatabaseConfig, raw.get("database")),
        agent=_build_section(AgentConfig, raw.get("agent")),
    )
    _settings = settings
    return settings


def get_settings() -> Settings:
    """Cached settings, loaded on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
