"""
Layered configuration for the storytest pipeline.

Precedence (lowest to highest):
  built-ins > ~/.config/storytest/config.toml > ./storytest.toml > ENV vars > explicit overrides

The resolved values are frozen into pydantic models that the model client and
knowledge-base loader read once at construction.
"""

from __future__ import annotations
import os
import tomllib
import logging
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)

USER_CFG = Path.home() / ".config" / "storytest" / "config.toml"
PROJECT_CFG_NAME = "storytest.toml"

PACKAGE_KB_DIR = Path(__file__).parent / "kb"
DEFAULT_LOCATORS_PATH = PACKAGE_KB_DIR / "selectors" / "common.json"
DEFAULT_ROUTES_PATH = PACKAGE_KB_DIR / "apis" / "endpoints.json"

Provider = Literal["openai", "anthropic", "ollama"]
SUPPORTED_PROVIDERS = ("openai", "anthropic", "ollama")

DEFAULT_MODELS: Dict[str, str] = {
    "openai": "gpt-4-turbo-preview",
    "anthropic": "claude-3-sonnet-20240229",
    "ollama": "llama2",
}

MODEL_ENV: Dict[str, str] = {
    "openai": "OPENAI_MODEL",
    "anthropic": "ANTHROPIC_MODEL",
    "ollama": "OLLAMA_MODEL",
}

API_KEY_ENV: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

DEFAULT_OLLAMA_URL = "http://localhost:11434"

DEFAULTS: Dict[str, Any] = {
    "provider": "openai",
    "model": None,
    "api_key": None,
    "base_url": None,
    "max_retries": 3,
    "temperature": 0.7,
    "max_tokens": 2000,
    "locators_path": None,
    "routes_path": None,
}

# Generic environment overrides; provider-specific ones are resolved later
ENV_KEYS: Dict[str, str] = {
    "provider": "LLM_PROVIDER",
    "model": "LLM_MODEL",
    "base_url": "LLM_BASE_URL",
    "max_retries": "MAX_RETRIES",
    "temperature": "LLM_TEMPERATURE",
    "max_tokens": "LLM_MAX_TOKENS",
    "locators_path": "STORYTEST_LOCATORS_PATH",
    "routes_path": "STORYTEST_ROUTES_PATH",
}


class LLMConfig(BaseModel):
    """Resolved model-client configuration. Read-only after construction."""
    model_config = ConfigDict(frozen=True)

    provider: Provider = Field("openai", description="LLM provider selector")
    model: str = Field(..., description="Provider model identifier")
    api_key: Optional[str] = Field(None, description="Provider credential")
    base_url: Optional[str] = Field(None, description="Optional provider base URL")
    max_retries: int = Field(3, ge=1, description="Retry ceiling for model invocations")
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(2000, gt=0)


class KnowledgeBaseConfig(BaseModel):
    """Locations of the locator and route catalogs."""
    model_config = ConfigDict(frozen=True)

    locators_path: Path = Field(DEFAULT_LOCATORS_PATH, description="Locator catalog JSON")
    routes_path: Path = Field(DEFAULT_ROUTES_PATH, description="Route catalog JSON")


def _read_toml(path: Path) -> Dict:
    if not path.exists():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def _coerce(name: str, v):
    if v is None:
        return None
    try:
        if name == "temperature":
            return float(v)
        if name in {"max_retries", "max_tokens"}:
            return int(v)
        if name == "provider":
            return str(v).strip().lower()
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid value for {name}: {v!r}")
        return None
    return v


def merged_config(
    overrides: Optional[Mapping[str, Any]] = None,
    user_cfg: Path = USER_CFG,
    project_cfg: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Merge defaults, TOML files, environment and explicit overrides into one dict."""
    environ = os.environ if environ is None else environ
    project_cfg = project_cfg or Path.cwd() / PROJECT_CFG_NAME

    cfg_user = _read_toml(user_cfg)
    cfg_proj = _read_toml(project_cfg)
    env = {k: _coerce(k, environ.get(var)) for k, var in ENV_KEYS.items()}

    settings = DEFAULTS.copy()

    def overlay(d: Optional[Mapping[str, Any]]):
        if not isinstance(d, Mapping):
            return
        for k in settings.keys():
            value = _coerce(k, d.get(k))
            if value is not None:
                settings[k] = value

    overlay(cfg_user)
    overlay(cfg_proj)
    overlay(env)
    overlay(overrides)

    provider = settings["provider"]
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigurationError(f"Unsupported LLM provider: {provider}")

    # Provider-specific fallbacks
    if not settings["model"]:
        settings["model"] = environ.get(MODEL_ENV[provider]) or DEFAULT_MODELS[provider]
    if not settings["api_key"] and provider in API_KEY_ENV:
        settings["api_key"] = environ.get(API_KEY_ENV[provider])
    if not settings["base_url"] and provider == "ollama":
        settings["base_url"] = environ.get("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_URL

    return settings


def load_llm_config(
    environ: Optional[Mapping[str, str]] = None,
    project_cfg: Optional[Path] = None,
    user_cfg: Path = USER_CFG,
    **overrides: Any,
) -> LLMConfig:
    """Resolve the model client configuration."""
    settings = merged_config(overrides, user_cfg=user_cfg, project_cfg=project_cfg, environ=environ)
    return LLMConfig(
        provider=settings["provider"],
        model=settings["model"],
        api_key=settings["api_key"],
        base_url=settings["base_url"],
        max_retries=settings["max_retries"],
        temperature=settings["temperature"],
        max_tokens=settings["max_tokens"],
    )


def load_knowledge_base_config(
    environ: Optional[Mapping[str, str]] = None,
    project_cfg: Optional[Path] = None,
    user_cfg: Path = USER_CFG,
    **overrides: Any,
) -> KnowledgeBaseConfig:
    """Resolve knowledge-base catalog paths, defaulting to the packaged catalogs."""
    settings = merged_config(overrides, user_cfg=user_cfg, project_cfg=project_cfg, environ=environ)
    return KnowledgeBaseConfig(
        locators_path=Path(settings["locators_path"] or DEFAULT_LOCATORS_PATH),
        routes_path=Path(settings["routes_path"] or DEFAULT_ROUTES_PATH),
    )
