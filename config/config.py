"""
Configuration models for the semantic dispatcher.

Each service receives its own section through its constructor; nothing reads
configuration from module globals at call time. Entry points build one
AppConfig with ``load_config()`` and hand its sections down.

Config hierarchy (highest to lowest priority):
  1. Environment variables (DISPATCH_*)
  2. JSON config file (path argument or DISPATCH_CONFIG_FILE)
  3. Defaults declared below
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class EmbeddingsConfig(BaseModel):
    """Embedding model configuration (AllMiniLM, 384d)."""
    model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    cache_dir: Optional[str] = None
    thread_limit: int = Field(default=2, ge=1)
    dimension: int = Field(default=384, ge=1)
    cache_size: int = Field(default=1024, ge=0)


class ReasoningConfig(BaseModel):
    """OpenAI-compatible chat completions endpoint used for tool calling."""
    endpoint: str = "https://api.groq.com/openai/v1/chat/completions"
    model: str = "llama-3.3-70b-versatile"
    api_key_env: str = "GROQ_API_KEY"
    timeout: float = Field(default=30.0, gt=0)
    max_tokens: int = Field(default=1024, ge=1)
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)


class AttentionConfig(BaseModel):
    """
    Learned-threshold defaults and training step sizes.

    Raise/lower move a threshold by exactly ``threshold_step`` and saturate at
    [threshold_floor, threshold_ceiling]. A stored value already outside the
    bounds stays put instead of being pulled back across them.
    """
    default_namespace_threshold: float = 0.6
    default_tool_threshold: float = 0.5
    threshold_step: float = Field(default=0.05, gt=0.0)
    confirm_threshold_step: float = Field(default=0.01, gt=0.0)
    threshold_floor: float = 0.0
    threshold_ceiling: float = 1.0

    default_success_rate: float = Field(default=0.5, ge=0.0, le=1.0)
    success_rate_step: float = Field(default=0.1, gt=0.0, le=1.0)

    default_keyword_weight: float = 1.0
    keyword_boost: float = Field(default=0.2, ge=0.0)
    keyword_penalty: float = Field(default=0.1, ge=0.0)
    keyword_weight_floor: float = 0.1
    keyword_weight_ceiling: float = 5.0

    cas_max_retries: int = Field(default=3, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "AttentionConfig":
        if self.threshold_floor >= self.threshold_ceiling:
            raise ValueError("threshold_floor must be below threshold_ceiling")
        if self.keyword_weight_floor >= self.keyword_weight_ceiling:
            raise ValueError("keyword_weight_floor must be below keyword_weight_ceiling")
        return self

    def default_threshold_for(self, name: str) -> float:
        """Tool full names carry a namespace prefix; bare names are namespaces."""
        if "." in name:
            return self.default_tool_threshold
        return self.default_namespace_threshold


class DecisionConfig(BaseModel):
    """Weights for combined tool scoring."""
    semantic_weight: float = Field(default=0.6, ge=0.0)
    statistical_weight: float = Field(default=0.4, ge=0.0)
    keyword_overlap_boost: float = Field(default=0.2, ge=0.0)
    min_keyword_length: int = Field(default=3, ge=1)


class OrchestrationConfig(BaseModel):
    """Bounded tool-calling loop settings."""
    max_turns: int = Field(default=3, ge=1)
    tool_dispatch_workers: int = Field(default=4, ge=1)


class AppConfig(BaseModel):
    """Top-level application configuration."""
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    reasoning: ReasoningConfig = Field(default_factory=ReasoningConfig)
    attention: AttentionConfig = Field(default_factory=AttentionConfig)
    decision: DecisionConfig = Field(default_factory=DecisionConfig)
    orchestration: OrchestrationConfig = Field(default_factory=OrchestrationConfig)
    catalog_path: str = "data/catalog.json"
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return level


# Environment variable -> (section, field)
_ENV_OVERRIDES = {
    "DISPATCH_LOG_LEVEL": (None, "log_level"),
    "DISPATCH_CATALOG_PATH": (None, "catalog_path"),
    "DISPATCH_REASONING_ENDPOINT": ("reasoning", "endpoint"),
    "DISPATCH_REASONING_MODEL": ("reasoning", "model"),
    "DISPATCH_MAX_TURNS": ("orchestration", "max_turns"),
}


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    for env_var, (section, field) in _ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is None:
            continue
        if section is None:
            data[field] = value
        else:
            data.setdefault(section, {})[field] = value
        logger.debug(f"Config override from {env_var}")
    return data


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Build the application config from defaults, an optional JSON file and env.

    Args:
        path: JSON config file; falls back to DISPATCH_CONFIG_FILE when omitted

    Returns:
        Validated AppConfig

    Raises:
        FileNotFoundError: If an explicit path does not exist
        pydantic.ValidationError: If any value fails validation
    """
    data: Dict[str, Any] = {}
    config_path = path or os.getenv("DISPATCH_CONFIG_FILE")

    if config_path:
        file_path = Path(config_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)

    return AppConfig.model_validate(_apply_env_overrides(data))
