"""
Configuration package.

Usage:
    from config import load_config
    config = load_config()
    engine = DecisionEngine(config.decision, config.attention)
"""
from config.config import (
    AppConfig,
    AttentionConfig,
    DecisionConfig,
    EmbeddingsConfig,
    OrchestrationConfig,
    ReasoningConfig,
    load_config,
)

__all__ = [
    'load_config',
    'AppConfig',
    'AttentionConfig',
    'DecisionConfig',
    'EmbeddingsConfig',
    'OrchestrationConfig',
    'ReasoningConfig',
]
