"""Configuration models and parser for tether.yaml."""

from tether.config.models import (
    AgentCLIConfig,
    SessionConfig,
    ShadowConfig,
    TetherConfig,
)
from tether.config.parser import ConfigError, load_config

__all__ = [
    "AgentCLIConfig",
    "ConfigError",
    "SessionConfig",
    "ShadowConfig",
    "TetherConfig",
    "load_config",
]
