"""ippool agent runtime helpers."""

from .config import AgentConfig, ConfigError, load_config  # noqa: F401
from .lifecycle import Lifecycle, LifecycleState  # noqa: F401

__all__ = [
    "AgentConfig",
    "ConfigError",
    "Lifecycle",
    "LifecycleState",
    "load_config",
]
