"""Service layer for skin loading and its supporting infrastructure."""

from .config import SkinConfig, get_config, reload_config

__all__ = [
    "SkinConfig",
    "get_config",
    "reload_config",
]
