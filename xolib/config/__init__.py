"""Client configuration."""

from .settings import XoSettings, get_settings

__all__ = ["XoSettings", "get_settings"]
