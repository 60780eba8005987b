"""Configuration package."""

from url2mda.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
