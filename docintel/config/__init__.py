"""Configuration module: Settings and the layered loader."""

from docintel.config.loader import load_settings, load_yaml
from docintel.config.settings import Settings

__all__ = ["Settings", "load_settings", "load_yaml"]
