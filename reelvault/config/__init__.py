"""
Application configuration using Pydantic settings.

Configuration comes from environment variables with sensible defaults.
Object store credentials are loaded once and handed to the gateway as
an explicit StoreConfig.
"""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
