"""
Application configuration.

Settings come from environment variables (or .env). Object storage,
Snowflake and FFmpeg each have a mock mode for local development.
"""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
