"""
Configuration management for the S3 gateway.

Contains the Pydantic settings read from the process environment (and an
optional .env file) at startup.
"""

from .settings import ConfigurationError, Settings, get_settings, load_settings

__all__ = ["ConfigurationError", "Settings", "get_settings", "load_settings"]
