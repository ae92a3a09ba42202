"""Configuration module for backend services."""

from src.config.settings import (
    AuthSettings,
    ConfigurationError,
)

__all__ = [
    "AuthSettings",
    "ConfigurationError",
]
