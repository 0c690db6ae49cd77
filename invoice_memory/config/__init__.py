"""
Configuration module for the invoice memory system.

Provides centralized configuration management using Pydantic Settings,
environment variable loading, and structured logging setup.
"""

from invoice_memory.config.logging_config import configure_logging, get_logger
from invoice_memory.config.settings import (
    ConfidenceSettings,
    ContributionSettings,
    DecisionSettings,
    Environment,
    POMatchingSettings,
    Settings,
    get_settings,
)


__all__ = [
    "Settings",
    "ConfidenceSettings",
    "ContributionSettings",
    "DecisionSettings",
    "POMatchingSettings",
    "get_settings",
    "Environment",
    "configure_logging",
    "get_logger",
]
