"""Utilities Module

Components:
- Logger: Loguru configuration and trade event helpers
"""

from .logger import setup_logger, setup_logger_from_settings, get_logger

__all__ = [
    "setup_logger",
    "setup_logger_from_settings",
    "get_logger",
]
