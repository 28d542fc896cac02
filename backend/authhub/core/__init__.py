# authhub Core Module
from .config import get_settings, settings
from .logging import setup_logging

__all__ = [
    "settings",
    "get_settings",
    "setup_logging",
]
