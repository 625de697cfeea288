"""Utility helpers for the playout service."""

from .config import load_config
from .logging import configure_logging, resolve_level

__all__ = ["configure_logging", "load_config", "resolve_level"]
