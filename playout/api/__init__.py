"""HTTP surface of the playout service."""

from .server import create_app

__all__ = ["create_app"]
