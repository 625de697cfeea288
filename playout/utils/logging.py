"""
Logging helpers for the playout service.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Union

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"


def resolve_level(level: Union[int, str, None]) -> int:
    """
    Map a level name such as ``"debug"`` to its numeric value; unknown names give INFO.
    """

    if isinstance(level, int):
        return level
    if not level:
        return logging.INFO
    candidate = logging.getLevelName(str(level).strip().upper())
    return candidate if isinstance(candidate, int) else logging.INFO


def configure_logging(level: Union[int, str] = logging.INFO, format: Optional[str] = None) -> None:
    """
    Ensure the root logger is configured exactly once.
    """

    if logging.getLogger().handlers:
        # Respect any user provided configuration.
        logging.getLogger().setLevel(resolve_level(level))
        return

    logging.basicConfig(
        level=resolve_level(level),
        format=format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
