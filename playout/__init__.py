"""
Playout control package.

Operators arrange graphic items ("subcompositions") hosted by a remote
rendering service into an ordered rundown, edit their field values and
trigger on-air/off-air transitions.  This package keeps the rundown ordered,
mirrors state transitions to the remote renderer and accepts externally
initiated batch updates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

__all__ = [
    "ANIMATION_STATES",
    "LAST_UPDATED_CELL",
    "RESERVED_CELLS",
    "STATE_CELL",
    "OFFAIR_PAYLOAD_MODES",
    "PlayoutConfig",
]

ANIMATION_STATES = ("Out1", "In", "Out2")
OFFAIR_PAYLOAD_MODES = ("empty", "resolve")

STATE_CELL = "state"
SUBCOMPOSITION_CELL = "subcompId"
TEMPLATE_CELL = "template"
NAME_CELL = "name"
APP_TOKEN_CELL = "appToken"
LAST_UPDATED_CELL = "lastUpdated"

# columns that are never part of an item's dynamic field values
RESERVED_CELLS = frozenset(
    {
        "id",
        STATE_CELL,
        "layer",
        NAME_CELL,
        TEMPLATE_CELL,
        "type",
        SUBCOMPOSITION_CELL,
        "order",
        APP_TOKEN_CELL,
        "appLabel",
        "rundownId",
    }
)


def _default_policies() -> Dict[str, str]:
    return {
        "rundown-1": "sparse",
        "variables": "dense",
        "tables": "dense",
    }


@dataclass
class PlayoutConfig:
    """Top level runtime configuration."""

    remote_base_url: str = "https://app.singular.live/apiv2"
    request_timeout: float = 10.0
    offair_payload: str = "empty"
    coalesce: bool = False
    max_retries: int = 0
    rundown_table: str = "rundown-1"
    variables_table: str = "variables"
    connections_table: str = "connections"
    collection_policies: Dict[str, str] = field(default_factory=_default_policies)
    data_path: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 8044
    log_level: str = "INFO"

    def control_url(self, app_token: str) -> str:
        return f"{self.remote_base_url.rstrip('/')}/controlapps/{app_token}/control"

    def policy_for(self, table_id: str) -> str:
        return self.collection_policies.get(table_id, "sparse")
