"""
Connections to remote control apps.

A connection pairs an app token with the schema document describing the
app's subcompositions.  Fetching and refreshing that document happens
elsewhere; this registry only stores what it is given and hands it back.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Union

from .errors import NotFoundError
from .payload import CompositionModel, epoch_ms, parse_model
from .store import Store

LOG = logging.getLogger(__name__)


def mask_token(app_token: Optional[str]) -> str:
    if not app_token:
        return "<none>"
    return f"{app_token[:8]}..."


@dataclass
class Connection:
    app_token: str
    label: str
    model: str
    type: str = "singular"
    updated_at: Optional[int] = None

    def parse(self) -> CompositionModel:
        return parse_model(self.model)

    def to_dict(self) -> dict:
        return {
            "appToken": self.app_token,
            "label": self.label,
            "type": self.type,
            "updatedAt": self.updated_at,
        }


class ConnectionRegistry:
    def __init__(self, store: Store, table_id: str = "connections") -> None:
        self.store = store
        self.table_id = table_id

    def get(self, app_token: str) -> Connection:
        row = self.store.get_row(self.table_id, app_token)
        if row is None:
            raise NotFoundError(f"No connection for app token {mask_token(app_token)}")
        return self._from_row(app_token, row)

    def find(self, app_token: str) -> Optional[Connection]:
        try:
            return self.get(app_token)
        except NotFoundError:
            return None

    def list(self) -> List[Connection]:
        return [
            self._from_row(app_token, row)
            for app_token, row in self.store.get_table(self.table_id).items()
        ]

    def upsert(
        self,
        app_token: str,
        *,
        label: str,
        model: Union[str, Mapping[str, Any]],
        type: str = "singular",
    ) -> Connection:
        model_text = model if isinstance(model, str) else json.dumps(model)
        self.store.set_row(
            self.table_id,
            app_token,
            {
                "appToken": app_token,
                "label": label,
                "model": model_text,
                "type": type,
                "updatedAt": epoch_ms(),
            },
        )
        LOG.info("Connection %s (%s) stored", mask_token(app_token), label)
        return self.get(app_token)

    def remove(self, app_token: str) -> bool:
        return self.store.del_row(self.table_id, app_token)

    @staticmethod
    def _from_row(app_token: str, row: Mapping[str, Any]) -> Connection:
        updated_at = row.get("updatedAt")
        return Connection(
            app_token=str(row.get("appToken") or app_token),
            label=str(row.get("label") or ""),
            model=str(row.get("model") or ""),
            type=str(row.get("type") or "singular"),
            updated_at=int(updated_at) if isinstance(updated_at, (int, float)) else None,
        )
