"""
Operator operations on rundowns and custom variables.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from . import (
    ANIMATION_STATES,
    APP_TOKEN_CELL,
    LAST_UPDATED_CELL,
    NAME_CELL,
    RESERVED_CELLS,
    STATE_CELL,
    SUBCOMPOSITION_CELL,
    TEMPLATE_CELL,
    PlayoutConfig,
)
from .connections import ConnectionRegistry
from .errors import NotFoundError, SchemaParseError, ValidationError
from .ordering import OrderedCollection, OrderPolicy
from .payload import Clock, epoch_ms, find_subcomposition, next_stamp
from .store import Row, Store

LOG = logging.getLogger(__name__)

DEFAULT_RUNDOWN_ID = "rundown-1"


class RundownService:
    def __init__(
        self,
        store: Store,
        config: Optional[PlayoutConfig] = None,
        *,
        connections: Optional[ConnectionRegistry] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.config = config or PlayoutConfig()
        self.connections = connections or ConnectionRegistry(store, self.config.connections_table)
        self.clock: Clock = clock or epoch_ms
        self.table_id = self.config.rundown_table
        self._items = OrderedCollection(
            store,
            self.table_id,
            policy=OrderPolicy(self.config.policy_for(self.table_id)),
            scope_cell="rundownId",
        )
        self.variables = OrderedCollection(
            store,
            self.config.variables_table,
            policy=OrderPolicy(self.config.policy_for(self.config.variables_table)),
        )

    def collection(self, rundown_id: str = DEFAULT_RUNDOWN_ID) -> OrderedCollection:
        return self._items.scoped(rundown_id)

    def _collection_for(self, row_id: str) -> OrderedCollection:
        return self._items.scoped(self._require(row_id).get("rundownId"))

    def _require(self, row_id: str) -> Row:
        row = self.store.get_row(self.table_id, row_id)
        if row is None:
            raise NotFoundError(f"Rundown item {row_id} does not exist")
        return row

    # ------------------------------------------------------------------ reads

    def items(self, rundown_id: str = DEFAULT_RUNDOWN_ID) -> List[Dict[str, Any]]:
        table = self.store.get_table(self.table_id)
        return [{"id": row_id, **table[row_id]} for row_id in self.collection(rundown_id).sorted_ids()]

    def fields(self, row_id: str) -> Dict[str, Any]:
        return {key: value for key, value in self._require(row_id).items() if key not in RESERVED_CELLS}

    # ----------------------------------------------------------------- writes

    def add_item(
        self,
        app_token: str,
        subcomposition_id: str,
        *,
        rundown_id: str = DEFAULT_RUNDOWN_ID,
        after: Optional[str] = None,
    ) -> str:
        """
        Create an item from a connection's subcomposition, seeded with the
        field defaults, at the top of the rundown or right after ``after``.
        """

        connection = self.connections.get(app_token)
        try:
            model = connection.parse()
        except SchemaParseError as exc:
            raise ValidationError([str(exc)], message=f"Connection {connection.label} has no usable model") from exc
        sub = find_subcomposition(model, subcomposition_id)
        if sub is None:
            raise NotFoundError(f"Subcomposition {subcomposition_id} not found in {connection.label}")

        row: Dict[str, Any] = {}
        for descriptor in sub.model:
            if descriptor.id in RESERVED_CELLS or descriptor.default_value is None:
                continue
            if isinstance(descriptor.default_value, (str, int, float, bool)):
                row[descriptor.id] = descriptor.default_value
        row.update(
            {
                SUBCOMPOSITION_CELL: sub.id,
                TEMPLATE_CELL: sub.name,
                NAME_CELL: sub.name,
                STATE_CELL: "Out1",
                APP_TOKEN_CELL: connection.app_token,
                "appLabel": connection.label,
                "rundownId": rundown_id,
                "type": "subcomposition",
                LAST_UPDATED_CELL: self.clock(),
            }
        )
        collection = self.collection(rundown_id)
        if after is not None:
            self._require(after)
            new_id = collection.insert_after(after, row)
        else:
            new_id = collection.insert_at_front(row)
        LOG.info("Added %s (%s) to %s as item %s", sub.name, sub.id, rundown_id, new_id)
        return new_id

    def duplicate(self, row_id: str) -> str:
        collection = self._collection_for(row_id)
        new_id = collection.duplicate(
            row_id,
            overrides={STATE_CELL: "Out1", LAST_UPDATED_CELL: self.clock()},
        )
        LOG.info("Duplicated item %s as %s", row_id, new_id)
        return new_id

    def move(self, from_id: str, to_id: str) -> List[str]:
        collection = self._collection_for(from_id)
        if to_id not in collection:
            raise NotFoundError(f"Rundown item {to_id} is not in the same rundown as {from_id}")
        return collection.move(from_id, to_id)

    def delete(self, row_id: str) -> None:
        collection = self._collection_for(row_id)
        collection.delete(row_id)
        LOG.info("Deleted item %s", row_id)

    def delete_rundown(self, rundown_id: str) -> int:
        collection = self.collection(rundown_id)
        with self.store.transaction():
            row_ids = collection.sorted_ids()
            for row_id in row_ids:
                self.store.del_row(self.table_id, row_id)
        return len(row_ids)

    def set_state(self, row_id: str, state: str) -> None:
        if state not in ANIMATION_STATES:
            raise ValidationError([f"Invalid state '{state}'. Valid states are: {', '.join(ANIMATION_STATES)}"])
        self._require(row_id)
        self.store.set_cell(self.table_id, row_id, STATE_CELL, state)

    def update_fields(self, row_id: str, values: Mapping[str, Any]) -> None:
        """
        Write field values and bump ``lastUpdated`` so the new values are pushed.
        """

        reserved = sorted(key for key in values if key in RESERVED_CELLS or key == LAST_UPDATED_CELL)
        if reserved:
            raise ValidationError([f"'{key}' is not an editable field" for key in reserved])
        current = self._require(row_id)
        with self.store.transaction():
            for key, value in values.items():
                self.store.set_cell(self.table_id, row_id, key, value)
            stamp = next_stamp(current.get(LAST_UPDATED_CELL), self.clock())
            self.store.set_cell(self.table_id, row_id, LAST_UPDATED_CELL, stamp)

    # -------------------------------------------------------------- variables

    def list_variables(self) -> List[Dict[str, Any]]:
        table = self.store.get_table(self.config.variables_table)
        return [{"id": row_id, **table[row_id]} for row_id in self.variables.sorted_ids()]

    def add_variable(self, name: str, value: str, description: str = "") -> str:
        trimmed = name.strip()
        if not trimmed:
            raise ValidationError(["Variable name cannot be empty"])
        token = f"$(custom:{trimmed})"
        existing = self.store.get_table(self.config.variables_table)
        if any(row.get("name") == token for row in existing.values()):
            raise ValidationError([f"Variable name {trimmed} already exists"])
        return self.variables.append(
            {
                "type": "custom",
                "name": token,
                "description": description.strip(),
                "value": value.strip(),
            }
        )

    def delete_variable(self, row_id: str) -> None:
        if not self.variables.delete(row_id):
            raise NotFoundError(f"Variable {row_id} does not exist")

    def move_variable(self, from_id: str, to_id: str) -> List[str]:
        return self.variables.move(from_id, to_id)

