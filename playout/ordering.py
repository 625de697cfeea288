"""
Ordered collections over store tables.

A collection is the set of rows of one table (optionally narrowed to rows
whose ``scope_cell`` equals ``scope_value``) sequenced by an integer
``order`` cell.  Every multi-row mutation runs in a single store transaction,
so readers never observe two rows sharing an order value.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .errors import NotFoundError
from .events import OrderChanged
from .store import Row, Store

LOG = logging.getLogger(__name__)

ORDER_CELL = "order"


class OrderPolicy(str, Enum):
    """What happens to the remaining order values after a delete."""

    DENSE = "dense"
    SPARSE = "sparse"


def order_of(row: Mapping[str, Any], cell_id: str = ORDER_CELL) -> Any:
    """
    Sort key of ``row``; anything that is not a number sorts as ``0``.
    """

    value = row.get(cell_id)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


class OrderedCollection:
    def __init__(
        self,
        store: Store,
        table_id: str,
        *,
        policy: OrderPolicy = OrderPolicy.SPARSE,
        order_cell: str = ORDER_CELL,
        scope_cell: Optional[str] = None,
        scope_value: Any = None,
    ) -> None:
        self.store = store
        self.table_id = table_id
        self.policy = OrderPolicy(policy)
        self.order_cell = order_cell
        self.scope_cell = scope_cell
        self.scope_value = scope_value

    def scoped(self, scope_value: Any) -> "OrderedCollection":
        """Return a collection over the same table narrowed to another scope value."""

        return OrderedCollection(
            self.store,
            self.table_id,
            policy=self.policy,
            order_cell=self.order_cell,
            scope_cell=self.scope_cell,
            scope_value=scope_value,
        )

    # ------------------------------------------------------------------ reads

    def _rows(self) -> Dict[str, Row]:
        table = self.store.get_table(self.table_id)
        if self.scope_cell is None:
            return table
        return {
            row_id: row
            for row_id, row in table.items()
            if row.get(self.scope_cell) == self.scope_value
        }

    def _sorted(self, rows: Mapping[str, Row]) -> List[str]:
        # sorted() is stable, so ties keep table insertion order
        return sorted(rows, key=lambda row_id: order_of(rows[row_id], self.order_cell))

    def sorted_ids(self) -> List[str]:
        return self._sorted(self._rows())

    def orders(self) -> Dict[str, Any]:
        return {row_id: row.get(self.order_cell) for row_id, row in self._rows().items()}

    def __len__(self) -> int:
        return len(self._rows())

    def __contains__(self, row_id: object) -> bool:
        return isinstance(row_id, str) and row_id in self._rows()

    def _require(self, rows: Mapping[str, Row], row_id: str) -> Row:
        row = rows.get(row_id)
        if row is None:
            raise NotFoundError(f"Row '{row_id}' does not exist in '{self.table_id}'")
        return row

    # ----------------------------------------------------------------- writes

    def _prepare(self, row: Mapping[str, Any], order: int) -> Row:
        prepared = dict(row)
        if self.scope_cell is not None:
            prepared.setdefault(self.scope_cell, self.scope_value)
        prepared[self.order_cell] = order
        return prepared

    def _shift_after(self, rows: Mapping[str, Row], threshold: Any) -> None:
        for row_id, row in rows.items():
            current = order_of(row, self.order_cell)
            if current > threshold:
                self.store.set_cell(self.table_id, row_id, self.order_cell, current + 1)

    def insert_at_front(self, row: Mapping[str, Any]) -> str:
        """
        Insert ``row`` with order 0 and push every existing row down by one.
        """

        with self.store.transaction():
            rows = self._rows()
            for row_id, existing in rows.items():
                self.store.set_cell(
                    self.table_id, row_id, self.order_cell, order_of(existing, self.order_cell) + 1
                )
            new_id = self.store.add_row(self.table_id, self._prepare(row, 0))
        self._publish()
        return new_id

    def insert_after(self, source_id: str, row: Mapping[str, Any]) -> str:
        """
        Insert ``row`` directly after ``source_id``, shifting later rows by one.
        """

        with self.store.transaction():
            rows = self._rows()
            source_order = order_of(self._require(rows, source_id), self.order_cell)
            self._shift_after(rows, source_order)
            new_id = self.store.add_row(self.table_id, self._prepare(row, source_order + 1))
        self._publish()
        return new_id

    def append(self, row: Mapping[str, Any]) -> str:
        with self.store.transaction():
            rows = self._rows()
            next_order = max((order_of(r, self.order_cell) for r in rows.values()), default=-1) + 1
            new_id = self.store.add_row(self.table_id, self._prepare(row, next_order))
        self._publish()
        return new_id

    def duplicate(self, source_id: str, overrides: Optional[Mapping[str, Any]] = None) -> str:
        with self.store.transaction():
            source = self._require(self._rows(), source_id)
            copy_row = dict(source)
            copy_row.update(overrides or {})
            new_id = self.insert_after(source_id, copy_row)
        self._publish()
        return new_id

    def move(self, from_id: str, to_id: str) -> List[str]:
        """
        Move ``from_id`` next to ``to_id`` and renumber the whole collection.

        Moving down lands after the target, moving up lands before it.
        """

        with self.store.transaction():
            rows = self._rows()
            self._require(rows, from_id)
            self._require(rows, to_id)
            ordered = self._sorted(rows)
            if from_id == to_id:
                return ordered
            from_index = ordered.index(from_id)
            original_to_index = ordered.index(to_id)
            ordered.remove(from_id)
            to_index = ordered.index(to_id)
            if from_index < original_to_index:
                to_index += 1
            ordered.insert(to_index, from_id)
            self._renumber(ordered)
        LOG.debug("Moved %s next to %s in %s", from_id, to_id, self.table_id)
        self._publish(ordered)
        return ordered

    def delete(self, row_id: str) -> bool:
        with self.store.transaction():
            if row_id not in self._rows():
                return False
            self.store.del_row(self.table_id, row_id)
            if self.policy is OrderPolicy.DENSE:
                self._renumber(self.sorted_ids())
        self._publish()
        return True

    def renumber(self) -> List[str]:
        """Rewrite orders as ``0..n-1`` following the current sequence."""

        with self.store.transaction():
            ordered = self.sorted_ids()
            self._renumber(ordered)
        self._publish(ordered)
        return ordered

    def _renumber(self, ordered: List[str]) -> None:
        for index, row_id in enumerate(ordered):
            self.store.set_cell(self.table_id, row_id, self.order_cell, index)

    def _publish(self, ordered: Optional[List[str]] = None) -> None:
        if self.store.in_transaction:
            # an enclosing caller publishes once its own transaction commits
            return
        ids = ordered if ordered is not None else self.sorted_ids()
        self.store.bus.publish(OrderChanged(table_id=self.table_id, row_ids=tuple(ids)))
