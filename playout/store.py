"""
In-memory table store with scoped transactions and cell listeners.

Tables hold rows keyed by string ids; rows hold scalar cells.  Every write
happens inside a transaction: nested ``transaction()`` blocks join the
outermost one, an exception anywhere inside restores the tables as they were
when the outermost block was entered, and listeners only ever observe
committed state.
"""

from __future__ import annotations

import contextlib
import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from .errors import PlayoutError, TransactionFailure
from .events import CellChanged, EventBus

LOG = logging.getLogger(__name__)

Row = Dict[str, Any]
Table = Dict[str, Row]
CellListener = Callable[["Store", str, str, str, Any, Any], None]

_MISSING = object()
_CELL_TYPES = (str, int, float, bool)


def _check_cell_value(cell_id: str, value: Any) -> None:
    if not isinstance(value, _CELL_TYPES):
        raise TypeError(f"Cell '{cell_id}' only accepts str, int, float or bool, got {type(value).__name__}")


class Store:
    """
    Explicit store handle passed to every component.
    """

    def __init__(self, *, bus: Optional[EventBus] = None) -> None:
        self.bus = bus or EventBus()
        self._lock = threading.RLock()
        self._tables: Dict[str, Table] = {}
        self._depth = 0
        self._owner: Optional[int] = None
        self._backup: Optional[Dict[str, Table]] = None
        self._pending: Dict[Tuple[str, str, str], List[Any]] = {}
        self._listener_counter = 0
        self._listeners: Dict[int, Tuple[Optional[str], Optional[str], CellListener]] = {}

    # ------------------------------------------------------------ transactions

    @contextlib.contextmanager
    def transaction(self) -> Iterator["Store"]:
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._owner = threading.get_ident()
                self._backup = copy.deepcopy(self._tables)
                self._pending = {}
            self._depth += 1
            try:
                yield self
            except BaseException as exc:
                if outermost:
                    self._rollback_locked()
                    if isinstance(exc, Exception) and not isinstance(exc, PlayoutError):
                        raise TransactionFailure(f"Transaction aborted: {exc}") from exc
                raise
            finally:
                self._depth -= 1
            changes = self._commit_locked() if outermost else []
        self._notify(changes)

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0 and self._owner == threading.get_ident()

    def _rollback_locked(self) -> None:
        if self._backup is not None:
            self._tables = self._backup
        self._backup = None
        self._pending = {}

    def _commit_locked(self) -> List[CellChanged]:
        changes = []
        for (table_id, row_id, cell_id), (old, new) in self._pending.items():
            if old is new or (old is not _MISSING and new is not _MISSING and old == new and type(old) is type(new)):
                continue
            changes.append(
                CellChanged(
                    table_id=table_id,
                    row_id=row_id,
                    cell_id=cell_id,
                    new_value=None if new is _MISSING else new,
                    old_value=None if old is _MISSING else old,
                )
            )
        self._backup = None
        self._pending = {}
        return changes

    def _record(self, table_id: str, row_id: str, cell_id: str, old: Any, new: Any) -> None:
        key = (table_id, row_id, cell_id)
        entry = self._pending.get(key)
        if entry is None:
            self._pending[key] = [old, new]
        else:
            entry[1] = new

    # --------------------------------------------------------------- listeners

    def add_cell_listener(
        self,
        table_id: Optional[str],
        cell_id: Optional[str],
        callback: CellListener,
    ) -> int:
        """
        Register ``callback`` for committed changes; ``None`` matches any table or cell.
        """

        if not callable(callback):
            raise TypeError("callback must be callable")
        with self._lock:
            self._listener_counter += 1
            token = self._listener_counter
            self._listeners[token] = (table_id, cell_id, callback)
        return token

    def remove_listener(self, token: int) -> None:
        with self._lock:
            self._listeners.pop(token, None)

    def _notify(self, changes: List[CellChanged]) -> None:
        if not changes:
            return
        with self._lock:
            listeners = list(self._listeners.items())
        for change in changes:
            self.bus.publish(change)
            for token, (table_id, cell_id, callback) in listeners:
                if table_id is not None and table_id != change.table_id:
                    continue
                if cell_id is not None and cell_id != change.cell_id:
                    continue
                try:
                    callback(
                        self,
                        change.table_id,
                        change.row_id,
                        change.cell_id,
                        change.new_value,
                        change.old_value,
                    )
                except Exception:
                    LOG.exception("Cell listener %s failed.", token)

    # ------------------------------------------------------------------- reads

    def table_ids(self) -> List[str]:
        with self._lock:
            return list(self._tables)

    def get_table(self, table_id: str) -> Table:
        with self._lock:
            return {row_id: dict(row) for row_id, row in self._tables.get(table_id, {}).items()}

    def row_ids(self, table_id: str) -> List[str]:
        with self._lock:
            return list(self._tables.get(table_id, {}))

    def has_row(self, table_id: str, row_id: str) -> bool:
        with self._lock:
            return row_id in self._tables.get(table_id, {})

    def get_row(self, table_id: str, row_id: str) -> Optional[Row]:
        with self._lock:
            row = self._tables.get(table_id, {}).get(row_id)
            return dict(row) if row is not None else None

    def get_cell(self, table_id: str, row_id: str, cell_id: str, default: Any = None) -> Any:
        with self._lock:
            return self._tables.get(table_id, {}).get(row_id, {}).get(cell_id, default)

    def snapshot(self) -> Dict[str, Table]:
        with self._lock:
            return copy.deepcopy(self._tables)

    # ------------------------------------------------------------------ writes

    def set_cell(self, table_id: str, row_id: str, cell_id: str, value: Any) -> None:
        with self.transaction():
            _check_cell_value(cell_id, value)
            row = self._tables.setdefault(table_id, {}).setdefault(row_id, {})
            old = row.get(cell_id, _MISSING)
            row[cell_id] = value
            self._record(table_id, row_id, cell_id, old, value)

    def del_cell(self, table_id: str, row_id: str, cell_id: str) -> None:
        with self.transaction():
            row = self._tables.get(table_id, {}).get(row_id)
            if row is None or cell_id not in row:
                return
            old = row.pop(cell_id)
            self._record(table_id, row_id, cell_id, old, _MISSING)

    def set_row(self, table_id: str, row_id: str, row: Row) -> None:
        with self.transaction():
            current = self._tables.setdefault(table_id, {}).get(row_id, {})
            for cell_id in [cell for cell in current if cell not in row]:
                self.del_cell(table_id, row_id, cell_id)
            for cell_id, value in row.items():
                self.set_cell(table_id, row_id, cell_id, value)

    def add_row(self, table_id: str, row: Row) -> str:
        with self.transaction():
            row_id = self._next_row_id(table_id)
            self.set_row(table_id, row_id, row)
        return row_id

    def del_row(self, table_id: str, row_id: str) -> bool:
        with self.transaction():
            table = self._tables.get(table_id, {})
            row = table.get(row_id)
            if row is None:
                return False
            for cell_id, value in row.items():
                self._record(table_id, row_id, cell_id, value, _MISSING)
            del table[row_id]
        return True

    def _next_row_id(self, table_id: str) -> str:
        numeric = [int(row_id) for row_id in self._tables.get(table_id, {}) if row_id.isdigit()]
        return str(max(numeric) + 1 if numeric else 0)

    # ------------------------------------------------------------- persistence

    def load(self, tables: Dict[str, Table]) -> None:
        """
        Replace the whole content of the store in one transaction.
        """

        with self.transaction():
            for table_id in self.table_ids():
                for row_id in self.row_ids(table_id):
                    if row_id not in tables.get(table_id, {}):
                        self.del_row(table_id, row_id)
            for table_id, rows in tables.items():
                for row_id, row in rows.items():
                    self.set_row(table_id, str(row_id), row)

    def save(self, path: Union[str, Path]) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8") as handle:
            json.dump(self.snapshot(), handle, indent=2, sort_keys=True)
        LOG.info("Store saved to %s", target)

    @classmethod
    def open(cls, path: Union[str, Path], *, bus: Optional[EventBus] = None) -> "Store":
        store = cls(bus=bus)
        source = Path(path)
        if not source.exists():
            LOG.info("No store file at %s; starting empty", source)
            return store
        with source.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise TransactionFailure(f"Store file {source} does not contain a table mapping")
        store.load(data)
        LOG.info("Store loaded from %s (%d tables)", source, len(data))
        return store
