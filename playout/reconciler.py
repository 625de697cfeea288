"""
Inbound batch patches and rundown snapshots for external controllers.

A batch is validated completely before anything is written: every problem is
collected, and a single one rejects the whole batch.  An accepted batch is
applied in one store transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from . import (
    ANIMATION_STATES,
    LAST_UPDATED_CELL,
    NAME_CELL,
    RESERVED_CELLS,
    STATE_CELL,
    SUBCOMPOSITION_CELL,
    TEMPLATE_CELL,
)
from .errors import PlayoutError, TransactionFailure, ValidationError
from .events import PatchApplied
from .payload import Clock, epoch_ms, next_stamp
from .store import Store

LOG = logging.getLogger(__name__)

# external key -> rundown column; a None value leaves the column untouched
PATCH_ALIASES: Dict[str, str] = {
    "subCompositionId": SUBCOMPOSITION_CELL,
    "subCompositionName": TEMPLATE_CELL,
    "rundownName": NAME_CELL,
    "state": STATE_CELL,
}

# only the alias targets of the reserved set may be written by a patch
LOCKED_CELLS = (RESERVED_CELLS - set(PATCH_ALIASES.values())) | {LAST_UPDATED_CELL}

_STRING_CELLS = frozenset({SUBCOMPOSITION_CELL, TEMPLATE_CELL, NAME_CELL})

_SCALARS = (str, int, float, bool)


@dataclass
class PatchResult:
    success: bool
    message: str
    errors: List[str] = field(default_factory=list)
    row_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        result: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.errors:
            result["errors"] = list(self.errors)
        return result


def _is_patch_id(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _row_key(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


class PatchReconciler:
    def __init__(
        self,
        store: Store,
        table_id: str = "rundown-1",
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.table_id = table_id
        self.clock: Clock = clock or epoch_ms

    # ------------------------------------------------------------- validation

    def validate(self, batch: Any) -> List[Mapping[str, Any]]:
        """
        Return the batch items when all of them are acceptable.

        Raises :class:`ValidationError` carrying every problem found.
        """

        if not isinstance(batch, list):
            raise ValidationError(
                ["Patch data must be an array of objects"],
                message="Patch data must be an array of objects",
            )
        table = self.store.get_table(self.table_id)
        errors: List[str] = []
        for index, item in enumerate(batch):
            if not isinstance(item, Mapping):
                errors.append(f"Item at index {index} is not an object")
                continue
            item_id = item.get("id")
            if not _is_patch_id(item_id):
                errors.append(
                    f"Item at index {index} does not have a valid 'id' property (must be a number)"
                )
                continue
            if _row_key(item_id) not in table:
                errors.append(f"Item with id {_row_key(item_id)} does not exist in the rundown")
                continue
            if "state" in item and item["state"] is not None and item["state"] not in ANIMATION_STATES:
                errors.append(
                    f"Item with id {_row_key(item_id)} has invalid state '{item['state']}'. "
                    f"Valid states are: {', '.join(ANIMATION_STATES)}"
                )
            for key, value in item.items():
                if value is None or isinstance(value, str):
                    continue
                if PATCH_ALIASES.get(key, key) in _STRING_CELLS:
                    errors.append(f"Item with id {_row_key(item_id)} has invalid '{key}' (must be a string)")
        if errors:
            raise ValidationError(errors)
        return list(batch)

    # ------------------------------------------------------------------ apply

    def apply(self, batch: Any) -> PatchResult:
        try:
            items = self.validate(batch)
        except ValidationError as exc:
            LOG.warning("Rejected patch batch: %s", exc.errors)
            return PatchResult(success=False, message=str(exc), errors=exc.errors)

        try:
            row_ids = self._apply_items(items)
        except PlayoutError as exc:
            LOG.error("Patch transaction failed: %s", exc)
            return PatchResult(success=False, message=f"Transaction failed: {exc}")

        self.store.bus.publish(PatchApplied(table_id=self.table_id, row_ids=tuple(row_ids)))
        LOG.info("Applied patch to %d items: %s", len(row_ids), row_ids)
        return PatchResult(
            success=True,
            message=f"Successfully updated {len(row_ids)} items",
            row_ids=row_ids,
        )

    def _apply_items(self, items: List[Mapping[str, Any]]) -> List[str]:
        row_ids: List[str] = []
        with self.store.transaction():
            for item in items:
                row_id = _row_key(item["id"])
                current = self.store.get_row(self.table_id, row_id)
                if current is None:
                    # validated a moment ago; a concurrent delete won the race
                    raise TransactionFailure(f"Item with id {row_id} disappeared during the patch")
                for key, value in item.items():
                    if key == "id":
                        continue
                    if key == "payload" and isinstance(value, Mapping):
                        self._merge_payload(row_id, value)
                        continue
                    column = PATCH_ALIASES.get(key, key)
                    if column in LOCKED_CELLS:
                        LOG.warning("Ignoring '%s' for item %s; column is not patchable", key, row_id)
                        continue
                    if column not in current:
                        LOG.debug("Skipping '%s' for item %s; column not on row", key, row_id)
                        continue
                    if value is None:
                        continue
                    self.store.set_cell(self.table_id, row_id, column, value)
                self._touch(row_id, current.get(LAST_UPDATED_CELL))
                row_ids.append(row_id)
        return row_ids

    def _merge_payload(self, row_id: str, payload: Mapping[str, Any]) -> None:
        for field_id, value in payload.items():
            if not isinstance(value, _SCALARS):
                continue
            if field_id in RESERVED_CELLS or field_id == LAST_UPDATED_CELL:
                # payload carries dynamic fields only
                LOG.warning("Ignoring payload entry '%s' for item %s; reserved column", field_id, row_id)
                continue
            LOG.debug("Setting field %s=%r on item %s", field_id, value, row_id)
            self.store.set_cell(self.table_id, row_id, str(field_id), value)

    def _touch(self, row_id: str, previous: Any) -> None:
        stamp = next_stamp(previous, self.clock())
        self.store.set_cell(self.table_id, row_id, LAST_UPDATED_CELL, stamp)

    # --------------------------------------------------------------- snapshot

    def snapshot(self) -> List[Dict[str, Any]]:
        """
        Rows as external controllers see them, ordered by row id.
        """

        table = self.store.get_table(self.table_id)
        items = []
        for row_id in sorted(table, key=lambda key: (not key.isdigit(), int(key) if key.isdigit() else 0, key)):
            row = table[row_id]
            items.append(
                {
                    "id": int(row_id) if row_id.isdigit() else row_id,
                    "subCompositionId": row.get(SUBCOMPOSITION_CELL),
                    "subCompositionName": row.get(TEMPLATE_CELL),
                    "rundownName": row.get(NAME_CELL),
                    "state": row.get(STATE_CELL),
                    "payload": {
                        key: value for key, value in row.items() if key not in RESERVED_CELLS
                    },
                }
            )
        return items
