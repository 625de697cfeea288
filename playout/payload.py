"""
Payload resolution: map a rundown row's flat field values onto the field
schema the remote renderer defines for its subcomposition.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from .errors import SchemaParseError

LOG = logging.getLogger(__name__)

TIMER_PATTERN = re.compile(r"::add-(\d+)")
VARIABLE_PATTERN = re.compile(r"\$\((custom:[^)]+)\)")

Clock = Callable[[], int]


def epoch_ms() -> int:
    return time.time_ns() // 1_000_000


def next_stamp(previous: Any, now_ms: int) -> int:
    """A timestamp strictly greater than ``previous`` when that is a number."""

    if isinstance(previous, (int, float)) and not isinstance(previous, bool) and now_ms <= previous:
        return int(previous) + 1
    return now_ms


class Selection(BaseModel):
    id: str
    title: Optional[str] = None
    model_config = ConfigDict(extra="allow")


class FieldDescriptor(BaseModel):
    id: str
    type: Optional[str] = None
    title: Optional[str] = None
    default_value: Any = Field(default=None, alias="defaultValue")
    selections: List[Selection] = Field(default_factory=list)
    source: Optional[str] = None
    source_url: Optional[str] = Field(default=None, alias="sourceUrl")
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Subcomposition(BaseModel):
    id: str
    name: str = ""
    model: List[FieldDescriptor] = Field(default_factory=list)
    subcompositions: List["Subcomposition"] = Field(default_factory=list)
    model_config = ConfigDict(extra="allow")


Subcomposition.model_rebuild()


class CompositionModel(BaseModel):
    """Root of a connection's schema tree."""

    id: Optional[str] = None
    name: str = ""
    model: List[FieldDescriptor] = Field(default_factory=list)
    subcompositions: List[Subcomposition] = Field(default_factory=list)
    model_config = ConfigDict(extra="allow")


def parse_model(raw: Union[str, bytes, Mapping[str, Any], None]) -> CompositionModel:
    """
    Parse a connection's schema document, stored either as JSON text or as a mapping.
    """

    if raw is None or raw == "":
        raise SchemaParseError("Connection has no model")
    document: Any = raw
    if isinstance(raw, (str, bytes)):
        try:
            document = json.loads(raw)
        except ValueError as exc:
            raise SchemaParseError(f"Model is not valid JSON: {exc}") from exc
    if not isinstance(document, Mapping):
        raise SchemaParseError(f"Model must be a JSON object, got {type(document).__name__}")
    try:
        return CompositionModel.model_validate(document)
    except PydanticValidationError as exc:
        raise SchemaParseError(f"Model does not match the expected shape: {exc}") from exc


def find_subcomposition(
    model: Union[CompositionModel, Subcomposition], subcomposition_id: str
) -> Optional[Subcomposition]:
    # depth-first: a subcomposition may itself nest subcompositions
    for sub in model.subcompositions:
        if sub.id == subcomposition_id:
            return sub
        nested = find_subcomposition(sub, subcomposition_id)
        if nested is not None:
            return nested
    return None


def find_field_descriptors(model: CompositionModel, subcomposition_id: str) -> List[FieldDescriptor]:
    sub = find_subcomposition(model, subcomposition_id)
    if sub is None:
        LOG.warning("Subcomposition %s not present in model %s", subcomposition_id, model.id)
        return []
    return list(sub.model)


def expand_timer(value: Any, now_ms: int) -> Any:
    """
    ``"::add-<ms>"`` becomes the absolute timestamp ``now_ms + ms``.
    """

    if not isinstance(value, str):
        return value
    match = TIMER_PATTERN.fullmatch(value.strip())
    if match is None:
        return value
    return now_ms + int(match.group(1))


def substitute_variables(value: Any, variables: Mapping[str, Any]) -> Any:
    """
    Replace ``$(custom:<name>)`` tokens in string values; unknown tokens become ``""``.
    """

    if not isinstance(value, str) or "$(" not in value:
        return value

    def _replace(match: "re.Match[str]") -> str:
        replacement = variables.get(match.group(0))
        return "" if replacement is None else str(replacement)

    return VARIABLE_PATTERN.sub(_replace, value)


def _field_id(descriptor: Union[FieldDescriptor, Mapping[str, Any]]) -> Optional[str]:
    if isinstance(descriptor, FieldDescriptor):
        return descriptor.id
    value = descriptor.get("id") if isinstance(descriptor, Mapping) else None
    return str(value) if value is not None else None


def resolve(
    row: Mapping[str, Any],
    schema: Iterable[Union[FieldDescriptor, Mapping[str, Any]]],
    *,
    now_ms: Optional[int] = None,
    clock: Optional[Clock] = None,
    variables: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build the outbound payload for ``row``.

    Only fields named by ``schema`` and present in ``row`` are emitted; no
    defaults are filled in.  Timer sentinels are expanded against a single
    timestamp taken when resolution starts.
    """

    if now_ms is None:
        now_ms = (clock or epoch_ms)()
    payload: Dict[str, Any] = {}
    for descriptor in schema:
        field_id = _field_id(descriptor)
        if field_id is None:
            continue
        if field_id not in row:
            LOG.warning("Field %s missing from row; skipping", field_id)
            continue
        value = row[field_id]
        if variables is not None:
            value = substitute_variables(value, variables)
        payload[field_id] = expand_timer(value, now_ms)
    return payload
