from __future__ import annotations

import json

import pytest

from conftest import MODEL
from playout.errors import SchemaParseError
from playout.payload import (
    expand_timer,
    find_field_descriptors,
    next_stamp,
    parse_model,
    resolve,
    substitute_variables,
)


def test_resolve_keeps_schema_and_row_intersection() -> None:
    schema = find_field_descriptors(parse_model(MODEL), "lower-third")
    row = {"title": "Hello", "subtitle": "World", "order": 3, "appToken": "abc"}

    payload = resolve(row, schema, now_ms=1_000_000)

    assert payload == {"title": "Hello", "subtitle": "World"}


def test_timer_sentinel_expands_from_one_timestamp() -> None:
    schema = [{"id": "start"}, {"id": "end"}]
    row = {"start": "::add-0", "end": "::add-30000"}

    calls = []

    def clock() -> int:
        calls.append(1)
        return 1_000_000

    payload = resolve(row, schema, clock=clock)

    assert payload == {"start": 1_000_000, "end": 1_030_000}
    assert len(calls) == 1


def test_timer_requires_exact_sentinel() -> None:
    assert expand_timer(" ::add-5 ", 10) == 15
    assert expand_timer("::add-abc", 10) == "::add-abc"
    assert expand_timer("x::add-5", 10) == "x::add-5"
    assert expand_timer(42, 10) == 42


def test_variables_substituted_before_timer() -> None:
    variables = {"$(custom:host)": "Alice", "$(custom:delay)": "::add-100"}

    assert substitute_variables("Hi $(custom:host)!", variables) == "Hi Alice!"
    assert substitute_variables("$(custom:nobody)", variables) == ""
    assert resolve({"t": "$(custom:delay)"}, [{"id": "t"}], now_ms=5, variables=variables) == {"t": 105}


def test_nested_subcomposition_lookup() -> None:
    model = parse_model(json.dumps(MODEL))

    descriptors = find_field_descriptors(model, "bug")

    assert [descriptor.id for descriptor in descriptors] == ["logo"]
    assert descriptors[0].default_value == "logo.png"
    assert find_field_descriptors(model, "missing") == []


@pytest.mark.parametrize("raw", ["", "{not json", "[1, 2]", {"subcompositions": "nope"}])
def test_parse_model_rejects_bad_documents(raw) -> None:
    with pytest.raises(SchemaParseError):
        parse_model(raw)


def test_next_stamp_is_strictly_increasing() -> None:
    assert next_stamp(5, 100) == 100
    assert next_stamp(100, 100) == 101
    assert next_stamp(250, 100) == 251
    assert next_stamp(None, 100) == 100
