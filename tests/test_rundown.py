from __future__ import annotations

import pytest

from conftest import APP_TOKEN, lower_third_row
from playout.errors import NotFoundError, ValidationError
from playout.rundown import RundownService


@pytest.fixture
def service(store, config, clock) -> RundownService:
    return RundownService(store, config, clock=clock.now)


def _orders(service: RundownService, rundown_id: str = "rundown-1") -> dict:
    return service.collection(rundown_id).orders()


def test_add_item_goes_to_front_with_defaults(service, store, clock) -> None:
    new_id = service.add_item(APP_TOKEN, "lower-third")

    row = store.get_row("rundown-1", new_id)
    assert new_id == "4"
    assert row["order"] == 0
    assert row["state"] == "Out1"
    assert row["title"] == "Title"
    assert row["subtitle"] == ""
    assert row["subcompId"] == "lower-third"
    assert row["appLabel"] == "Studio A"
    assert row["lastUpdated"] == clock.now()
    assert _orders(service) == {"0": 1, "1": 2, "2": 3, "3": 4, "4": 0}


def test_add_nested_item_after_existing(service, store) -> None:
    new_id = service.add_item(APP_TOKEN, "bug", after="1")

    assert store.get_cell("rundown-1", new_id, "logo") == "logo.png"
    assert service.collection().sorted_ids() == ["0", "1", new_id, "2", "3"]


def test_add_item_rejects_unknown_references(service) -> None:
    with pytest.raises(NotFoundError):
        service.add_item("missing-token", "lower-third")
    with pytest.raises(NotFoundError):
        service.add_item(APP_TOKEN, "no-such-sub")
    with pytest.raises(NotFoundError):
        service.add_item(APP_TOKEN, "lower-third", after="42")


def test_duplicate_resets_state(service, store, clock) -> None:
    store.set_cell("rundown-1", "2", "state", "In")
    clock.advance(10)

    new_id = service.duplicate("2")

    row = store.get_row("rundown-1", new_id)
    assert row["state"] == "Out1"
    assert row["title"] == "Title 2"
    assert row["lastUpdated"] == clock.now()
    assert _orders(service) == {"0": 0, "1": 1, "2": 2, new_id: 3, "3": 4}


def test_sparse_delete_keeps_other_orders(service) -> None:
    service.delete("1")

    assert _orders(service) == {"0": 0, "2": 2, "3": 3}
    with pytest.raises(NotFoundError):
        service.delete("1")


def test_rundowns_are_ordered_independently(service, store) -> None:
    store.set_row("rundown-1", "7", lower_third_row(0, rundownId="rundown-2"))

    service.move("3", "0")

    assert service.collection().sorted_ids() == ["3", "0", "1", "2"]
    assert store.get_cell("rundown-1", "7", "order") == 0
    with pytest.raises(NotFoundError):
        service.move("7", "0")
    assert service.delete_rundown("rundown-2") == 1
    assert not store.has_row("rundown-1", "7")


def test_set_state_validates(service, store) -> None:
    service.set_state("0", "In")

    assert store.get_cell("rundown-1", "0", "state") == "In"
    with pytest.raises(ValidationError):
        service.set_state("0", "Paused")
    with pytest.raises(NotFoundError):
        service.set_state("9", "In")


def test_update_fields_bumps_last_updated(service, store, clock) -> None:
    service.update_fields("0", {"title": "New", "subtitle": "Sub"})

    assert service.fields("0") == {"title": "New", "subtitle": "Sub", "lastUpdated": clock.now()}


def test_update_fields_refuses_reserved_columns(service, store) -> None:
    before = store.snapshot()

    with pytest.raises(ValidationError) as excinfo:
        service.update_fields("0", {"title": "x", "order": 5, "lastUpdated": 1})

    assert excinfo.value.errors == ["'lastUpdated' is not an editable field", "'order' is not an editable field"]
    assert store.snapshot() == before


def test_variables_are_dense(service) -> None:
    first = service.add_variable("host", " Alice ", "Presenter")
    second = service.add_variable("guest", "Bob")
    third = service.add_variable("venue", "Hall")

    service.delete_variable(second)

    variables = service.list_variables()
    assert [item["id"] for item in variables] == [first, third]
    assert [item["order"] for item in variables] == [0, 1]
    assert variables[0]["name"] == "$(custom:host)"
    assert variables[0]["value"] == "Alice"


def test_variable_names_are_unique_and_required(service) -> None:
    service.add_variable("host", "Alice")

    with pytest.raises(ValidationError):
        service.add_variable("host", "Someone else")
    with pytest.raises(ValidationError):
        service.add_variable("   ", "x")


def test_move_variable(service) -> None:
    ids = [service.add_variable(name, "") for name in ("a", "b", "c")]

    assert service.move_variable(ids[0], ids[2]) == [ids[1], ids[2], ids[0]]
