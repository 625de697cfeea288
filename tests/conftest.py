from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from playout import PlayoutConfig
from playout.connections import ConnectionRegistry
from playout.store import Store

APP_TOKEN = "token-123456789"

MODEL = {
    "id": "comp-main",
    "name": "Main Composition",
    "model": [],
    "subcompositions": [
        {
            "id": "lower-third",
            "name": "Lower Third",
            "model": [
                {"id": "title", "type": "text", "defaultValue": "Title"},
                {"id": "subtitle", "type": "text", "defaultValue": ""},
                {"id": "timer", "type": "timecontrol", "defaultValue": ""},
            ],
            "subcompositions": [
                {
                    "id": "bug",
                    "name": "Corner Bug",
                    "model": [{"id": "logo", "type": "image", "defaultValue": "logo.png"}],
                    "subcompositions": [],
                }
            ],
        }
    ],
}


class FakeClock:
    def __init__(self, value: int = 1_000_000) -> None:
        self.value = value

    def now(self) -> int:
        return self.value

    def advance(self, delta_ms: int) -> None:
        self.value += int(delta_ms)


class Recorder:
    """Collect outbound requests and answer them with ``status_code``."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.requests: List[httpx.Request] = []
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json={"success": self.status_code < 400})

    def bodies(self) -> list:
        return [json.loads(request.content) for request in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def lower_third_row(order: int, **fields) -> dict:
    row = {
        "subcompId": "lower-third",
        "template": "Lower Third",
        "name": f"Item {order}",
        "appToken": APP_TOKEN,
        "appLabel": "Studio A",
        "rundownId": "rundown-1",
        "type": "subcomposition",
        "state": "Out1",
        "order": order,
        "lastUpdated": 5,
        "title": f"Title {order}",
    }
    row.update(fields)
    return row


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> PlayoutConfig:
    return PlayoutConfig()


@pytest.fixture
def store() -> Store:
    store = Store()
    ConnectionRegistry(store).upsert(APP_TOKEN, label="Studio A", model=MODEL)
    for order in range(4):
        store.set_row("rundown-1", str(order), lower_third_row(order))
    return store


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
