from __future__ import annotations

import asyncio

import httpx

from conftest import APP_TOKEN, Recorder
from playout import PlayoutConfig
from playout.dispatcher import AnimationDispatcher
from playout.rundown import RundownService

CONTROL_URL = f"https://app.singular.live/apiv2/controlapps/{APP_TOKEN}/control"


def _run(store, config, recorder, clock, action):
    """Start a dispatcher, apply ``action`` on the loop and wait for the sends."""

    async def scenario() -> AnimationDispatcher:
        async with recorder.client() as client:
            dispatcher = AnimationDispatcher(store, config, client=client, clock=clock.now)
            await dispatcher.start()
            try:
                result = action(dispatcher)
                if asyncio.iscoroutine(result):
                    await result
                await dispatcher.drain()
            finally:
                await dispatcher.stop()
        return dispatcher

    return asyncio.run(scenario())


def test_take_in_sends_state_and_payload(store, config, recorder, clock) -> None:
    _run(store, config, recorder, clock, lambda _d: store.set_cell("rundown-1", "0", "state", "In"))

    assert [str(request.url) for request in recorder.requests] == [CONTROL_URL]
    assert recorder.requests[0].method == "PATCH"
    assert recorder.bodies() == [
        [{"subCompositionId": "lower-third", "payload": {"title": "Title 0"}, "state": "In"}]
    ]


def test_take_out_sends_empty_payload(store, config, recorder, clock) -> None:
    _run(store, config, recorder, clock, lambda _d: store.set_cell("rundown-1", "1", "state", "Out2"))

    assert recorder.bodies() == [[{"subCompositionId": "lower-third", "payload": {}, "state": "Out2"}]]


def test_take_out_can_resolve_payload(store, recorder, clock) -> None:
    config = PlayoutConfig(offair_payload="resolve")

    _run(store, config, recorder, clock, lambda _d: store.set_cell("rundown-1", "1", "state", "Out2"))

    assert recorder.bodies()[0][0]["payload"] == {"title": "Title 1"}


def test_non_animation_state_is_ignored(store, config, recorder, clock) -> None:
    _run(store, config, recorder, clock, lambda _d: store.set_cell("rundown-1", "0", "state", "Paused"))

    assert recorder.requests == []


def test_new_row_does_not_dispatch(store, config, recorder, clock) -> None:
    def add(_dispatcher):
        RundownService(store, config, clock=clock.now).add_item(APP_TOKEN, "lower-third")

    _run(store, config, recorder, clock, add)

    assert recorder.requests == []


def test_field_update_pushes_payload_without_state(store, config, recorder, clock) -> None:
    service = RundownService(store, config, clock=clock.now)

    _run(store, config, recorder, clock, lambda _d: service.update_fields("2", {"title": "::add-30000"}))

    assert recorder.bodies() == [
        [{"subCompositionId": "lower-third", "payload": {"title": 1_030_000}}]
    ]
    assert store.get_cell("rundown-1", "2", "lastUpdated") == clock.now()


def test_variables_are_substituted(store, config, recorder, clock) -> None:
    service = RundownService(store, config, clock=clock.now)
    service.add_variable("host", "Alice")
    store.set_cell("rundown-1", "0", "title", "With $(custom:host)")

    _run(store, config, recorder, clock, lambda _d: store.set_cell("rundown-1", "0", "state", "In"))

    assert recorder.bodies()[0][0]["payload"] == {"title": "With Alice"}


def test_http_error_is_recorded_not_raised(store, config, clock) -> None:
    recorder = Recorder(status_code=500)

    dispatcher = _run(
        store, config, recorder, clock, lambda d: d.dispatch("0", state="In")
    )

    result = dispatcher.results["0"]
    assert result.ok is False
    assert result.status_code == 500
    assert store.get_cell("rundown-1", "0", "state") == "Out1"


def test_retries_on_http_error(store, clock) -> None:
    recorder = Recorder(status_code=503)
    config = PlayoutConfig(max_retries=2)

    _run(store, config, recorder, clock, lambda d: d.dispatch("0", state="In"))

    assert len(recorder.requests) == 3


def test_timeout_is_reported(store, config, recorder, clock) -> None:
    recorder.error = httpx.ReadTimeout("slow renderer")

    dispatcher = _run(store, config, recorder, clock, lambda d: d.dispatch("0", state="In"))

    assert dispatcher.results["0"].error == "timeout"
    assert len(recorder.requests) == 1


def test_transport_error_is_reported(store, config, recorder, clock) -> None:
    recorder.error = httpx.ConnectError("refused")

    dispatcher = _run(store, config, recorder, clock, lambda d: d.dispatch("0", state="In"))

    result = dispatcher.results["0"]
    assert result.ok is False
    assert "transport error" in result.error


def test_missing_connection_skips_send(store, config, recorder, clock) -> None:
    store.set_cell("rundown-1", "3", "appToken", "unknown-token")

    dispatcher = _run(store, config, recorder, clock, lambda d: d.dispatch("3", state="In"))

    assert recorder.requests == []
    assert dispatcher.results["3"].ok is False


def test_missing_subcomposition_id_skips_send(store, config, recorder, clock) -> None:
    store.del_cell("rundown-1", "1", "subcompId")

    dispatcher = _run(store, config, recorder, clock, lambda d: d.dispatch("1", state="In"))

    assert recorder.requests == []
    assert dispatcher.results["1"].error == "missing subcomposition id or app token"


def test_unknown_subcomposition_sends_empty_payload(store, config, recorder, clock) -> None:
    store.set_cell("rundown-1", "1", "subcompId", "retired")

    _run(store, config, recorder, clock, lambda d: d.dispatch("1", state="In"))

    assert recorder.bodies() == [[{"subCompositionId": "retired", "payload": {}, "state": "In"}]]


def test_coalesce_keeps_only_latest_pending(store, recorder, clock) -> None:
    config = PlayoutConfig(coalesce=True)

    def flap(_dispatcher):
        store.set_cell("rundown-1", "0", "state", "In")
        store.set_cell("rundown-1", "0", "state", "Out2")

    _run(store, config, recorder, clock, flap)

    assert [body[0]["state"] for body in recorder.bodies()] == ["Out2"]


def test_submit_without_start_is_dropped(store, config, recorder) -> None:
    dispatcher = AnimationDispatcher(store, config, client=recorder.client())

    dispatcher.submit("0", state="In")

    assert dispatcher.in_flight == 0
    assert recorder.requests == []


def test_transport_error_retried_then_reported(store, recorder, clock) -> None:
    recorder.error = httpx.ConnectError("refused")
    config = PlayoutConfig(max_retries=1)

    dispatcher = _run(store, config, recorder, clock, lambda d: d.dispatch("0", state="In"))

    assert len(recorder.requests) == 2
    assert dispatcher.results["0"].error.startswith("transport error")
