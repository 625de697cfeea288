"""
Animation dispatcher.

Watches the state column of the rundown table and mirrors every accepted
transition to the remote renderer as a best-effort HTTP PATCH.  Dispatches
run as asyncio tasks after the triggering write committed; they never block
or roll back local state.  Delivery is at most once unless retries are
configured, and concurrent dispatches for the same row are not ordered.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import httpx

from . import (
    ANIMATION_STATES,
    APP_TOKEN_CELL,
    LAST_UPDATED_CELL,
    NAME_CELL,
    STATE_CELL,
    SUBCOMPOSITION_CELL,
    PlayoutConfig,
)
from .connections import ConnectionRegistry, mask_token
from .errors import NetworkError, NetworkTimeoutError, NotFoundError, SchemaParseError
from .events import StateTransitioned
from .payload import Clock, epoch_ms, find_field_descriptors, resolve
from .store import Row, Store

LOG = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    row_id: str
    state: Optional[str]
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    finished_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "rowId": self.row_id,
            "state": self.state,
            "ok": bool(self.ok),
            "statusCode": self.status_code,
            "error": self.error,
            "payload": dict(self.payload),
            "finishedAt": float(self.finished_at),
        }


class AnimationDispatcher:
    def __init__(
        self,
        store: Store,
        config: Optional[PlayoutConfig] = None,
        *,
        connections: Optional[ConnectionRegistry] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.config = config or PlayoutConfig()
        self.connections = connections or ConnectionRegistry(store, self.config.connections_table)
        self.clock: Clock = clock or epoch_ms
        self.results: Dict[str, DispatchResult] = {}

        self._client = client
        self._owns_client = client is None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()
        self._latest: Dict[str, asyncio.Task] = {}
        self._listener_tokens: List[int] = []
        self._bus_token: Optional[int] = None

    # -------------------------------------------------------------- lifecycle

    @property
    def running(self) -> bool:
        return self._loop is not None

    @property
    def in_flight(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    async def start(self) -> None:
        if self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.request_timeout))
            self._owns_client = True
        table_id = self.config.rundown_table
        self._listener_tokens = [
            self.store.add_cell_listener(table_id, STATE_CELL, self._on_state_cell),
            self.store.add_cell_listener(table_id, LAST_UPDATED_CELL, self._on_last_updated_cell),
        ]
        self._bus_token = self.store.bus.subscribe(StateTransitioned, self._handle_transition)
        LOG.info("Animation dispatcher watching '%s'", table_id)

    async def stop(self) -> None:
        if self._loop is None:
            return
        for token in self._listener_tokens:
            self.store.remove_listener(token)
        self._listener_tokens = []
        if self._bus_token is not None:
            self.store.bus.unsubscribe(self._bus_token)
            self._bus_token = None

        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        self._latest.clear()

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        self._loop = None
        LOG.info("Animation dispatcher stopped")

    async def drain(self) -> None:
        """Wait until every scheduled dispatch has finished."""

        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # -------------------------------------------------------------- listeners

    def _on_state_cell(self, store, table_id, row_id, cell_id, new_value, old_value) -> None:
        if new_value not in ANIMATION_STATES:
            LOG.debug("Ignoring state write %r on %s/%s", new_value, table_id, row_id)
            return
        if old_value is None:
            # the row was just created; nothing transitioned
            return
        LOG.debug("Animation state of %s/%s changed %s -> %s", table_id, row_id, old_value, new_value)
        store.bus.publish(
            StateTransitioned(
                table_id=table_id,
                row_id=row_id,
                old_state=old_value if old_value in ANIMATION_STATES else None,
                new_state=new_value,
            )
        )

    def _on_last_updated_cell(self, store, table_id, row_id, cell_id, new_value, old_value) -> None:
        if not _is_number(new_value) or not _is_number(old_value):
            return
        LOG.debug("Field data of %s/%s updated", table_id, row_id)
        self.submit(row_id, state=None, include_payload=True)

    def _handle_transition(self, event: StateTransitioned) -> None:
        if event.table_id != self.config.rundown_table:
            return
        include_payload = event.new_state == "In" or self.config.offair_payload == "resolve"
        self.submit(event.row_id, state=event.new_state, include_payload=include_payload)

    # --------------------------------------------------------------- dispatch

    def submit(self, row_id: str, *, state: Optional[str] = None, include_payload: bool = True) -> None:
        """
        Schedule a fire-and-forget dispatch; safe to call from any thread.
        """

        loop = self._loop
        if loop is None or loop.is_closed():
            LOG.warning("Dispatcher is not running; %s -> %s not sent", row_id, state)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._spawn(row_id, state, include_payload)
            return
        try:
            loop.call_soon_threadsafe(self._spawn, row_id, state, include_payload)
        except RuntimeError:
            LOG.debug("Dispatch scheduling failed; loop is shutting down.", exc_info=True)

    def _spawn(self, row_id: str, state: Optional[str], include_payload: bool) -> None:
        if self._loop is None:
            return
        if self.config.coalesce:
            previous = self._latest.get(row_id)
            if previous is not None and not previous.done():
                previous.cancel()
        task = asyncio.create_task(self.dispatch(row_id, state=state, include_payload=include_payload))
        self._tasks.add(task)
        self._latest[row_id] = task
        task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        for row_id, latest in list(self._latest.items()):
            if latest is task:
                del self._latest[row_id]

    async def dispatch(
        self,
        row_id: str,
        *,
        state: Optional[str] = None,
        include_payload: bool = True,
    ) -> DispatchResult:
        """
        Resolve the payload for ``row_id`` and PATCH it to the remote renderer.

        ``state=None`` pushes field values only and omits the ``state`` key.
        Failures are logged and reported in the returned result, never raised.
        """

        row = self.store.get_row(self.config.rundown_table, row_id)
        if row is None:
            LOG.error("Row %s not found in '%s'", row_id, self.config.rundown_table)
            return self._record(DispatchResult(row_id=row_id, state=state, ok=False, error="row not found"))

        name = row.get(NAME_CELL)
        subcomposition_id = row.get(SUBCOMPOSITION_CELL)
        app_token = row.get(APP_TOKEN_CELL)
        if not subcomposition_id or not app_token:
            LOG.error(
                "Item %s (%s) is missing its subcomposition id or app token; not dispatched",
                row_id,
                name,
            )
            return self._record(
                DispatchResult(row_id=row_id, state=state, ok=False, error="missing subcomposition id or app token")
            )

        payload: Dict[str, Any] = {}
        if include_payload:
            try:
                payload = self.build_payload(row)
            except NotFoundError as exc:
                LOG.error("Item %s (%s): %s", row_id, name, exc)
                return self._record(DispatchResult(row_id=row_id, state=state, ok=False, error=str(exc)))

        body: Dict[str, Any] = {"subCompositionId": subcomposition_id, "payload": payload}
        if state is not None:
            body["state"] = state
        LOG.info(
            "Dispatching item %s (%s) subcomposition %s state=%s fields=%s",
            row_id,
            name,
            subcomposition_id,
            state,
            sorted(payload),
        )

        try:
            response = await self._send(str(app_token), body)
        except NetworkTimeoutError as exc:
            LOG.debug("Dispatch of item %s timed out: %s", row_id, exc)
            return self._record(
                DispatchResult(row_id=row_id, state=state, ok=False, error="timeout", payload=payload)
            )
        except NetworkError as exc:
            LOG.error(
                "Failed to send control command for item %s (%s) app %s state=%s: %s",
                row_id,
                name,
                mask_token(str(app_token)),
                state,
                exc,
            )
            return self._record(
                DispatchResult(
                    row_id=row_id,
                    state=state,
                    ok=False,
                    status_code=exc.status_code,
                    error=str(exc),
                    payload=payload,
                )
            )

        LOG.debug("Remote response for item %s: %s", row_id, response.text[:500])
        return self._record(
            DispatchResult(
                row_id=row_id,
                state=state,
                ok=True,
                status_code=response.status_code,
                payload=payload,
            )
        )

    def build_payload(self, row: Row) -> Dict[str, Any]:
        """
        Resolve ``row`` against its connection's schema.

        Raises :class:`NotFoundError` for an unknown connection; a schema that
        cannot be parsed yields an empty payload.
        """

        connection = self.connections.get(str(row.get(APP_TOKEN_CELL)))
        try:
            model = connection.parse()
        except SchemaParseError as exc:
            LOG.warning("Schema of connection %s unusable, sending empty payload: %s", connection.label, exc)
            return {}
        schema = find_field_descriptors(model, str(row.get(SUBCOMPOSITION_CELL)))
        return resolve(row, schema, clock=self.clock, variables=self._variables())

    def _variables(self) -> Dict[str, Any]:
        table = self.store.get_table(self.config.variables_table)
        return {
            str(row["name"]): row.get("value", "")
            for row in table.values()
            if isinstance(row.get("name"), str)
        }

    async def _send(self, app_token: str, body: Dict[str, Any]) -> httpx.Response:
        if self._client is None:
            raise NetworkError("Dispatcher has no HTTP client; call start() first")
        url = self.config.control_url(app_token)
        attempts = 1 + max(0, int(self.config.max_retries))
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await asyncio.wait_for(
                    self._client.patch(url, json=[body]),
                    timeout=self.config.request_timeout,
                )
            except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
                raise NetworkTimeoutError(
                    f"no response within {self.config.request_timeout:g}s"
                ) from exc
            except httpx.HTTPError as exc:
                error = NetworkError(f"transport error: {exc}")
            else:
                if response.is_success:
                    return response
                error = NetworkError(f"HTTP error {response.status_code}", status_code=response.status_code)
            if attempt >= attempts:
                raise error
            LOG.warning("Dispatch attempt %d/%d failed (%s); retrying", attempt, attempts, error)

    def _record(self, result: DispatchResult) -> DispatchResult:
        self.results[result.row_id] = result
        return result


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
