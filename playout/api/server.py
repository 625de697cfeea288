"""
FastAPI control surface for the playout service.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx
from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import PlayoutConfig
from ..connections import ConnectionRegistry
from ..dispatcher import AnimationDispatcher
from ..errors import NotFoundError, TransactionFailure, ValidationError
from ..payload import Clock
from ..reconciler import PatchReconciler
from ..rundown import DEFAULT_RUNDOWN_ID, RundownService
from ..store import Store
from . import schemas

LOG = logging.getLogger(__name__)


def _error_body(message: str, details: Optional[List[str]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "error": message}
    if details is not None:
        body["details"] = details
    return body


def create_app(
    *,
    store: Optional[Store] = None,
    config: Optional[PlayoutConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
    clock: Optional[Clock] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    playout_config = config or PlayoutConfig()
    playout_store = store or Store()
    connections = ConnectionRegistry(playout_store, playout_config.connections_table)
    dispatcher = AnimationDispatcher(
        playout_store,
        playout_config,
        connections=connections,
        client=client,
        clock=clock,
    )
    reconciler = PatchReconciler(playout_store, playout_config.rundown_table, clock=clock)
    rundown = RundownService(playout_store, playout_config, connections=connections, clock=clock)
    started_at = time.monotonic()

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncIterator[None]:
        await dispatcher.start()
        try:
            if lifespan is not None:
                async with lifespan(app):
                    yield
            else:
                yield
        finally:
            await dispatcher.stop()
            if playout_config.data_path:
                try:
                    playout_store.save(playout_config.data_path)
                except OSError:
                    LOG.exception("Failed to save store to %s", playout_config.data_path)

    app = FastAPI(title="Playout Control API", lifespan=app_lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.store = playout_store
    app.state.dispatcher = dispatcher
    app.state.reconciler = reconciler
    app.state.rundown = rundown
    app.state.connections = connections

    @app.exception_handler(NotFoundError)
    async def _not_found(_request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content=_error_body(str(exc)))

    @app.exception_handler(ValidationError)
    async def _invalid(_request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=_error_body(str(exc), exc.errors))

    @app.exception_handler(TransactionFailure)
    async def _transaction_failed(_request: Request, exc: TransactionFailure) -> JSONResponse:
        LOG.error("Store transaction failed: %s", exc)
        return JSONResponse(status_code=500, content=_error_body(str(exc)))

    @app.get("/healthz")
    async def healthz() -> dict:
        return {
            "status": "ok",
            "uptime": round(time.monotonic() - started_at, 3),
            "inFlight": dispatcher.in_flight,
        }

    # ------------------------------------------------------------ control

    @app.get("/control", response_model=List[schemas.ControlItemModel])
    @app.get("/singular/control", response_model=List[schemas.ControlItemModel], include_in_schema=False)
    async def get_control() -> List[dict]:
        return reconciler.snapshot()

    @app.patch("/control")
    @app.patch("/singular/control", include_in_schema=False)
    async def patch_control(request: Request) -> JSONResponse:
        raw = await request.body()
        try:
            batch = json.loads(raw)
        except ValueError as exc:
            LOG.error("Failed to parse PATCH body: %s", exc)
            return JSONResponse(status_code=400, content=_error_body("Invalid JSON in request body"))

        result = reconciler.apply(batch)
        if not result.success:
            return JSONResponse(status_code=400, content=_error_body(result.message, result.errors))
        return JSONResponse(status_code=200, content={"success": True, "message": result.message})

    # ------------------------------------------------------------ rundown

    @app.get("/rundown")
    async def list_rundown(rundown_id: str = DEFAULT_RUNDOWN_ID) -> List[dict]:
        return rundown.items(rundown_id)

    @app.post("/rundown", status_code=201, response_model=schemas.CreatedResponse)
    async def add_item(payload: schemas.AddItemRequest) -> schemas.CreatedResponse:
        new_id = rundown.add_item(
            payload.app_token,
            payload.subcomposition_id,
            rundown_id=payload.rundown_id,
            after=payload.after,
        )
        return schemas.CreatedResponse(id=new_id)

    @app.post("/rundown/{row_id}/duplicate", status_code=201, response_model=schemas.CreatedResponse)
    async def duplicate_item(row_id: str) -> schemas.CreatedResponse:
        return schemas.CreatedResponse(id=rundown.duplicate(row_id))

    @app.post("/rundown/{row_id}/move", response_model=schemas.OrderResponse)
    async def move_item(row_id: str, payload: schemas.MoveRequest) -> schemas.OrderResponse:
        return schemas.OrderResponse(order=rundown.move(row_id, payload.to))

    @app.delete("/rundown/{row_id}", response_model=schemas.OkResponse)
    async def delete_item(row_id: str) -> schemas.OkResponse:
        rundown.delete(row_id)
        return schemas.OkResponse()

    @app.put("/rundown/{row_id}/state", response_model=schemas.OkResponse)
    async def set_state(row_id: str, payload: schemas.StateRequest) -> schemas.OkResponse:
        rundown.set_state(row_id, payload.state)
        return schemas.OkResponse()

    @app.patch("/rundown/{row_id}/fields", response_model=schemas.OkResponse)
    async def update_fields(
        row_id: str,
        values: Dict[str, schemas.Scalar] = Body(...),
    ) -> schemas.OkResponse:
        rundown.update_fields(row_id, values)
        return schemas.OkResponse()

    @app.post("/rundown/{row_id}/dispatch", response_model=schemas.DispatchResultModel)
    async def dispatch_item(
        row_id: str,
        payload: Optional[schemas.DispatchRequest] = None,
    ) -> dict:
        request = payload or schemas.DispatchRequest()
        if not playout_store.has_row(playout_config.rundown_table, row_id):
            raise HTTPException(status_code=404, detail=f"Rundown item {row_id} not found")
        state = request.state
        if state is None and request.include_state:
            state = playout_store.get_cell(playout_config.rundown_table, row_id, "state")
        result = await dispatcher.dispatch(row_id, state=state, include_payload=True)
        return result.to_dict()

    @app.get("/rundown/{row_id}/dispatch", response_model=schemas.DispatchResultModel)
    async def last_dispatch(row_id: str) -> dict:
        result = dispatcher.results.get(row_id)
        if result is None:
            raise HTTPException(status_code=404, detail=f"No dispatch recorded for item {row_id}")
        return result.to_dict()

    # -------------------------------------------------------- connections

    @app.get("/connections", response_model=List[schemas.ConnectionModel])
    async def list_connections() -> List[dict]:
        return [connection.to_dict() for connection in connections.list()]

    @app.put("/connections/{app_token}", response_model=schemas.ConnectionModel)
    async def put_connection(app_token: str, payload: schemas.ConnectionRequest) -> dict:
        connection = connections.upsert(
            app_token,
            label=payload.label,
            model=payload.model,
            type=payload.type,
        )
        return connection.to_dict()

    # ---------------------------------------------------------- variables

    @app.get("/variables")
    async def list_variables() -> List[dict]:
        return rundown.list_variables()

    @app.post("/variables", status_code=201, response_model=schemas.CreatedResponse)
    async def add_variable(payload: schemas.VariableRequest) -> schemas.CreatedResponse:
        return schemas.CreatedResponse(
            id=rundown.add_variable(payload.name, payload.value, payload.description)
        )

    @app.delete("/variables/{row_id}", response_model=schemas.OkResponse)
    async def delete_variable(row_id: str) -> schemas.OkResponse:
        rundown.delete_variable(row_id)
        return schemas.OkResponse()

    @app.post("/variables/{row_id}/move", response_model=schemas.OrderResponse)
    async def move_variable(row_id: str, payload: schemas.MoveRequest) -> schemas.OrderResponse:
        return schemas.OrderResponse(order=rundown.move_variable(row_id, payload.to))

    return app
