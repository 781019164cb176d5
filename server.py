"""HTTP server: health, stats, push, inputs, stop. WebSocket: one mux output per connection (ping, publish)."""

from dotenv import load_dotenv
load_dotenv()

import asyncio
import json
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware

from asyncmux import InputHandle, Message, Multiplexer, MuxOutput, MuxSettings, MuxStoppedError
from asyncmux.observability import get_logger
from asyncmux.protocol import (
    HealthResponse,
    InputCancelledResponse,
    InputRegisteredResponse,
    inputs_list_response,
    stats_response,
    ws_ack,
    ws_error,
    ws_event,
    ws_info,
    ws_pong,
    ws_ts,
    ERROR_BAD_REQUEST,
    ERROR_MUX_STOPPED,
    ERROR_UNAUTHORIZED,
    ERROR_INTERNAL,
)

logger = get_logger("asyncmux.server")

mux: Multiplexer = Multiplexer("server")
_start_time: float = 0.0

# Handles for inputs registered over HTTP, by input_id
_inputs: Dict[str, InputHandle] = {}

# Active WebSocket connections for server-initiated heartbeat
_ws_connections: set = set()
_heartbeat_task: asyncio.Task | None = None


# X-API-Key is enforced only when API_KEY is set in env (or .env)
def _get_expected_api_key() -> str | None:
    return (os.environ.get("API_KEY") or "").strip() or None


class XAPIKeyMiddleware(BaseHTTPMiddleware):
    """Require X-API-Key header when API_KEY env is set."""
    async def dispatch(self, request: Request, call_next):
        expected = _get_expected_api_key()
        if not expected:
            return await call_next(request)
        key = (request.headers.get("X-API-Key") or "").strip()
        if key != expected:
            return JSONResponse(
                status_code=401,
                content={"error": ERROR_UNAUTHORIZED, "message": "invalid or missing X-API-Key"},
            )
        return await call_next(request)


async def _heartbeat_loop() -> None:
    """Periodically send info heartbeat (msg: ping) to all connected WebSocket clients."""
    try:
        interval = float(os.environ.get("HEARTBEAT_INTERVAL_SEC", "30"))
    except ValueError:
        interval = 30.0
    if interval <= 0:
        return
    while True:
        await asyncio.sleep(interval)
        payload = ws_info("ping", ws_ts())
        dead = []
        for ws in list(_ws_connections):
            try:
                await ws.send_json(payload)
            except Exception:
                dead.append(ws)
        for ws in dead:
            _ws_connections.discard(ws)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global mux, _start_time, _heartbeat_task
    _start_time = time.time()
    mux = Multiplexer("server", MuxSettings.from_env())
    _inputs.clear()
    _heartbeat_task = asyncio.create_task(_heartbeat_loop())
    yield
    _heartbeat_task.cancel()
    try:
        await _heartbeat_task
    except asyncio.CancelledError:
        pass
    await mux.shutdown()


app = FastAPI(title="AsyncMux API", lifespan=lifespan)
app.add_middleware(XAPIKeyMiddleware)

router = APIRouter(prefix="/api/v1")


def _stopped_response() -> JSONResponse:
    return JSONResponse(
        content={"error": ERROR_MUX_STOPPED, "message": "mux is stopped"},
        status_code=409,
    )


# ---- Health ----

@router.get("/health")
def health() -> JSONResponse:
    """GET /health → { uptime_sec, inputs, outputs, stopped }."""
    uptime = time.time() - _start_time
    body = HealthResponse(
        uptime_sec=uptime,
        inputs=mux.input_count,
        outputs=mux.output_count,
        stopped=mux.stopped,
    ).to_dict()
    return JSONResponse(content=body, status_code=200)


# ---- Stats ----

@router.get("/stats")
def stats() -> JSONResponse:
    """GET /stats → { counters: {...}, gauges: {...} }."""
    return JSONResponse(content=stats_response(mux.metrics.snapshot()), status_code=200)


# ---- Push ----

class PushBody(BaseModel):
    payload: Any = None
    source: str = "push"


@router.post("/push")
async def push(body: PushBody) -> JSONResponse:
    """POST /push { payload } → 202 { status: accepted, id } or 409 once stopped."""
    if mux.stopped:
        return _stopped_response()
    message = Message(payload=body.payload, source=body.source)
    mux.push(message)
    return JSONResponse(
        content={"status": "accepted", "id": message.message_id},
        status_code=202,
    )


# ---- Inputs ----

class TickerBody(BaseModel):
    count: int = Field(default=10, ge=1, le=100_000)
    interval_sec: float = Field(default=1.0, ge=0.0)


async def _ticker(count: int, interval_sec: float) -> AsyncIterator[Message]:
    for seq in range(count):
        if interval_sec > 0:
            await asyncio.sleep(interval_sec)
        else:
            await asyncio.sleep(0)
        yield Message(payload={"seq": seq}, source="ticker")


def _prune_inputs() -> None:
    for input_id in [k for k, h in _inputs.items() if h.done]:
        del _inputs[input_id]


@router.post("/inputs/ticker")
async def add_ticker(body: TickerBody) -> JSONResponse:
    """POST /inputs/ticker { count, interval_sec } → 201 { status: registered, input_id } or 409."""
    _prune_inputs()
    try:
        handle = mux.in_(_ticker(body.count, body.interval_sec))
    except MuxStoppedError:
        return _stopped_response()
    _inputs[handle.input_id] = handle
    return JSONResponse(
        content=InputRegisteredResponse(input_id=handle.input_id).to_dict(),
        status_code=201,
    )


@router.get("/inputs")
def list_inputs() -> JSONResponse:
    """GET /inputs → { inputs: [ { input_id, state } ] }."""
    return JSONResponse(content=inputs_list_response(mux.list_inputs()), status_code=200)


@router.delete("/inputs/{input_id}")
async def cancel_input(input_id: str) -> JSONResponse:
    """DELETE /inputs/{input_id} → 200 { status: cancelled, input_id } or 404."""
    _prune_inputs()
    handle = _inputs.pop(input_id, None)
    if handle is None:
        return JSONResponse(
            content={"error": "input not found", "input_id": input_id},
            status_code=404,
        )
    handle.cancel()
    return JSONResponse(
        content=InputCancelledResponse(input_id=input_id).to_dict(),
        status_code=200,
    )


# ---- Stop ----

@router.post("/stop")
async def stop() -> JSONResponse:
    """POST /stop → 200 { status: stopped }. Idempotent."""
    mux.stop()
    return JSONResponse(content={"status": "stopped"}, status_code=200)


# ---- WebSocket (ping, publish) ----

def _event_body(item: Any) -> Dict[str, Any]:
    if isinstance(item, Message):
        return item.to_dict()
    return {"payload": item}


async def _forward(websocket: WebSocket, output: MuxOutput) -> None:
    """Send every item from this connection's output; tell the client when the mux stops."""
    async for item in output:
        await websocket.send_json(ws_event(_event_body(item), ws_ts()))
    if mux.stopped:
        try:
            await websocket.send_json(ws_info("stopped", ws_ts(), output.output_id))
        except Exception as e:
            logger.debug("stopped_notice_failed", extra={"error": str(e)})


def _ws_api_key_ok(websocket: WebSocket) -> bool:
    """Return True if API_KEY is unset or X-API-Key matches it."""
    expected = _get_expected_api_key()
    if not expected:
        return True
    key = (websocket.headers.get("x-api-key") or "").strip()
    return key == expected


@router.websocket("/ws")
async def websocket_handler(websocket: WebSocket) -> None:
    """
    WebSocket endpoint. Each connection is one mux output.
    Client messages: ping, publish. Server messages: info, event, ack, pong, error.
    """
    await websocket.accept()
    if not _ws_api_key_ok(websocket):
        await websocket.send_json(ws_error(
            None, ERROR_UNAUTHORIZED,
            "invalid or missing X-API-Key",
            ws_ts(),
        ))
        await websocket.close()
        return
    try:
        output = mux.out()
    except MuxStoppedError:
        await websocket.send_json(ws_error(None, ERROR_MUX_STOPPED, "mux is stopped", ws_ts()))
        await websocket.close()
        return
    _ws_connections.add(websocket)
    forward_task: asyncio.Task | None = None
    try:
        await websocket.send_json(ws_info("subscribed", ws_ts(), output.output_id))
        forward_task = asyncio.create_task(_forward(websocket, output))
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json(ws_error(None, ERROR_BAD_REQUEST, "Invalid JSON", ws_ts()))
                continue
            if not isinstance(msg, dict):
                await websocket.send_json(ws_error(None, ERROR_BAD_REQUEST, "Expected a JSON object", ws_ts()))
                continue
            msg_type = msg.get("type")
            request_id = msg.get("request_id")

            if msg_type == "ping":
                await websocket.send_json(ws_pong(msg.get("request_id", ""), ws_ts()))
                continue

            if msg_type == "publish":
                if "payload" not in msg:
                    await websocket.send_json(ws_error(
                        request_id, ERROR_BAD_REQUEST,
                        "publish requires payload",
                        ws_ts(),
                    ))
                    continue
                if mux.stopped:
                    await websocket.send_json(ws_error(
                        request_id, ERROR_MUX_STOPPED, "mux is stopped", ws_ts(),
                    ))
                    continue
                message = Message(payload=msg["payload"], source=output.output_id)
                mux.push(message)
                await websocket.send_json(ws_ack(request_id, ws_ts(), message.message_id))
                continue

            await websocket.send_json(ws_error(
                request_id, ERROR_BAD_REQUEST,
                f"Unknown type: {msg_type!r}",
                ws_ts(),
            ))
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.exception("ws_handler_failed", extra={"output_id": output.output_id})
        try:
            await websocket.send_json(ws_error(
                None, ERROR_INTERNAL,
                f"Unexpected server error: {e!s}",
                ws_ts(),
            ))
        except Exception:
            pass
    finally:
        output.stop()
        _ws_connections.discard(websocket)
        if forward_task is not None:
            forward_task.cancel()
            try:
                await forward_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug("forward_ended", extra={"output_id": output.output_id, "error": str(e)})


app.include_router(router)
