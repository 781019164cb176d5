"""Protocol message shapes for HTTP and WebSocket (health, inputs, events)."""

from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional


# ---- Health ----

@dataclass
class HealthResponse:
    """Response for GET /health."""
    uptime_sec: float
    inputs: int
    outputs: int
    stopped: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_sec": int(self.uptime_sec),
            "inputs": self.inputs,
            "outputs": self.outputs,
            "stopped": self.stopped,
        }


# ---- Inputs ----

@dataclass
class InputRegisteredResponse:
    """Response for POST /inputs/ticker (201 Created)."""
    status: str = "registered"
    input_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InputCancelledResponse:
    """Response for DELETE /inputs/{input_id} (200 OK)."""
    status: str = "cancelled"
    input_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def inputs_list_response(inputs: List[Dict[str, str]]) -> Dict[str, Any]:
    """Response for GET /inputs."""
    return {"inputs": inputs}


def stats_response(snapshot: Dict[str, Dict[str, int]]) -> Dict[str, Any]:
    """Response for GET /stats."""
    return dict(snapshot)


# ---- WebSocket: Server → Client ----

# Error codes (use with ws_error)
ERROR_BAD_REQUEST = "BAD_REQUEST"
ERROR_MUX_STOPPED = "MUX_STOPPED"
ERROR_INPUT_NOT_FOUND = "INPUT_NOT_FOUND"
ERROR_UNAUTHORIZED = "UNAUTHORIZED"
ERROR_INTERNAL = "INTERNAL"


def ws_ts() -> str:
    """Current UTC timestamp in ISO 8601 (e.g. 2025-08-25T10:00:00Z)."""
    from datetime import datetime, timezone
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def ws_ack(request_id: Optional[str], ts: str, message_id: Optional[str] = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {"type": "ack", "status": "ok", "ts": ts}
    if request_id is not None:
        out["request_id"] = request_id
    if message_id is not None:
        out["message_id"] = message_id
    return out


def ws_event(message: Dict[str, Any], ts: str) -> Dict[str, Any]:
    return {"type": "event", "message": message, "ts": ts}


def ws_error(request_id: Optional[str], code: str, message: str, ts: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "type": "error",
        "error": {"code": code, "message": message},
        "ts": ts,
    }
    if request_id is not None:
        out["request_id"] = request_id
    return out


def ws_pong(request_id: str, ts: str) -> Dict[str, Any]:
    return {"type": "pong", "request_id": request_id, "ts": ts}


def ws_info(msg: str, ts: str, output_id: Optional[str] = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {"type": "info", "msg": msg, "ts": ts}
    if output_id is not None:
        out["output_id"] = output_id
    return out
