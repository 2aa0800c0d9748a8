"""Shared protocol constants and frame helpers for the MCP client.

Frames are single-line JSON-RPC 2.0 objects separated by newlines.
"""

from __future__ import annotations

import json
from typing import Any

JSONRPC_VERSION = "2.0"

SUPPORTED_PROTOCOL_VERSIONS = {"2024-11-05", "2025-03-26", "2025-06-18", "2025-11-25"}
CURRENT_PROTOCOL_VERSION = "2025-11-25"

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

INITIALIZE_METHOD = "initialize"
INITIALIZED_NOTIFICATION = "notifications/initialized"
PING_METHOD = "ping"


def build_request(request_id: int, method: str, params: dict[str, Any] | None) -> dict[str, Any]:
    """Build a JSON-RPC request frame."""
    frame: dict[str, Any] = {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "method": method,
    }
    if params is not None:
        frame["params"] = params
    return frame


def build_notification(method: str, params: dict[str, Any] | None) -> dict[str, Any]:
    """Build a JSON-RPC notification frame (no id, no response expected)."""
    frame: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        frame["params"] = params
    return frame


def build_result(request_id: Any, result: Any) -> dict[str, Any]:
    """Build a JSON-RPC success response frame."""
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def build_error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    """Build a JSON-RPC error response frame."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": {"code": code, "message": message},
    }


def encode_frame(frame: dict[str, Any]) -> bytes:
    """Serialize a frame to one newline-terminated UTF-8 line.

    json.dumps escapes embedded newlines inside strings, so the output is
    always exactly one line.
    """
    return (json.dumps(frame, separators=(",", ":"), ensure_ascii=False) + "\n").encode(
        "utf-8"
    )


def decode_frame(line: bytes) -> dict[str, Any]:
    """Parse one line into a frame.

    Raises:
        ValueError: If the line is not a JSON object
    """
    data = json.loads(line.decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Frame is not a JSON object: {type(data).__name__}")
    return data


def is_response(frame: dict[str, Any]) -> bool:
    return "id" in frame and ("result" in frame or "error" in frame) and "method" not in frame


def is_request(frame: dict[str, Any]) -> bool:
    return "method" in frame and "id" in frame and frame["id"] is not None


def is_notification(frame: dict[str, Any]) -> bool:
    return "method" in frame and "id" not in frame
