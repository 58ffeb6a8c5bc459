"""JSON-RPC 2.0 envelope handling for the MCP HTTP endpoint.

Only the subset agents use against this bridge is implemented: the
``initialize`` handshake, notifications, ``ping``, ``tools/list`` and
``tools/call``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from services.mcp.tools import TOOL_DEFINITIONS, ProjectTools

PROTOCOL_VERSION = "2025-03-26"
SERVER_INFO = {"name": "screenshot-bridge", "version": "1.0.0"}

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000


def is_initialize_request(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("method") == "initialize"


def is_notification(payload: Dict[str, Any]) -> bool:
    return "id" not in payload


def result_message(request_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_message(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def initialize_result(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    requested = (params or {}).get("protocolVersion")
    return {
        "protocolVersion": requested if isinstance(requested, str) and requested else PROTOCOL_VERSION,
        "capabilities": {"tools": {"listChanged": False}},
        "serverInfo": SERVER_INFO,
    }


async def dispatch(payload: Dict[str, Any], tools: ProjectTools) -> Optional[Dict[str, Any]]:
    """Handle one JSON-RPC message for an established session.

    Returns:
        The response message, or None for notifications.
    """
    if payload.get("jsonrpc") != "2.0" or not isinstance(payload.get("method"), str):
        return error_message(payload.get("id"), INVALID_REQUEST, "Invalid JSON-RPC request")
    if is_notification(payload):
        return None

    request_id = payload.get("id")
    method = payload["method"]
    params = payload.get("params") or {}
    if not isinstance(params, dict):
        return error_message(request_id, INVALID_PARAMS, "params must be an object")

    if method == "initialize":
        return result_message(request_id, initialize_result(params))
    if method == "ping":
        return result_message(request_id, {})
    if method == "tools/list":
        return result_message(request_id, {"tools": TOOL_DEFINITIONS})
    if method == "tools/call":
        name = params.get("name")
        arguments = params.get("arguments") or {}
        if not isinstance(name, str) or not isinstance(arguments, dict):
            return error_message(request_id, INVALID_PARAMS, "tools/call needs a name and object arguments")
        return result_message(request_id, await tools.call(name, arguments))
    return error_message(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
