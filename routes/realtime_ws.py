"""WebSocket endpoint for browser displays."""

from __future__ import annotations

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

router = APIRouter()


@router.websocket("/ws")
async def display_socket(websocket: WebSocket):
	"""Register a display for broadcasts and feed its replies to the correlation gateway."""
	broadcaster = websocket.app.state.broadcaster
	gateway = websocket.app.state.gateway
	await websocket.accept()
	broadcaster.register(websocket)
	try:
		while True:
			try:
				message = await websocket.receive()
			except WebSocketDisconnect:
				break
			if message["type"] == "websocket.disconnect":
				break
			raw = message.get("text") or message.get("bytes")
			if raw:
				gateway.handle_message(raw)
	finally:
		broadcaster.unregister(websocket)
