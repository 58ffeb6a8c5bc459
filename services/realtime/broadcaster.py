"""Fan-out of tagged events to every connected display websocket."""
from __future__ import annotations

import json
import logging
from typing import Any, List, Set

from fastapi import WebSocket

LOGGER = logging.getLogger(__name__)

PROJECT_CREATED = "project:created"
SCREENSHOT_ADDED = "screenshot:added"
SCREENSHOT_UPDATED = "screenshot:updated"
SCREENSHOT_DELETED = "screenshot:deleted"
SCREENSHOTS_CLEARED = "screenshots:cleared"
CANVAS_EXECUTE = "canvas:execute"
CANVAS_RESULT = "canvas:result"


class Broadcaster:
	"""Track display connections and send every event to all of them.

	Delivery is best effort: a socket that fails to receive is dropped and the
	broadcast carries on with the others.
	"""

	def __init__(self) -> None:
		self._clients: Set[WebSocket] = set()

	@property
	def client_count(self) -> int:
		return len(self._clients)

	def register(self, websocket: WebSocket) -> None:
		self._clients.add(websocket)
		LOGGER.info("Display connected (%d total)", len(self._clients))

	def unregister(self, websocket: WebSocket) -> None:
		if websocket in self._clients:
			self._clients.discard(websocket)
			LOGGER.info("Display disconnected (%d remaining)", len(self._clients))

	async def broadcast(self, event: str, data: Any) -> int:
		"""Send ``{"event": event, "data": data}`` to every client; return how many received it."""
		message = json.dumps({"event": event, "data": data})
		delivered = 0
		dead: List[WebSocket] = []
		for websocket in list(self._clients):
			try:
				await websocket.send_text(message)
				delivered += 1
			except Exception as exc:  # pylint: disable=broad-exception-caught
				LOGGER.warning("Dropping display socket after failed send of %s: %s", event, exc)
				dead.append(websocket)
		for websocket in dead:
			self.unregister(websocket)
		return delivered
