"""Request/response calls on top of the fire-and-forget display broadcast.

`CorrelationGateway.send_and_wait` tags a broadcast with a fresh
``requestId`` and parks an `asyncio.Future` under that id. The first
``canvas:result`` frame carrying the id settles the future; a timer rejects it
if no answer arrives in time. Whichever happens first removes the entry, so
the other becomes a no-op.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from services.realtime.broadcaster import CANVAS_RESULT

LOGGER = logging.getLogger(__name__)


class CorrelationError(RuntimeError):
	"""Base class for failures of a correlated display request."""


class NoDisplayConnectedError(CorrelationError):
	"""No display surface is connected, so nobody could answer."""


class CorrelationTimeoutError(CorrelationError):
	"""No display answered before the deadline."""


class RemoteExecutionError(CorrelationError):
	"""A display answered with an error payload."""


class BroadcastChannel(Protocol):
	"""What the gateway needs from the transport."""

	@property
	def client_count(self) -> int: ...

	async def broadcast(self, event: str, data: Any) -> int: ...


@dataclass
class _PendingRequest:
	future: asyncio.Future
	timer: asyncio.TimerHandle


class CorrelationGateway:
	"""Match inbound display responses to outstanding requests by ``requestId``."""

	def __init__(self, channel: BroadcastChannel, result_event: str = CANVAS_RESULT) -> None:
		self.channel = channel
		self.result_event = result_event
		self._pending: Dict[str, _PendingRequest] = {}

	@property
	def pending_count(self) -> int:
		return len(self._pending)

	async def send_and_wait(self, event: str, payload: Dict[str, Any], timeout: float = 10.0) -> Dict[str, Any]:
		"""Broadcast `event` and wait for the matching response.

		Args:
			event: Event name sent to the displays.
			payload: Event data; a ``requestId`` key is added.
			timeout: Seconds to wait before giving up.

		Returns:
			The response data sent back by the first display to answer.

		Raises:
			NoDisplayConnectedError: If no display is connected (nothing is broadcast).
			CorrelationTimeoutError: If no response arrives within `timeout`.
			RemoteExecutionError: If the response carries an ``error``.
		"""
		if self.channel.client_count == 0:
			raise NoDisplayConnectedError("No browser connected")

		loop = asyncio.get_running_loop()
		request_id = str(uuid.uuid4())
		future: asyncio.Future = loop.create_future()
		timer = loop.call_later(timeout, self._expire, request_id, timeout)
		self._pending[request_id] = _PendingRequest(future=future, timer=timer)

		try:
			await self.channel.broadcast(event, {**payload, "requestId": request_id})
		except Exception:
			self._discard(request_id)
			raise
		return await future

	def handle_message(self, raw: str | bytes) -> bool:
		"""Process one inbound frame from any display.

		Returns:
			True if the frame settled an outstanding request.
		"""
		try:
			message = json.loads(raw)
		except (TypeError, ValueError):
			LOGGER.debug("Ignoring malformed display frame")
			return False
		if not isinstance(message, dict) or message.get("event") != self.result_event:
			return False
		data = message.get("data")
		if not isinstance(data, dict):
			return False
		request_id = data.get("requestId")
		if not isinstance(request_id, str):
			return False
		return self.resolve(request_id, data)

	def resolve(self, request_id: str, data: Dict[str, Any]) -> bool:
		"""Settle the request `request_id` with a response payload.

		Returns:
			False when the id is unknown or already settled (late responses included).
		"""
		pending = self._discard(request_id)
		if pending is None:
			LOGGER.debug("No pending request for %s; response ignored", request_id)
			return False
		if pending.future.done():
			return False
		error = data.get("error")
		if error:
			pending.future.set_exception(RemoteExecutionError(str(error)))
		else:
			pending.future.set_result(data)
		return True

	def _expire(self, request_id: str, timeout: float) -> None:
		pending = self._pending.pop(request_id, None)
		if pending is None or pending.future.done():
			return
		LOGGER.warning("Display request %s timed out after %.1fs", request_id, timeout)
		pending.future.set_exception(
			CorrelationTimeoutError("Canvas execution timed out (no response from browser)")
		)

	def _discard(self, request_id: str) -> Optional[_PendingRequest]:
		pending = self._pending.pop(request_id, None)
		if pending is not None:
			pending.timer.cancel()
		return pending
