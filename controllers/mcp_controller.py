"""MCP session lifecycle and JSON-RPC handling over HTTP."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from controllers.screenshot_controller import project_from_request
from services.mcp import protocol
from services.mcp.tools import ProjectTools
from services.realtime import broadcaster as events

LOGGER = logging.getLogger(__name__)

SESSION_HEADER = "mcp-session-id"


def _bad_session() -> JSONResponse:
	return JSONResponse(
		status_code=400,
		content=protocol.error_message(None, protocol.SERVER_ERROR, "Bad Request: No valid session ID"),
	)


def _session_id(request: Request) -> Optional[str]:
	return request.headers.get(SESSION_HEADER)


async def handle_post(request: Request) -> Response:
	"""Handle one JSON-RPC message.

	An ``initialize`` request without a session header opens a new session
	bound to ``?project=``; every other message must carry a known
	``mcp-session-id`` header and runs against that session's project.
	"""
	try:
		payload: Any = json.loads(await request.body())
	except ValueError:
		return JSONResponse(
			status_code=400, content=protocol.error_message(None, protocol.PARSE_ERROR, "Parse error")
		)
	if not isinstance(payload, dict):
		return JSONResponse(
			status_code=400,
			content=protocol.error_message(None, protocol.INVALID_REQUEST, "Batch requests are not supported"),
		)

	state = request.app.state
	session_id = _session_id(request)

	if session_id and session_id in state.session_registry:
		session = state.session_registry.get(session_id)
		tools = ProjectTools(session, state.screenshot_service)
		response = await protocol.dispatch(payload, tools)
		if response is None:
			return Response(status_code=202)
		return JSONResponse(content=response, headers={SESSION_HEADER: session_id})

	if not session_id and protocol.is_initialize_request(payload):
		project_id = project_from_request(request)
		# Checked before open(), which registers the project.
		first_for_project = state.store.is_new_project(project_id)
		session = state.session_registry.open(project_id)
		LOGGER.info("Opened MCP session %s for project %r", session.session_id, project_id)
		if first_for_project:
			await state.broadcaster.broadcast(events.PROJECT_CREATED, {"project": project_id})
		result = protocol.initialize_result(payload.get("params"))
		return JSONResponse(
			content=protocol.result_message(payload.get("id"), result),
			headers={SESSION_HEADER: session.session_id},
		)

	return _bad_session()


async def handle_get(request: Request) -> Response:
	session_id = _session_id(request)
	if not session_id or session_id not in request.app.state.session_registry:
		return Response(status_code=400, content="Invalid or missing session ID")
	session = request.app.state.session_registry.get(session_id)
	return JSONResponse(content={"ok": True, "transport": "http", "project": session.project_id})


async def handle_delete(request: Request) -> Response:
	session_id = _session_id(request)
	if not session_id or session_id not in request.app.state.session_registry:
		return Response(status_code=400, content="Invalid or missing session ID")
	session = request.app.state.session_registry.close(session_id)
	LOGGER.info("Closed MCP session %s for project %r", session_id, session.project_id)
	return JSONResponse(content={"closed": True})
