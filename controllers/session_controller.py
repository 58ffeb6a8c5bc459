"""Health, session and project read-outs for the browser UI."""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import HTTPException, Request

from services.realtime.session_registry import SessionRegistry


def _registry(request: Request) -> SessionRegistry:
	registry = getattr(request.app.state, "session_registry", None)
	if registry is None:
		raise HTTPException(status_code=500, detail="Session registry unavailable")
	return registry


async def health(request: Request) -> Dict[str, Any]:
	"""Report liveness plus open agent sessions per project."""
	return {"status": "ok", "sessions": _registry(request).counts_by_project()}


async def session_counts(request: Request) -> Dict[str, int]:
	return _registry(request).counts_by_project()


async def list_projects(request: Request) -> List[str]:
	store = getattr(request.app.state, "store", None)
	if store is None:
		raise HTTPException(status_code=500, detail="Screenshot store unavailable")
	return store.list_projects()
