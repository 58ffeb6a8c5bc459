"""Simple in-memory registry of agent sessions and their bound projects."""

from __future__ import annotations

from collections import Counter
from typing import Dict, Optional
from uuid import uuid4

from models.session_models import ProjectSession
from services.screenshot_store import ScreenshotStore


class SessionRegistry:
	"""Bind each agent session to one project for the rest of its life.

	Anything done on behalf of a session must use `ProjectSession.project_id`
	from `get`, never a project named later by the caller.
	"""

	def __init__(self, store: Optional[ScreenshotStore] = None) -> None:
		self._store = store
		self._sessions: Dict[str, ProjectSession] = {}

	def open(self, project_id: str) -> ProjectSession:
		"""Create a session bound to `project_id` and register the project with the store.

		Callers wanting a "project created" signal must ask the store
		`is_new_project` before opening.
		"""
		if not project_id:
			raise ValueError("Project id must not be empty")
		session = ProjectSession(session_id=uuid4().hex, project_id=project_id)
		self._sessions[session.session_id] = session
		if self._store is not None:
			self._store.register_project(project_id)
		return session

	def get(self, session_id: str) -> ProjectSession:
		"""Return a session or raise KeyError if missing."""
		session = self._sessions.get(session_id)
		if session is None:
			raise KeyError(f"Session {session_id} not found")
		return session

	def __contains__(self, session_id: object) -> bool:
		return session_id in self._sessions

	def close(self, session_id: str) -> ProjectSession:
		"""Forget a session. In-flight work issued under it is left to finish."""
		session = self._sessions.pop(session_id, None)
		if session is None:
			raise KeyError(f"Session {session_id} not found")
		return session

	def counts_by_project(self) -> Dict[str, int]:
		"""Return the number of open sessions per project."""
		return dict(Counter(s.project_id for s in self._sessions.values()))
