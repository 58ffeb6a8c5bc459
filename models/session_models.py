"""Session domain models for agent connections."""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ProjectSession:
	"""A long-lived agent session bound to one project for its whole lifetime."""

	session_id: str
	project_id: str
	created_at: float = field(default_factory=lambda: time.time())
