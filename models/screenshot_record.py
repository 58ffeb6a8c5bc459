from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Dict, Optional

from utils.timestamps import parse_timestamp

STATUS_PENDING = "pending"
STATUS_DELIVERED = "delivered"
STATUSES = (STATUS_PENDING, STATUS_DELIVERED)

SOURCE_USER = "user"
SOURCE_AGENT = "agent"
SOURCES = (SOURCE_USER, SOURCE_AGENT)

DEFAULT_PROJECT = "default"


@dataclass(frozen=True)
class GitContext:
    """Source-control tag captured when a screenshot is created.

    Attributes:
        branch: Branch name checked out at creation time.
        commit: Full commit hash.
        commit_short: Abbreviated commit hash.
        repo_root: Absolute path of the working tree.
    """

    branch: Optional[str] = None
    commit: Optional[str] = None
    commit_short: Optional[str] = None
    repo_root: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "branch": self.branch,
            "commit": self.commit,
            "commitShort": self.commit_short,
            "repoRoot": self.repo_root,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["GitContext"]:
        if not data:
            return None
        return cls(
            branch=data.get("branch"),
            commit=data.get("commit"),
            commit_short=data.get("commitShort"),
            repo_root=data.get("repoRoot"),
        )


@dataclass
class ScreenshotRecord:
    """In-memory representation of one stored screenshot.

    Attributes:
        id: Opaque unique identifier (uuid4 string).
        project_id: Partition the record belongs to.
        prompt: Free-form text supplied with the upload; may be empty.
        image_base64: Normalized image payload as base64 text.
        mime_type: MIME type of the payload (always image/jpeg once normalized).
        status: ``pending`` until handed to an agent, then ``delivered``.
        source: ``user`` for uploads, ``agent`` for agent-produced images.
        created_at: ISO-8601 UTC timestamp of creation.
        delivered_at: ISO-8601 UTC timestamp of delivery, None while pending.
        description: Optional cached text summary of the image.
        annotations: Optional text describing markup drawn on the image.
        git: Optional source-control context captured at creation.
    """

    id: str
    project_id: str
    prompt: str
    image_base64: str
    mime_type: str
    status: str
    source: str
    created_at: str
    delivered_at: Optional[str] = None
    description: Optional[str] = None
    annotations: Optional[str] = None
    git: Optional[GitContext] = None

    @property
    def image_bytes(self) -> bytes:
        return base64.b64decode(self.image_base64)

    def to_dict(self, include_image: bool = True) -> Dict[str, Any]:
        """Serialize to the camelCase layout used on disk and over the wire."""
        data: Dict[str, Any] = {
            "id": self.id,
            "projectId": self.project_id,
            "prompt": self.prompt,
            "description": self.description,
            "annotations": self.annotations,
            "mimeType": self.mime_type,
            "status": self.status,
            "source": self.source,
            "createdAt": self.created_at,
            "deliveredAt": self.delivered_at,
            "git": self.git.to_dict() if self.git else None,
        }
        if include_image:
            data["imageBase64"] = self.image_base64
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScreenshotRecord":
        """Build a record from its serialized form.

        Files written before projects and agent sources existed lack
        ``projectId``, ``source`` and ``annotations``; those fall back to
        defaults.

        Raises:
            ValueError: If required fields are missing or hold unknown values.
        """
        if not isinstance(data, dict):
            raise ValueError("Screenshot payload must be a JSON object")
        record_id = data.get("id")
        image_base64 = data.get("imageBase64")
        created_at = data.get("createdAt")
        if not record_id or not isinstance(record_id, str):
            raise ValueError("Screenshot payload is missing an id")
        if not isinstance(image_base64, str):
            raise ValueError(f"Screenshot {record_id} has no image payload")
        if not isinstance(created_at, str):
            raise ValueError(f"Screenshot {record_id} has no creation time")
        parse_timestamp(created_at)

        status = data.get("status") or STATUS_PENDING
        source = data.get("source") or SOURCE_USER
        if status not in STATUSES:
            raise ValueError(f"Screenshot {record_id} has unknown status {status!r}")
        if source not in SOURCES:
            raise ValueError(f"Screenshot {record_id} has unknown source {source!r}")

        delivered_at = data.get("deliveredAt")
        if status == STATUS_DELIVERED and not delivered_at:
            delivered_at = created_at
        if status == STATUS_PENDING:
            delivered_at = None
        if delivered_at is not None:
            parse_timestamp(delivered_at)

        return cls(
            id=record_id,
            project_id=data.get("projectId") or DEFAULT_PROJECT,
            prompt=data.get("prompt") or "",
            image_base64=image_base64,
            mime_type=data.get("mimeType") or "image/jpeg",
            status=status,
            source=source,
            created_at=created_at,
            delivered_at=delivered_at,
            description=data.get("description"),
            annotations=data.get("annotations"),
            git=GitContext.from_dict(data.get("git")),
        )
