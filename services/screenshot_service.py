"""Helpers that pair store mutations with their display notifications.

This service coordinates normalizing an incoming image (off the event loop,
via `asyncio.to_thread`), writing the record through `ScreenshotStore`, and
broadcasting the matching lifecycle event so connected displays refresh.
Both the REST controllers and the agent tools go through it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from models.screenshot_record import SOURCE_AGENT, SOURCE_USER, STATUS_DELIVERED, ScreenshotRecord
from services.image_normalizer import ImageNormalizer
from services.realtime import broadcaster as events
from services.realtime.broadcaster import Broadcaster
from services.realtime.correlation import CorrelationGateway
from services.screenshot_store import ScreenshotStore
from utils.media_validation import parse_image_data_url

LOGGER = logging.getLogger(__name__)


class ScreenshotService:
    """Store operations that also notify displays.

    Args:
        store: The screenshot repository.
        normalizer: Image normalizer applied to every inbound image.
        broadcaster: Fan-out transport to connected displays.
        gateway: Request/response gateway used for remote canvas rendering.
        canvas_timeout: Seconds to wait for a display to render a canvas.
    """

    def __init__(
        self,
        store: ScreenshotStore,
        normalizer: ImageNormalizer,
        broadcaster: Broadcaster,
        gateway: CorrelationGateway,
        canvas_timeout: float = 10.0,
    ) -> None:
        self.store = store
        self.normalizer = normalizer
        self.broadcaster = broadcaster
        self.gateway = gateway
        self.canvas_timeout = canvas_timeout

    async def add_image(
        self,
        project_id: str,
        image_bytes: bytes,
        prompt: str = "",
        annotations: Optional[str] = None,
        source: str = SOURCE_USER,
    ) -> ScreenshotRecord:
        """Normalize `image_bytes`, store the result and announce it.

        Raises:
            ImageFormatError: If the bytes are not an image.
            OSError: If the record cannot be persisted.
        """
        normalized = await asyncio.to_thread(self.normalizer.normalize, image_bytes)
        git = await asyncio.to_thread(self.store.source_context)

        # Checked right before create(), which registers the project.
        first_for_project = self.store.is_new_project(project_id)
        record = self.store.create(
            project_id,
            normalized.base64,
            normalized.mime_type,
            prompt=prompt,
            annotations=annotations,
            source=source,
            git=git,
        )
        LOGGER.info(
            "Stored %s screenshot %s for project %r (%dx%d, q=%d)",
            source,
            record.id,
            project_id,
            normalized.width,
            normalized.height,
            normalized.quality,
        )

        if first_for_project:
            await self.broadcaster.broadcast(events.PROJECT_CREATED, {"project": project_id})
        await self.broadcaster.broadcast(
            events.SCREENSHOT_ADDED,
            {
                "id": record.id,
                "status": record.status,
                "prompt": record.prompt,
                "createdAt": record.created_at,
                "source": record.source,
                "project": project_id,
            },
        )
        return record

    async def add_data_url(
        self,
        project_id: str,
        data_url: str,
        prompt: str = "",
        annotations: Optional[str] = None,
        source: str = SOURCE_USER,
    ) -> ScreenshotRecord:
        """Same as `add_image` for a ``data:image/...;base64,`` URL."""
        return await self.add_image(project_id, parse_image_data_url(data_url), prompt, annotations, source)

    async def deliver_pending(self, project_id: str) -> List[ScreenshotRecord]:
        """Mark every pending record of a project delivered, then announce each change.

        All records are marked before the first broadcast yields, so a
        concurrent caller never receives the same record.

        Returns:
            The records as they were before delivery, oldest first.
        """
        pending = self.store.list_pending(project_id)
        for record in pending:
            self.store.mark_delivered(record.id)
        for record in pending:
            await self.broadcaster.broadcast(
                events.SCREENSHOT_UPDATED,
                {"id": record.id, "status": STATUS_DELIVERED, "project": project_id},
            )
        return pending

    async def describe(self, screenshot_id: str, description: str) -> bool:
        record = self.store.get(screenshot_id)
        if record is None or not self.store.set_description(screenshot_id, description):
            return False
        await self.broadcaster.broadcast(
            events.SCREENSHOT_UPDATED,
            {"id": screenshot_id, "description": description, "project": record.project_id},
        )
        return True

    async def delete(self, screenshot_id: str) -> bool:
        record = self.store.get(screenshot_id)
        if record is None or not self.store.delete(screenshot_id):
            return False
        await self.broadcaster.broadcast(
            events.SCREENSHOT_DELETED, {"id": screenshot_id, "project": record.project_id}
        )
        return True

    async def clear(self, project_id: str) -> int:
        count = self.store.clear(project_id)
        await self.broadcaster.broadcast(events.SCREENSHOTS_CLEARED, {"count": count, "project": project_id})
        return count

    async def render_canvas(
        self,
        project_id: str,
        code: str,
        width: int = 800,
        height: int = 600,
        prompt: str = "",
        timeout: Optional[float] = None,
    ) -> ScreenshotRecord:
        """Ask a connected display to run canvas drawing code and store the image it returns.

        The result is stored as an agent screenshot, so it starts delivered.

        Raises:
            CorrelationError: If no display is connected, none answers in time,
                or the display reports an error.
            ValueError: If the display's answer carries no usable image.
        """
        if not code or not code.strip():
            raise ValueError("Canvas code is required.")
        payload: Dict[str, Any] = {"code": code, "width": width, "height": height, "project": project_id}
        result = await self.gateway.send_and_wait(
            events.CANVAS_EXECUTE, payload, timeout=timeout if timeout is not None else self.canvas_timeout
        )
        data_url = result.get("dataUrl")
        if not isinstance(data_url, str) or not data_url:
            raise ValueError("Display returned no image data")
        return await self.add_data_url(project_id, data_url, prompt=prompt, source=SOURCE_AGENT)
