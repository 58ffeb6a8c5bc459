"""Agent-facing tools, each bound to one session's project.

A `ProjectTools` instance is built per call from the session looked up in the
registry, so every store access uses the project fixed when the session was
opened. Ids belonging to other projects read as not found.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List

from models.screenshot_record import SOURCE_AGENT, STATUSES
from models.session_models import ProjectSession
from services.image_normalizer import ImageFormatError
from services.realtime.correlation import CorrelationError
from services.screenshot_service import ScreenshotService
from services.screenshot_store import ScreenshotFilter
from utils.media_validation import decode_image_payload

LOGGER = logging.getLogger(__name__)

Content = List[Dict[str, Any]]

TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "name": "get_pending_screenshots",
        "title": "Get Pending Screenshots",
        "description": (
            "Returns all undelivered screenshots as image content with optional prompt text and marks "
            "them as delivered. Images consume significant context; set include_images to false to "
            "receive only text metadata (id, prompt, annotations, description)."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "include_images": {
                    "type": "boolean",
                    "default": True,
                    "description": "Whether to include image data in the response.",
                }
            },
        },
    },
    {
        "name": "get_screenshot",
        "title": "Get Screenshot",
        "description": "Retrieve a specific screenshot by ID, including image data.",
        "inputSchema": {
            "type": "object",
            "properties": {"id": {"type": "string", "description": "Screenshot ID"}},
            "required": ["id"],
        },
    },
    {
        "name": "list_screenshots",
        "title": "List Screenshots",
        "description": (
            "List all screenshots with metadata (no image data): IDs, status, prompt and timestamps. "
            "Use this before fetching full image data with get_screenshot."
        ),
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "search_screenshots",
        "title": "Search Screenshots",
        "description": (
            "Filter screenshots by git branch, commit, time range, status or text. Returns metadata "
            "(no image data). Text matching is a case-insensitive substring search over prompt and description."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "branch": {"type": "string", "description": "Filter by git branch name"},
                "commit": {"type": "string", "description": "Filter by commit hash (full or short)"},
                "since": {"type": "string", "description": "Only screenshots at or after this ISO timestamp"},
                "until": {"type": "string", "description": "Only screenshots at or before this ISO timestamp"},
                "status": {"type": "string", "enum": list(STATUSES), "description": "Filter by delivery status"},
                "query": {"type": "string", "description": "Text to look for in prompt or description"},
            },
        },
    },
    {
        "name": "describe_screenshot",
        "title": "Describe Screenshot",
        "description": (
            "Save a text description for a screenshot so the image does not need to be re-analyzed. "
            "The description shows in list_screenshots and in the browser UI."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Screenshot ID"},
                "description": {"type": "string", "description": "Text description of the screenshot content"},
            },
            "required": ["id", "description"],
        },
    },
    {
        "name": "execute_canvas",
        "title": "Execute Canvas",
        "description": (
            "Run JavaScript canvas drawing code in the connected browser and return the rendered image. "
            "The code receives `canvas` and `ctx`. The result is stored as an agent screenshot."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "code": {"type": "string", "description": "JavaScript drawing code"},
                "width": {"type": "integer", "default": 800, "minimum": 1, "maximum": 4096},
                "height": {"type": "integer", "default": 600, "minimum": 1, "maximum": 4096},
                "prompt": {"type": "string", "description": "Caption shown with the image"},
            },
            "required": ["code"],
        },
    },
    {
        "name": "send_screenshot",
        "title": "Send Screenshot",
        "description": "Send an image (data URL or base64) to the browser UI as an agent screenshot.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "image": {"type": "string", "description": "Image as a data URL or base64 text"},
                "prompt": {"type": "string", "description": "Caption shown with the image"},
            },
            "required": ["image"],
        },
    },
]


def _text(text: str) -> Dict[str, Any]:
    return {"type": "text", "text": text}


def _image(data: str, mime_type: str) -> Dict[str, Any]:
    return {"type": "image", "data": data, "mimeType": mime_type}


def _error(text: str) -> Dict[str, Any]:
    return {"isError": True, "content": [_text(text)]}


def _summary_line(item: Dict[str, Any]) -> str:
    line = f"- [{item['status']}] {item['id']} ({item['createdAt']})"
    git = item.get("git") or {}
    if git.get("branch"):
        line += f" branch:{git['branch']}"
    if git.get("commitShort"):
        line += f" commit:{git['commitShort']}"
    if item.get("source") == SOURCE_AGENT:
        line += " [agent]"
    if item.get("prompt"):
        line += f' prompt: "{item["prompt"]}"'
    if item.get("description"):
        line += f' description: "{item["description"]}"'
    if item.get("annotations"):
        line += " [has annotations]"
    return line


class ProjectTools:
    """Tool handlers scoped to `session.project_id`."""

    def __init__(self, session: ProjectSession, service: ScreenshotService) -> None:
        self.session = session
        self.service = service
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            "get_pending_screenshots": self.get_pending_screenshots,
            "get_screenshot": self.get_screenshot,
            "list_screenshots": self.list_screenshots,
            "search_screenshots": self.search_screenshots,
            "describe_screenshot": self.describe_screenshot,
            "execute_canvas": self.execute_canvas,
            "send_screenshot": self.send_screenshot,
        }

    @property
    def project_id(self) -> str:
        return self.session.project_id

    async def call(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Run a tool by name and return an MCP ``CallToolResult`` dict.

        Input and correlation failures come back as ``isError`` results
        rather than exceptions.
        """
        handler = self._handlers.get(name)
        if handler is None:
            return _error(f"Unknown tool: {name}")
        try:
            return await handler(arguments or {})
        except CorrelationError as exc:
            LOGGER.warning("Tool %s failed for project %r: %s", name, self.project_id, exc)
            return _error(str(exc))
        except ValueError as exc:
            return _error(f"Invalid input: {exc}")

    async def get_pending_screenshots(self, args: Dict[str, Any]) -> Dict[str, Any]:
        include_images = bool(args.get("include_images", True))
        pending = await self.service.deliver_pending(self.project_id)
        if not pending:
            return {"content": [_text("No pending screenshots.")]}

        content: Content = []
        for record in pending:
            content.append(_text(f"Screenshot {record.id}:"))
            if record.prompt:
                content.append(_text(f"Prompt: {record.prompt}"))
            if record.annotations:
                content.append(_text(f"Annotations:\n{record.annotations}"))
            if record.description:
                content.append(_text(f"[Previously described] {record.description}"))
            elif include_images:
                content.append(_image(record.image_base64, record.mime_type))
                content.append(
                    _text(
                        "TIP: Use describe_screenshot to save a description so this image "
                        "won't need to be re-sent next time."
                    )
                )

        content.append(_text(f"Delivered {len(pending)} screenshot(s)."))
        return {"content": content}

    async def get_screenshot(self, args: Dict[str, Any]) -> Dict[str, Any]:
        screenshot_id = str(args.get("id") or "")
        record = self.service.store.get_for_project(self.project_id, screenshot_id)
        if record is None:
            return {"content": [_text(f"Screenshot {screenshot_id} not found.")]}

        content: Content = []
        if record.prompt:
            content.append(_text(f"Prompt: {record.prompt}"))
        if record.annotations:
            content.append(_text(f"Annotations:\n{record.annotations}"))
        if record.description:
            content.append(_text(f"Description: {record.description}"))
        content.append(_image(record.image_base64, record.mime_type))
        content.append(_text(f"Status: {record.status} | Created: {record.created_at}"))
        return {"content": content}

    async def list_screenshots(self, args: Dict[str, Any]) -> Dict[str, Any]:
        items = self.service.store.list(self.project_id)
        if not items:
            return {"content": [_text("No screenshots stored.")]}
        lines = "\n".join(_summary_line(item) for item in items)
        return {"content": [_text(f"{len(items)} screenshot(s):\n{lines}")]}

    async def search_screenshots(self, args: Dict[str, Any]) -> Dict[str, Any]:
        criteria = ScreenshotFilter(
            branch=args.get("branch") or None,
            commit=args.get("commit") or None,
            since=args.get("since") or None,
            until=args.get("until") or None,
            status=args.get("status") or None,
            query=args.get("query") or None,
        )
        items = self.service.store.filter(self.project_id, criteria)
        if not items:
            return {"content": [_text("No screenshots match the given filters.")]}
        lines = "\n".join(_summary_line(item) for item in items)
        return {"content": [_text(f"{len(items)} matching screenshot(s):\n{lines}")]}

    async def describe_screenshot(self, args: Dict[str, Any]) -> Dict[str, Any]:
        screenshot_id = str(args.get("id") or "")
        description = args.get("description")
        if not isinstance(description, str):
            raise ValueError("description must be a string")
        if self.service.store.get_for_project(self.project_id, screenshot_id) is None:
            return {"content": [_text(f"Screenshot {screenshot_id} not found.")]}
        await self.service.describe(screenshot_id, description)
        return {"content": [_text(f"Description saved for screenshot {screenshot_id}.")]}

    async def execute_canvas(self, args: Dict[str, Any]) -> Dict[str, Any]:
        code = args.get("code")
        if not isinstance(code, str):
            raise ValueError("code must be a string")
        width = int(args.get("width") or 800)
        height = int(args.get("height") or 600)
        if not (0 < width <= 4096 and 0 < height <= 4096):
            raise ValueError("width and height must be between 1 and 4096")
        try:
            record = await self.service.render_canvas(
                self.project_id, code, width=width, height=height, prompt=str(args.get("prompt") or "")
            )
        except ImageFormatError as exc:
            return _error(f"Browser returned an unreadable image: {exc}")
        return {
            "content": [
                _image(record.image_base64, record.mime_type),
                _text(f"Canvas rendered and saved as screenshot {record.id}."),
            ]
        }

    async def send_screenshot(self, args: Dict[str, Any]) -> Dict[str, Any]:
        image_bytes = decode_image_payload(str(args.get("image") or ""))
        record = await self.service.add_image(
            self.project_id, image_bytes, prompt=str(args.get("prompt") or ""), source=SOURCE_AGENT
        )
        return {"content": [_text(f"Screenshot {record.id} sent to the browser.")]}
