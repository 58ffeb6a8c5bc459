from fastapi import HTTPException, Request
from fastapi.responses import Response
from typing import Any, Dict, Optional

from models.screenshot_record import DEFAULT_PROJECT, STATUSES
from services.screenshot_service import ScreenshotService
from services.screenshot_store import ScreenshotFilter, ScreenshotStore


def project_from_request(request: Request) -> str:
    """Return the `?project=` query value, falling back to the default project."""
    return request.query_params.get("project") or DEFAULT_PROJECT


def _service(request: Request) -> ScreenshotService:
    service = getattr(request.app.state, "screenshot_service", None)
    if service is None:
        raise HTTPException(status_code=500, detail="Screenshot service not initialized")
    return service


def _store(request: Request) -> ScreenshotStore:
    return _service(request).store


async def upload_screenshot(
    request: Request,
    data_url: str,
    prompt: str = "",
    annotations: Optional[str] = None,
) -> Dict[str, Any]:
    """Normalize an uploaded data URL and store it as a pending screenshot.

    Args:
        request: FastAPI Request (used to access app.state and `?project=`).
        data_url: `data:image/...;base64,` payload from the browser.
        prompt: Optional text typed or dictated alongside the image.
        annotations: Optional text describing markup drawn on the image.

    Returns:
        A dict containing: id, status, createdAt

    Raises:
        HTTPException(400) if the payload is not a decodable image.
    """
    if not data_url or not isinstance(data_url, str):
        raise HTTPException(status_code=400, detail="dataUrl is required")
    try:
        record = await _service(request).add_data_url(
            project_from_request(request), data_url, prompt=prompt or "", annotations=annotations
        )
    except ValueError as exc:
        # Covers ImageFormatError and malformed data URLs
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"id": record.id, "status": record.status, "createdAt": record.created_at}


async def list_screenshots(
    request: Request,
    criteria: ScreenshotFilter,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> Any:
    """List one project's screenshots, filtered when any criterion is set.

    Returns a bare list, or ``{"items", "total"}`` when `limit` is given so
    the client can paginate.
    """
    if criteria.status and criteria.status not in STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of {', '.join(STATUSES)}")
    if (limit is not None and limit < 0) or (offset is not None and offset < 0):
        raise HTTPException(status_code=400, detail="limit and offset must not be negative")

    store = _store(request)
    project_id = project_from_request(request)
    try:
        if criteria.is_empty():
            items = store.list(project_id, limit, offset)
            total = store.count(project_id) if limit is not None else len(items)
        else:
            items = store.filter(project_id, criteria, limit, offset)
            total = store.count_filtered(project_id, criteria) if limit is not None else len(items)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if limit is not None:
        return {"items": items, "total": total}
    return items


async def update_description(request: Request, screenshot_id: str, description: str) -> Dict[str, Any]:
    if not await _service(request).describe(screenshot_id, description):
        raise HTTPException(status_code=404, detail="Not found")
    return {"updated": True}


async def delete_screenshot(request: Request, screenshot_id: str) -> Dict[str, Any]:
    if not await _service(request).delete(screenshot_id):
        raise HTTPException(status_code=404, detail="Not found")
    return {"deleted": True}


async def clear_screenshots(request: Request) -> Dict[str, Any]:
    count = await _service(request).clear(project_from_request(request))
    return {"cleared": count}


async def get_image(request: Request, screenshot_id: str) -> Response:
    """Return the stored image bytes for a screenshot.

    Raises:
        HTTPException(404) if the screenshot is not found.
    """
    record = _store(request).get(screenshot_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Not found")
    return Response(
        content=record.image_bytes,
        media_type=record.mime_type,
        headers={"Cache-Control": "public, max-age=3600"},
    )
