"""FastAPI routes for uploading, listing and managing screenshots."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from controllers.screenshot_controller import (
	clear_screenshots,
	delete_screenshot,
	get_image,
	list_screenshots,
	update_description,
	upload_screenshot,
)
from services.screenshot_store import ScreenshotFilter

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


class UploadPayload(BaseModel):
	dataUrl: Optional[str] = None
	prompt: str = ""
	annotations: Optional[str] = None


class DescriptionPayload(BaseModel):
	description: str


@router.post("/screenshots", status_code=201)
async def upload_screenshot_route(request: Request, payload: UploadPayload):
	try:
		return await upload_screenshot(request, payload.dataUrl, payload.prompt, payload.annotations)
	except HTTPException:
		raise
	except Exception as exc:
		LOGGER.exception("Error processing screenshot")
		raise HTTPException(status_code=500, detail="Failed to process screenshot") from exc


@router.get("/screenshots")
async def list_screenshots_route(
	request: Request,
	branch: Optional[str] = None,
	commit: Optional[str] = None,
	since: Optional[str] = None,
	until: Optional[str] = None,
	status: Optional[str] = None,
	q: Optional[str] = None,
	limit: Optional[int] = None,
	offset: Optional[int] = None,
):
	criteria = ScreenshotFilter(branch=branch, commit=commit, since=since, until=until, status=status, query=q)
	try:
		return await list_screenshots(request, criteria, limit, offset)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.patch("/screenshots/{screenshot_id}")
async def update_description_route(request: Request, screenshot_id: str, payload: DescriptionPayload):
	try:
		return await update_description(request, screenshot_id, payload.description)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.delete("/screenshots/{screenshot_id}")
async def delete_screenshot_route(request: Request, screenshot_id: str):
	try:
		return await delete_screenshot(request, screenshot_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.delete("/screenshots")
async def clear_screenshots_route(request: Request):
	try:
		return await clear_screenshots(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/screenshots/{screenshot_id}/image")
async def get_screenshot_image(request: Request, screenshot_id: str):
	"""Return the stored JPEG bytes for the specified screenshot."""
	try:
		return await get_image(request, screenshot_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
