"""MCP over HTTP: one endpoint, three verbs."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from controllers.mcp_controller import handle_delete, handle_get, handle_post

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.post("/mcp")
async def mcp_post(request: Request):
	try:
		return await handle_post(request)
	except Exception:
		LOGGER.exception("MCP POST error")
		return JSONResponse(status_code=500, content={"error": "Internal error"})


@router.get("/mcp")
async def mcp_get(request: Request):
	return await handle_get(request)


@router.delete("/mcp")
async def mcp_delete(request: Request):
	return await handle_delete(request)
