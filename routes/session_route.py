"""FastAPI routes for health, agent sessions and known projects."""

from fastapi import APIRouter, HTTPException, Request

from controllers.session_controller import health, list_projects, session_counts

router = APIRouter(prefix="/api")


@router.get("/health")
async def health_route(request: Request):
	return await health(request)


@router.get("/sessions")
async def sessions_route(request: Request):
	try:
		return await session_counts(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/projects")
async def projects_route(request: Request):
	try:
		return await list_projects(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
