import logging
import webbrowser
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from dal.screenshot_dal import ScreenshotDAL
from routes.mcp_route import router as mcp_router
from routes.realtime_ws import router as realtime_router
from routes.screenshot_route import router as screenshot_router
from routes.session_route import router as session_router
from services.git_context import GitContextProvider
from services.image_normalizer import ImageNormalizer
from services.realtime.broadcaster import Broadcaster
from services.realtime.correlation import CorrelationGateway
from services.realtime.session_registry import SessionRegistry
from services.screenshot_service import ScreenshotService
from services.screenshot_store import ScreenshotStore, SourceContextProvider
from utils.config import BridgeConfig

BASE_DIR = Path(__file__).resolve().parent
PUBLIC_DIR = BASE_DIR / "public"

load_dotenv()  # Load environment variables from .env file if present

LOGGER = logging.getLogger(__name__)


def create_app(
    config: Optional[BridgeConfig] = None,
    source_context: Optional[SourceContextProvider] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    Args:
        config: Settings to use; read from the environment when omitted.
        source_context: Provider of the branch/commit tag attached to new
            screenshots; defaults to querying git in the working directory.
    """
    config = config or BridgeConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan manager to initialize:
          - the screenshot store, loaded from DATA_DIR (legacy files migrated first)
          - the display broadcaster and the correlation gateway on top of it
          - the agent session registry
        and attach them to `app.state`.
        """
        store = ScreenshotStore(
            ScreenshotDAL(config.data_dir),
            source_context=source_context if source_context is not None else GitContextProvider(),
        )
        store.load_from_disk()

        broadcaster = Broadcaster()
        gateway = CorrelationGateway(broadcaster)

        app.state.config = config
        app.state.store = store
        app.state.broadcaster = broadcaster
        app.state.gateway = gateway
        app.state.session_registry = SessionRegistry(store)
        app.state.screenshot_service = ScreenshotService(
            store,
            ImageNormalizer.from_config(config),
            broadcaster,
            gateway,
            canvas_timeout=config.canvas_timeout_seconds,
        )
        yield

    app = FastAPI(lifespan=lifespan)

    # Register application routers
    app.include_router(session_router)
    app.include_router(screenshot_router)
    app.include_router(mcp_router)
    app.include_router(realtime_router)

    # Serve static assets from the public directory, if it exists.
    if PUBLIC_DIR.exists():
        app.mount("/public", StaticFiles(directory=PUBLIC_DIR), name="public")

    @app.get("/", include_in_schema=False)
    async def serve_index():
        """
        Serve the frontend index page from the public directory.
        """
        index_path = PUBLIC_DIR / "index.html"
        if not index_path.exists():
            raise HTTPException(status_code=404, detail="Frontend not found")
        return FileResponse(index_path)

    return app


def bridge_already_running(config: BridgeConfig, timeout: float = 2.0) -> bool:
    """Return True if a bridge on the configured port answers its health check."""
    try:
        response = httpx.get(f"http://localhost:{config.port}/api/health", timeout=timeout)
    except httpx.HTTPError:
        return False
    if response.status_code != 200:
        return False
    try:
        body = response.json()
    except ValueError:
        return False
    return isinstance(body, dict) and body.get("status") == "ok"


def run() -> None:
    """Start the bridge unless one is already serving on the configured port."""
    config = BridgeConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="[%(asctime)s] %(levelname)s in %(module)s: %(message)s",
    )

    if bridge_already_running(config):
        LOGGER.info("Screenshot Bridge already running on port %d, exiting.", config.port)
        return

    url = f"http://localhost:{config.port}"
    LOGGER.info("Screenshot Bridge running at http://%s:%d", config.host, config.port)
    LOGGER.info("MCP endpoint: %s/mcp", url)
    if config.open_browser:
        webbrowser.open(url)

    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level=config.log_level.lower())


app = create_app()


if __name__ == "__main__":
    run()
