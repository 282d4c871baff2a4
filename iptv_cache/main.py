"""FastAPI application — wires the provider client, cache and refresh services."""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from iptv_cache.database import init_db
from iptv_cache.routes import accounts_api, browse_api, config_api, favorites_api, health
from iptv_cache.services.cache_service import CacheService
from iptv_cache.services.config_service import ConfigService
from iptv_cache.services.http_client import HttpClientService
from iptv_cache.services.refresh_service import CategoryRefreshService
from iptv_cache.services.xtream_service import XtreamClient

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
logger = logging.getLogger(__name__)

# Data directory - use environment variable or default to /data (Docker) or ./data (local)
DATA_DIR = os.environ.get("DATA_DIR", "/data" if os.path.exists("/data") else "./data")


def create_app(data_dir: str) -> FastAPI:
    """Build a fully-wired FastAPI app storing its catalog under *data_dir*."""
    cfg = ConfigService(data_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        os.makedirs(data_dir, exist_ok=True)
        cfg.load()
        init_db(cfg.db_path)

        http = HttpClientService(timeout=cfg.get_request_timeout(), user_agent=cfg.get_user_agent())
        xtream = XtreamClient(http, api_path=cfg.get_api_path())
        cache = CacheService(
            cfg.db_path,
            xtream,
            default_episode_container=cfg.get_default_episode_container(),
        )

        app.state.config_service = cfg
        app.state.http_client = http
        app.state.cache_service = cache
        app.state.refresh_service = CategoryRefreshService(cache)
        logger.info(f"Catalog store ready at {cfg.db_path}")

        yield

        # Shutdown
        app.state.refresh_service.cancel()
        await http.close()
        logger.info("Application shutdown complete")

    app = FastAPI(title="IPTV Cache", lifespan=lifespan)

    # Middleware to ensure UTF-8 charset in JSON responses
    @app.middleware("http")
    async def add_utf8_charset(request: Request, call_next):
        response = await call_next(request)
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type and "charset" not in content_type:
            response.headers["content-type"] = "application/json; charset=utf-8"
        return response

    for r in (health, config_api, accounts_api, browse_api, favorites_api):
        app.include_router(r.router)

    return app


app = create_app(DATA_DIR)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=5000)
