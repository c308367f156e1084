"""
Team Database Service
Per-team database routing, provisioning and query monitoring
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from config import config

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

from api.health import router as health_router  # noqa: E402
from api.team_brands import router as team_brands_router  # noqa: E402
from api.team_follower_growth import router as team_follower_growth_router  # noqa: E402
from api.team_shops import router as team_shops_router  # noqa: E402
from api.team_suppliers import router as team_suppliers_router  # noqa: E402
from api.teams import router as teams_router  # noqa: E402
from database.context import DatabaseContext  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("🚀 Starting %s v%s (%s)", config.service_name, config.version, config.environment)

    ctx: Optional[DatabaseContext] = getattr(app.state, "db", None)
    if ctx is None:
        ctx = DatabaseContext.from_config(config)
        app.state.db = ctx
    await ctx.init()
    if not ctx.system_ready:
        logger.warning("⚠️ Serving without the system database; /health will report critical")

    yield

    logger.info("Shutting down %s", config.service_name)
    await ctx.shutdown()
    logger.info("✅ Database pools closed")


def create_app(db_context: Optional[DatabaseContext] = None) -> FastAPI:
    app = FastAPI(
        title=config.service_name,
        description="Per-team database routing and provisioning",
        version=config.version,
        lifespan=lifespan,
    )
    if db_context is not None:
        app.state.db = db_context

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.security.allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request validation failed"
        content = {"error": message, "code": f"HTTP_{exc.status_code}", "path": request.url.path}
        if not isinstance(exc.detail, str):
            content["details"] = exc.detail
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler"""
        logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "code": "INTERNAL_ERROR",
                "path": request.url.path,
            },
        )

    app.include_router(health_router)
    app.include_router(teams_router)
    app.include_router(team_brands_router)
    app.include_router(team_suppliers_router)
    app.include_router(team_shops_router)
    app.include_router(team_follower_growth_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower()
    )
