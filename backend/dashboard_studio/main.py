"""FastAPI application entrypoint.

Configures CORS, includes routers, and exposes a healthcheck endpoint.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .database import init_db  # noqa: E402
from .deps import get_settings  # noqa: E402
from .routers import aggregation as aggregation_router  # noqa: E402
from .routers import dashboards as dashboards_router  # noqa: E402
from . import schemas  # noqa: E402

# Import models so metadata is registered before create_all
from . import models  # noqa: E402,F401


def create_app() -> FastAPI:
    app = FastAPI(
        title="Dashboard Studio API",
        description="""
        Dashboard Studio builds dashboards on top of ETL output tables.

        This API provides endpoints for:
        - Dashboard layouts and global filters
        - Widget management (add, edit, remove, reorder)
        - Widget data loading through the aggregation service
        - Saved metric templates
        - Aggregation request previews

        ## Data Model

        - **Dashboards**: A layout document plus dashboard-wide filters
        - **Widgets**: Charts, KPIs, tables, filters, images and text tiles
        - **Metrics**: Aggregations (SUM, AVG, COUNT, MIN, MAX, COUNT DISTINCT)
          and positional formulas over other metrics
        """,
        version="1.0.0",
    )

    settings = get_settings()

    # BACKEND_CORS_ORIGINS can be a comma-separated list: "https://app.example.com,http://localhost:3000"
    allowed_origins = settings.cors_origins
    if "http://localhost:3000" not in allowed_origins:
        allowed_origins.append("http://localhost:3000")

    logger.info(f"[CORS] Allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(dashboards_router.router)
    app.include_router(aggregation_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
        description="""
        Simple health check endpoint to verify the API is running.

        This endpoint:
        - Does not touch the database or the aggregation service
        - Can be used for load balancer health checks
        """
    )
    def health():
        return schemas.HealthResponse(status="ok")

    @app.on_event("startup")
    async def startup_event():
        """Create missing tables when the database is configured."""
        if not settings.DATABASE_URL:
            logger.warning("[STARTUP] DATABASE_URL is not set - dashboard endpoints will fail")
            return
        init_db()
        logger.info("[STARTUP] Database tables verified")

    return app


app = create_app()
