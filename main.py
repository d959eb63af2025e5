"""
SocialFlow Backend API - connect social accounts and publish posts across them
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from api.deps import build_services
from api.v1 import v1_router
from schemas.responses import HealthResponse
from utils.config import get_config
from utils.database import dispose_engine, get_session, get_session_factory, init_db
from utils.http_client import get_async_client
from utils.logging import get_logger, set_request_context, setup_logging

logger = get_logger(__name__)

SERVICE_NAME = "socialflow-backend"
SERVICE_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build configuration, database and provider HTTP client once per process"""
    config = get_config()
    setup_logging(config.log_level)
    logger.info("Starting SocialFlow Backend API", environment=config.environment)

    await init_db()
    http_client = get_async_client(timeout=config.http_timeout)
    app.state.services = build_services(config, http_client, get_session_factory())

    yield

    logger.info("Application shutting down")
    await http_client.aclose()
    await dispose_engine()


app = FastAPI(
    title="SocialFlow API",
    description="Cross-platform social publishing: OAuth account connection, media staging and fan-out publishing",
    version=SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Accounts", "description": "Provider OAuth connection and account management"},
        {"name": "Publishing", "description": "Media staging, posts and publishing"},
        {"name": "Health", "description": "System health"}
    ]
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    set_request_context(request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(v1_router, prefix="/api")

# Media staged by the local backend; providers fetch it from here
app.mount("/media", StaticFiles(directory=get_config().media_local_dir, check_dir=False), name="media")


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check with database connectivity"""
    dependencies = {}
    try:
        async with get_session() as db:
            await db.execute(text("SELECT 1"))
        dependencies["database"] = "healthy"
    except Exception as e:
        dependencies["database"] = "unhealthy"
        logger.error("Database health check failed", error=str(e))

    return HealthResponse(
        status="healthy" if all(v == "healthy" for v in dependencies.values()) else "degraded",
        service=SERVICE_NAME,
        version=SERVICE_VERSION,
        timestamp=datetime.now(timezone.utc),
        dependencies=dependencies,
    )


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
