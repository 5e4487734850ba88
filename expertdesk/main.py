"""ExpertDesk FastAPI application."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from expertdesk.collaborators import Collaborators
from expertdesk.collaborators.http import (
    CONTENT_STORE_URL,
    USER_DIRECTORY_URL,
    HttpContentStore,
    HttpUserDirectory,
    build_http_client,
)
from expertdesk.database import close_db, get_session_factory, init_db
from expertdesk.exceptions import ExpertDeskError
from expertdesk.logging_config import configure_logging, get_logger
from expertdesk.middleware.rate_limit import RateLimitMiddleware
from expertdesk.middleware.request_context import RequestContextMiddleware
from expertdesk.redis import REDIS_URL, close_redis, get_redis, init_redis
from expertdesk.routes.admin import router as admin_router
from expertdesk.routes.assignments import router as assignments_router
from expertdesk.routes.moderation import router as moderation_router
from expertdesk.routes.questions import router as questions_router
from expertdesk.routes.taxonomy import router as taxonomy_router
from expertdesk.services.notification_service import RedisNotificationSink
from expertdesk.services.scheduler_service import start_scheduler, stop_scheduler

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: init DB, Redis and collaborators; run the scheduler."""
    configure_logging()

    # Init database
    logger.info("starting_database_init")
    await init_db()

    # Init Redis
    redis = await init_redis(REDIS_URL)
    logger.info("redis_connected", url=REDIS_URL)

    # External collaborators
    directory_client = build_http_client(USER_DIRECTORY_URL)
    content_client = build_http_client(CONTENT_STORE_URL)
    collab = Collaborators(
        directory=HttpUserDirectory(directory_client, redis=redis),
        content_store=HttpContentStore(content_client),
        notifier=RedisNotificationSink(redis),
    )
    app.state.collaborators = collab

    await start_scheduler(get_session_factory(), collab)
    logger.info("application_started")
    yield

    # Shutdown
    logger.info("shutting_down")
    await stop_scheduler()
    await directory_client.aclose()
    await content_client.aclose()
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


app = FastAPI(
    title="ExpertDesk",
    description="Private Q&A expert routing and moderation-reputation engine",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RateLimitMiddleware, redis_getter=get_redis)
app.add_middleware(RequestContextMiddleware)


@app.exception_handler(ExpertDeskError)
async def expertdesk_error_handler(request: Request, exc: ExpertDeskError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", error_type=exc.error_type, detail=exc.message)
    else:
        logger.info("request_rejected", error_type=exc.error_type, detail=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_type, "detail": exc.message},
    )


# Routers
app.include_router(taxonomy_router)
app.include_router(questions_router)
app.include_router(assignments_router)
app.include_router(moderation_router)
app.include_router(admin_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "expertdesk"}
