"""
FastAPI application for TaskFlow calendar synchronization

Routes and webhooks only - resyncs triggered by Google run in Celery workers
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.router import api_v1_router
from app.config.settings import get_settings
from app.core.middleware import correlation_id_middleware, request_logging_middleware
from app.core.monitoring import health_router
from app.services.calendar.exceptions import CalendarSyncError
from app.utils.my_logging import setup_logging
from app.webhooks.router import webhook_router

settings = get_settings()
logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if not settings.CALENDAR_ENCRYPTION_KEY:
        logger.warning("CALENDAR_ENCRYPTION_KEY is not set, Google Calendar connections will fail")
    if not settings.GOOGLE_CLIENT_ID:
        logger.warning("GOOGLE_CLIENT_ID is not set, OAuth connect is disabled")
    logger.info(f"{settings.APP_NAME} {API_VERSION} started, push notifications go to {settings.calendar_webhook_url}")

    yield

    logger.info(f"{settings.APP_NAME} stopped")


async def calendar_sync_error_handler(request: Request, exc: CalendarSyncError):
    """Service errors carry their own HTTP status"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"{request.method} {request.url.path} failed with {type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description="Bidirectional Google Calendar synchronization for TaskFlow tasks and events",
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url=None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    # Last added runs first: correlation id must be bound before the request is logged
    app.middleware("http")(request_logging_middleware)
    app.middleware("http")(correlation_id_middleware)

    app.add_exception_handler(CalendarSyncError, calendar_sync_error_handler)

    app.include_router(webhook_router, prefix="/webhooks", tags=["webhooks"])
    app.include_router(health_router, prefix="/health", tags=["monitoring"])
    app.include_router(api_v1_router, prefix="/api/v1", tags=["api"])

    @app.get("/")
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": API_VERSION,
            "calendar_api": "/api/v1/calendar",
            "google_push": "/webhooks/calendar/google",
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
