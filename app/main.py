import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.v1 import appointments, events, jobs, service_jobs, sms_queue
from app.api.webhooks import twilio as twilio_webhooks
from app.core.logging_config import setup_logging
from app.core.redis import close_redis
from app.core.services import Services, build_services
from app.database import init_db, close_db
from app.middleware.api_key import APIKeyMiddleware
from app.middleware.logging import LoggingMiddleware
from app.middleware.request_id import RequestIDMiddleware
from app.models.base import utcnow
from app.monitoring import metrics
from app.services.health_service import get_detailed_health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()

    services: Services = app.state.services
    if app.state.run_workers:
        services.start_workers()
        logger.info("Queue workers started in-process")

    yield

    if app.state.run_workers:
        await services.stop_workers()
    else:
        await services.event_bus.drain()
    await close_redis()
    await close_db()


def create_app(services: Optional[Services] = None, run_workers: Optional[bool] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description="""
        **ServiceFlow API** - background delivery for field-service businesses

        ## Features
            * Delayed jobs with at-least-once delivery
            * Appointment reminders (24h / 2h)
            * Quiet-hours SMS deferral
            * Persisted domain events with replay
        """,
        version=settings.APP_VERSION,
        openapi_tags=[
            {"name": "jobs", "description": "Delayed job inspection and cancellation"},
            {"name": "sms-queue", "description": "Quiet-hours SMS queue"},
            {"name": "appointments", "description": "Appointment scheduling and reminders"},
            {"name": "service-jobs", "description": "Field job lifecycle"},
            {"name": "events", "description": "Domain event replay"},
            {"name": "webhooks", "description": "Twilio inbound SMS and delivery status"},
            {"name": "monitoring", "description": "System monitoring"},
        ],
        docs_url="/docs",
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    app.state.services = services
    app.state.run_workers = settings.RUN_QUEUE_WORKERS if run_workers is None else run_workers

    # =====================================
    # Configure Middleware Stack
    # =====================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Correlation-ID"],
        max_age=3600,
    )
    app.add_middleware(APIKeyMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Include routers
    app.include_router(jobs.router, prefix=f"{settings.API_V1_PREFIX}/jobs", tags=["jobs"])
    app.include_router(sms_queue.router, prefix=f"{settings.API_V1_PREFIX}/sms-queue", tags=["sms-queue"])
    app.include_router(appointments.router, prefix=f"{settings.API_V1_PREFIX}/appointments", tags=["appointments"])
    app.include_router(service_jobs.router, prefix=f"{settings.API_V1_PREFIX}/service-jobs", tags=["service-jobs"])
    app.include_router(events.router, prefix=f"{settings.API_V1_PREFIX}/events", tags=["events"])
    app.include_router(twilio_webhooks.router, prefix="/webhooks/twilio", tags=["webhooks"])

    # Monitoring endpoints (internal use)
    if settings.EXPOSE_METRICS:
        app.include_router(
            metrics.router,
            prefix="/internal",
            tags=["monitoring"]
        )

    @app.get("/health", tags=["monitoring"])
    async def health_check():
        return {
            "status": "healthy",
            "timestamp": utcnow().isoformat(),
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT
        }

    @app.get("/health/detailed", tags=["monitoring"])
    async def detailed_health_check(request: Request):
        return await get_detailed_health(request.app.state.services)

    return app


setup_logging()

app = create_app()
