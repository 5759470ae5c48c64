import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from newsdesk.api import articles, auth, dashboard
from newsdesk.config import settings
from newsdesk.db.redis import RedisClient
from newsdesk.db.session import Database
from newsdesk.errors import AppError
from newsdesk.jobs.queue import AnalyticsQueue
from newsdesk.jobs.scheduler import DailyAggregationScheduler
from newsdesk.jobs.worker import AnalyticsWorker, build_analytics_handlers
from newsdesk.logging_config import configure_logging
from newsdesk.models.schemas import ApiResponse, HealthStatus
from newsdesk.services.read_tracking import ReadThrottle, ReadTracker

logger = structlog.get_logger(__name__)


def _get_cors_origins() -> list[str]:
    return [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]


def _error_body(message: str, errors: list[str]) -> dict:
    return {"Success": False, "Message": message, "Object": None, "Errors": errors}


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    database = Database()
    redis_client = RedisClient()
    await database.connect()
    await redis_client.connect()

    queue = AnalyticsQueue(redis_client.client)
    throttle = ReadThrottle(
        redis_client.client,
        window_seconds=settings.read_tracking_window_seconds,
        fail_open=settings.read_tracking_fail_open,
    )
    tracker = ReadTracker(throttle, database.session, queue)

    app.state.database = database
    app.state.redis = redis_client
    app.state.analytics_queue = queue
    app.state.read_tracker = tracker

    background: list[asyncio.Task] = []
    worker = scheduler = None
    if settings.run_worker_in_process:
        worker = AnalyticsWorker(
            queue, build_analytics_handlers(database), recover_on_start=settings.worker_recover_on_start
        )
        scheduler = DailyAggregationScheduler(queue, redis_client.client)
        background = [asyncio.create_task(worker.run()), asyncio.create_task(scheduler.run())]

    logger.info("newsdesk_started", environment=settings.environment, in_process_worker=worker is not None)
    try:
        yield
    finally:
        if worker is not None:
            worker.stop()
            scheduler.stop()
            await asyncio.gather(*background, return_exceptions=True)
        await tracker.drain()
        await redis_client.close()
        await database.close()
        logger.info("newsdesk_stopped")


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="Newsdesk",
        version="0.1.0",
        description="News publishing API with read tracking and author analytics",
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path, method=request.method)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        logger.info("request_rejected", status_code=exc.status_code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.errors))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            body = _error_body("Route not found", [f"Route {request.method} {request.url.path} not found"])
        else:
            body = _error_body(str(exc.detail), [str(exc.detail)])
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"][1:])
            errors.append(f"{field}: {error['msg']}")
        return JSONResponse(status_code=422, content=_error_body("Validation failed", errors))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_exception", error=str(exc), exc_type=type(exc).__name__)
        return JSONResponse(status_code=500, content=_error_body("Internal server error", ["An unexpected error occurred"]))

    @app.get("/health", response_model=ApiResponse[HealthStatus], tags=["health"])
    async def health():
        return ApiResponse[HealthStatus](
            Message="API is running",
            Object=HealthStatus(status="healthy", timestamp=datetime.now(timezone.utc)),
        )

    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(articles.router, prefix="/api/v1")
    app.include_router(dashboard.router, prefix="/api/v1")
    return app


app = create_app()
