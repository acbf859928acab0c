import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from servicequeue.api.routes import ping, services, stream, tickets
from servicequeue.core.config import Settings, get_settings
from servicequeue.core.logging import configure_logging, init_tracer, shutdown_tracer
from servicequeue.dependencies.auth import PinAuthGate
from servicequeue.identity.university import UniversityDirectoryClient
from servicequeue.queue.engine import QueueEngine
from servicequeue.queue.errors import ConflictError, QueueServiceError
from servicequeue.queue.notifier import LiveStateNotifier
from servicequeue.queue.registry import SubscriptionRegistry
from servicequeue.queue.repository import QueueRepository

logger = logging.getLogger(__name__)


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure a PostgreSQL DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings: Settings = app.state.settings
    app_logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = app_logger
    app.state.tracer_provider = tracer_provider
    app.state.auth_gate = PinAuthGate(settings.staff_pin)

    registry = SubscriptionRegistry(queue_size=settings.subscriber_queue_size)
    app.state.registry = registry
    app.state.queue_engine = None
    app.state.notifier = None

    db_engine = create_async_engine(_to_asyncpg_dsn(settings.database_dsn), future=True)
    try:
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        repository = QueueRepository(session_factory, engine=db_engine)
        await repository.ensure_schema()
        notifier = LiveStateNotifier(repository, registry)
        identity = UniversityDirectoryClient(
            base_url=settings.university_api_url,
            api_key=settings.university_api_key,
            timeout=settings.university_timeout_seconds,
        )
        app.state.notifier = notifier
        app.state.queue_engine = QueueEngine(
            repository,
            notifier=notifier,
            identity=identity,
            timezone_name=settings.timezone,
            number_width=settings.ticket_number_width,
        )
    except Exception:
        app_logger.exception("Queue store initialisation failed; queue endpoints will answer 503")
    try:
        yield
    finally:
        registry.close()
        await db_engine.dispose()
        shutdown_tracer(tracer_provider)


async def queue_error_handler(request: Request, exc: QueueServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
    content: dict[str, object] = {"error": exc.message}
    if isinstance(exc, ConflictError) and exc.current_status:
        content["status"] = exc.current_status
    return JSONResponse(status_code=exc.status_code, content=content)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.add_exception_handler(QueueServiceError, queue_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.include_router(ping.router)
    app.include_router(services.router)
    app.include_router(tickets.router)
    app.include_router(stream.router)
    return app


app = create_app()
