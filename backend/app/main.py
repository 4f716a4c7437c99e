import logging.config
import uuid

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from helphub.realtime import (
    BrokerConfig,
    BrokerTransport,
    ChatGateway,
    RoomConnectionManager,
    RoomHub,
    shutdown_realtime,
    startup_realtime,
)

from app.api.metrics import router as metrics_router
from app.api.routes import router as api_router
from app.api.ws import router as ws_router
from app.config import Settings, get_settings
from app.core.errors import MessagingError
from app.database import Database
from app.services import (
    ConversationAggregator,
    MessageStore,
    NotificationBridge,
    PresenceRegistry,
    UserDirectory,
)


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        }
    },
    "handlers": {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        }
    },
    "root": {
        "handlers": ["default"],
        "level": "INFO",
    },
    "loggers": {
        "helphub.realtime.transport": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "sqlalchemy.engine": {
            "level": "WARNING",
        },
    },
}


logging.config.dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


def install_exception_handlers(app: FastAPI) -> None:
    """Render every error as ``{"success": false, "message": ...}``."""

    @app.exception_handler(MessagingError)
    async def _messaging_error(request: Request, exc: MessagingError) -> JSONResponse:
        response = _error_response(exc.status_code, exc.message)
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            response.headers["WWW-Authenticate"] = "Bearer"
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        response = _error_response(exc.status_code, str(exc.detail))
        for key, value in (exc.headers or {}).items():
            response.headers[key] = value
        return response

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "Invalid request",
            errors=jsonable_encoder(exc.errors()),
        )


def create_app(*, settings: Settings | None = None, database: Database | None = None) -> FastAPI:
    """Build the application and the services it owns.

    A ``database`` passed in is opened on startup but left open at shutdown;
    its owner closes it.
    """

    settings = settings or get_settings()
    owns_database = database is None
    if database is None:
        database = Database(settings.database_url, echo=settings.debug)

    presence = PresenceRegistry()
    users = UserDirectory(presence)
    notifications = NotificationBridge(database, settings)
    store = MessageStore(database, users, notifications, settings)
    conversations = ConversationAggregator(database, users)

    node_id = settings.realtime_node_id or uuid.uuid4().hex
    transport = BrokerTransport(
        BrokerConfig(
            redis_url=settings.realtime_redis_url,
            nats_url=settings.realtime_nats_url,
            prefix=settings.realtime_namespace,
            node_id=node_id,
        )
    )
    connections = RoomConnectionManager()
    hub = RoomHub(connections, transport, node_id=node_id, backend=settings.realtime_backend_preference)
    gateway = ChatGateway(store, hub, connections, presence)

    app = FastAPI(title=settings.app_name, debug=settings.debug)
    app.state.settings = settings
    app.state.database = database
    app.state.presence = presence
    app.state.message_store = store
    app.state.notifications = notifications
    app.state.conversations = conversations
    app.state.transport = transport
    app.state.room_hub = hub
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_exception_handlers(app)

    @app.get("/health", tags=["system"])
    def health_check() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok", "environment": settings.environment}

    @app.on_event("startup")
    async def _startup() -> None:
        database.open()
        if settings.database_create_tables:
            database.create_all()
        await startup_realtime(transport, hub)
        logger.info("Messaging service started", extra={"node_id": node_id})

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await shutdown_realtime(transport, hub)
        if owns_database:
            database.close()

    app.include_router(api_router, prefix="/api")
    app.include_router(ws_router)
    app.include_router(metrics_router)
    return app


app = create_app()
