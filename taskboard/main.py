import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import router
from .auth import BearerTokenVerifier
from .config import Settings, configure_logging, get_settings
from .coordinator import BoardTaskCoordinator
from .errors import TaskboardError, ValidationFailed
from .repositories import BoardRepository, TaskRepository
from .schemas import ErrorEnvelope, ErrorResponse
from .store import DocumentStore, create_store

logger = logging.getLogger(__name__)

CORS_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
CORS_HEADERS = ["Content-Type", "Authorization", "x-auth-token", "Origin"]


def error_response(request: Request, exc: TaskboardError) -> JSONResponse:
    request_id = str(uuid.uuid4())
    if exc.status_code >= 500:
        logger.error("%s %s failed (%s): %s [%s]", request.method, request.url.path, exc.code, exc.message, request_id)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    body = ErrorResponse(
        error=ErrorEnvelope(code=exc.code, message=exc.message, details=exc.details or None, requestId=request_id)
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


def create_app(settings: Optional[Settings] = None, store: Optional[DocumentStore] = None) -> FastAPI:
    """Build the application.

    The store handle is owned here: when none is passed in, one is created
    from ``settings`` and closed again on shutdown.
    """
    settings = settings or get_settings()
    owns_store = store is None
    store = store if store is not None else create_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.connect()
        yield
        if owns_store:
            await store.close()

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)

    boards = BoardRepository(store)
    tasks = TaskRepository(store)
    app.state.settings = settings
    app.state.store = store
    app.state.token_verifier = BearerTokenVerifier()
    app.state.coordinator = BoardTaskCoordinator(
        boards,
        tasks,
        missing_board_policy=settings.MISSING_BOARD_POLICY,
        move_retries=settings.MOVE_RETRIES,
    )

    if settings.is_production:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_credentials=True,
            allow_methods=CORS_METHODS,
            allow_headers=CORS_HEADERS,
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origin_regex=".*",
            allow_credentials=True,
            allow_methods=CORS_METHODS,
            allow_headers=CORS_HEADERS,
        )

    @app.exception_handler(TaskboardError)
    async def taskboard_error(request: Request, exc: TaskboardError) -> JSONResponse:
        return error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = [".".join(str(part) for part in error["loc"]) for error in exc.errors()]
        return error_response(request, ValidationFailed("request body is invalid", {"fields": fields}))

    app.include_router(router)
    # Older frontends call everything under /api.
    app.include_router(router, prefix="/api", include_in_schema=False)
    return app


def build_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    return create_app(settings)
