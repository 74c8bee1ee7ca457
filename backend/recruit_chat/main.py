from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from recruit_chat.api.routes import api_router
from recruit_chat.core.config import get_settings
from recruit_chat.core.errors import (
    MessagingError,
    ResolutionFailed,
    StoreUnavailable,
    SubscriptionError,
    ValidationError,
)
from recruit_chat.core.logging import configure_logging
from recruit_chat.realtime.bus import LiveEventBus

ERROR_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ResolutionFailed: status.HTTP_409_CONFLICT,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    SubscriptionError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def format_error_response(exc: MessagingError, status_code: int) -> dict:
    return {
        "detail": exc.detail,
        "error": {
            "type": exc.__class__.__name__,
            "retryable": exc.retryable,
            "status_code": status_code,
        },
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        yield
    finally:
        app.state.bus.close()


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Recruit Chat",
        lifespan=lifespan,
        docs_url="/docs" if settings.environment == "development" else None,
        redoc_url="/redoc" if settings.environment == "development" else None,
    )
    app.state.bus = LiveEventBus()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MessagingError)
    async def messaging_error_handler(request: Request, exc: MessagingError):
        status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
        return JSONResponse(
            status_code=status_code,
            content=format_error_response(exc, status_code),
        )

    @app.get("/", tags=["root"], summary="Health check")
    def root():
        return {"status": "ok", "service": "recruit-chat"}

    app.include_router(api_router)
    return app


app = create_app()
