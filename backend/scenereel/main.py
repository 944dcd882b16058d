import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from scenereel.api import render, storage, websocket
from scenereel.config import get_settings
from scenereel.constants.error_codes import get_error_spec
from scenereel.exceptions import SceneReelError
from scenereel.schemas.envelope import ErrorInfo
from scenereel.services.render_service import RenderService

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def create_app(render_service: Optional[RenderService] = None) -> FastAPI:
    """Build the application. Tests pass a preconfigured RenderService."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        manager = websocket.WebSocketManager()
        service = render_service or RenderService(settings)
        if service.notifier is None:
            service.notifier = websocket.RenderProgressNotifier(manager)
        app.state.websocket_manager = manager
        app.state.render_service = service
        yield
        # Shutdown
        await service.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    @app.exception_handler(SceneReelError)
    async def scenereel_exception_handler(request: Request, exc: SceneReelError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning(f"{exc.code} on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.message,
                "error": exc.to_error_info().model_dump(exclude_none=True),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        spec = get_error_spec("VALIDATION_ERROR")
        errors = exc.errors()
        if errors:
            first_error = errors[0]
            loc = " -> ".join(str(x) for x in first_error.get("loc", []))
            msg = first_error.get("msg", "Validation error")
            message = f"{loc}: {msg}" if loc else msg
        else:
            message = "Request validation failed"

        error = ErrorInfo(
            code="VALIDATION_ERROR",
            message=message,
            retryable=spec.get("retryable", False),
            suggested_fix=spec.get("suggested_fix"),
        )
        return JSONResponse(
            status_code=422,
            content={
                "detail": jsonable_errors(errors),
                "error": error.model_dump(exclude_none=True),
            },
        )

    # Global exception handler to ensure errors return proper JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # Routers
    app.include_router(render.router, prefix="/api", tags=["render"])
    app.include_router(websocket.router, prefix="/api", tags=["render"])
    app.include_router(storage.router, prefix="/api/storage", tags=["storage"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version}

    return app


def jsonable_errors(errors: list[dict]) -> list[dict]:
    """Validation errors without the raw input/ctx objects, which may not serialize."""
    return [
        {key: value for key, value in error.items() if key in ("type", "loc", "msg")}
        for error in errors
    ]


app = create_app()
