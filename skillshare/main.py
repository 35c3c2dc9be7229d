import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from skillshare.auth import cleanup_expired_sessions
from skillshare.config import Settings, get_settings
from skillshare.errors import SkillShareError, ValidationFailed
from skillshare.routers import auth_router, bookings_router, sessions_router
from skillshare.schemas import field_errors
from skillshare.storage import build_storage

logger = logging.getLogger(__name__)

GENERIC_ERROR = {
    "detail": "An internal server error occurred. Please try again later.",
    "type": "InternalServerError",
}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(SkillShareError)
    async def skillshare_exception_handler(request: Request, exc: SkillShareError):
        """Map application exceptions to their HTTP status."""
        if exc.status_code >= 500:
            logger.error(
                "Application error on %s %s: %s: %s",
                request.method, request.url.path, type(exc).__name__, exc.message,
            )
            if not settings.is_development:
                return JSONResponse(status_code=exc.status_code, content=GENERIC_ERROR)
        else:
            logger.warning(
                "Application exception on %s %s: %s: %s",
                request.method, request.url.path, type(exc).__name__, exc.message,
            )

        content = {"detail": exc.message, "type": type(exc).__name__}
        if isinstance(exc, ValidationFailed):
            content["errors"] = [{"field": e.field, "message": e.message} for e in exc.errors]
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Bodies or path parameters FastAPI itself rejects get the same 400 shape."""
        return await skillshare_exception_handler(request, ValidationFailed(field_errors(exc.errors())))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Unclassified failures become a 500 without leaking internals."""
        logger.error("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)

        if settings.is_development:
            return JSONResponse(
                status_code=500,
                content={"detail": str(exc), "type": type(exc).__name__},
            )
        return JSONResponse(status_code=500, content=GENERIC_ERROR)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application and its storage backend.

    The storage object is created once here and shared through app.state;
    routes reach it via the get_storage dependency.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    storage = build_storage(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.
        Runs on startup and shutdown.
        """
        storage.initialize()
        cleanup_expired_sessions(storage)
        yield
        storage.close()

    app = FastAPI(
        title="SkillShare Hub",
        description="Skill session marketplace for teachers and learners",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.storage = storage

    # In production, restrict origins to your frontend domain
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app, settings)

    app.include_router(auth_router.router)
    app.include_router(sessions_router.router)
    app.include_router(bookings_router.router)

    @app.get("/")
    async def root():
        """
        Health check endpoint.
        """
        return {
            "status": "running",
            "version": "1.0.0",
            "storage": settings.storage_backend,
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "skillshare.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=get_settings().debug,
    )
