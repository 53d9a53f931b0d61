"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hlsforge.container import ServiceContainer
from hlsforge.core.config import settings
from hlsforge.core.errors import HlsForgeError
from hlsforge.core.logging import setup_logging
from hlsforge.core.middleware import CorrelationIdMiddleware, RequestLoggingMiddleware
from hlsforge.modules.callback.router import router as callback_router
from hlsforge.modules.upload.hooks import router as hooks_router
from hlsforge.modules.upload.router import router as upload_router


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the API around a service container.

    The container is initialized on startup and shut down on exit; tests
    pass their own to control storage, transcoding and the broker.
    """
    container = container or ServiceContainer(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await container.initialize()
        yield
        await container.shutdown()

    app = FastAPI(
        title=container.settings.PROJECT_NAME,
        version=container.settings.VERSION,
        description=(
            "Upload-to-stream video pipeline: resumable uploads via tusd, "
            "HLS transcoding with ffmpeg, object storage publishing and "
            "completion webhooks.\n\n"
            "All `/api/v1` endpoints except the tusd hook and the sample "
            "callback receiver require `Authorization: Bearer <API_KEY>`."
        ),
        openapi_url=f"{container.settings.API_V1_PREFIX}/openapi.json",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=container.settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    @app.exception_handler(HlsForgeError)
    async def lifecycle_error_handler(request: Request, exc: HlsForgeError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    prefix = container.settings.API_V1_PREFIX
    app.include_router(upload_router, prefix=prefix)
    app.include_router(hooks_router, prefix=prefix)
    app.include_router(callback_router, prefix=prefix)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "version": container.settings.VERSION}

    return app


setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

app = create_app()
