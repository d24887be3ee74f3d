"""
FastAPI backend for the campus dashboard chat assistant.

Serves user profiles through an in-memory LRU cache and writes chat history
through a debounced per-chat buffer.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.exceptions import NotFoundError, UpstreamError
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from routers import chats, users

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting campus chat backend")
    set_startup_time()

    await container.database().startup()

    if settings.cleanup_enabled:
        await container.cleanup_service().start()
    await container.memory_monitor().start()

    logger.info("Services started successfully")
    yield

    await container.memory_monitor().stop()
    if settings.cleanup_enabled:
        await container.cleanup_service().stop()

    # Pending chat history is written out before the engine goes away
    await container.message_buffer().shutdown()
    await container.database().shutdown()
    logger.info("Services shutdown complete")


app = FastAPI(
    title="Campus Chat Backend",
    version="1.0.0",
    description="User profile cache and buffered chat history for the campus assistant",
    lifespan=lifespan
)


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled exception: {type(e).__name__}: {str(e)}",
                         path=request.url.path, exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": f"{type(e).__name__}: {str(e)}",
                    "detail": "Internal server error"
                }
            )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"success": False, "detail": str(exc)})


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.warning("Upstream failure", service=exc.service, status_code=exc.status_code,
                   path=request.url.path)
    return JSONResponse(status_code=502, content={"success": False, "detail": str(exc)})


app.add_middleware(CatchAllExceptionsMiddleware)

logger.info("Configuring CORS middleware", origins=settings.cors_origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

app.include_router(users.router)
app.include_router(chats.router)


@app.get("/health")
async def health_check():
    """Detailed health check."""
    return await get_health_status(
        database=container.database(),
        user_cache=container.user_cache(),
        message_buffer=container.message_buffer(),
        settings=settings
    )


@app.get("/metrics/memory")
async def memory_metrics():
    """Process memory samples for monitoring dashboards."""
    return container.memory_monitor().metrics()


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting campus chat backend",
                host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
