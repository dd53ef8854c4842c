"""
MPC dev environment daemon.

Local control plane for the Multi-Platform Controller kind environment: keeps
an environment snapshot current and runs one long operation at a time (image
builds, deployments, TaskRuns) in the background.
"""

# Performance: Install uvloop if available (Linux/macOS only)
try:
    import uvloop
    uvloop.install()
except ImportError:
    pass  # Windows - uvloop not available, use default asyncio

from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from routers import cluster, git, operations, status as status_router, taskrun

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Daemon lifespan management."""
    # Startup
    set_startup_time()
    logger.info("Starting MPC dev environment daemon",
                mpc_repo_path=str(settings.mpc_repo_path) if settings.mpc_repo_path else None,
                mpc_dev_env_path=str(settings.mpc_dev_env_path),
                logs_dir=str(settings.logs_dir))
    if settings.mpc_repo_path is None:
        logger.warning("MPC repository not found; builds and deployments will fail until MPC_REPO_PATH is set")

    await container.snapshot_store().initial_scan()

    sweeper = container.sweeper()
    await sweeper.start()

    watcher = None
    if settings.hot_reload_enabled and settings.mpc_repo_path is not None:
        watcher = container.hot_reload_watcher()
        await watcher.start()

    logger.info("Daemon started", host=settings.host, port=settings.port)
    yield

    # Shutdown
    if watcher is not None:
        await watcher.stop()
    await sweeper.stop()
    await container.coordinator().shutdown()
    logger.info("Daemon shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="MPC Dev Environment Daemon",
    version="1.0.0",
    description="Local control daemon for the Multi-Platform Controller kind environment",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
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
                    "status": "error",
                    "error": f"{type(e).__name__}: {str(e)}",
                    "detail": "Internal server error"
                }
            )


app.add_middleware(CatchAllExceptionsMiddleware)


@app.exception_handler(RequestValidationError)
async def invalid_body_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors (400), not 422."""
    return ORJSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"status": "error", "error": "Invalid request body", "detail": [{"loc": e["loc"], "msg": e["msg"]} for e in exc.errors()]},
    )


# Include routers
app.include_router(status_router.router)
app.include_router(operations.router)
app.include_router(taskrun.router)
app.include_router(git.router)
app.include_router(cluster.router)


@app.get("/health")
async def health_check():
    """Daemon liveness plus process stats."""
    return {
        **get_health_status(settings, container.coordinator(), container.sweeper()),
        "service": "mpc-dev-env-daemon",
        "version": app.version,
        "environment": "development" if settings.is_development else "production",
        "timestamp": datetime.now().isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting MPC dev environment daemon",
                host=settings.host, port=settings.port, debug=settings.debug)
    # State lives in process memory: always exactly one worker
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_dirs=["."] if settings.debug else None,
        reload_excludes=["*.pyc", "__pycache__", "*.log"] if settings.debug else None,
        workers=1
    )
