"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from phunks_indexer.api.routes import admin
from phunks_indexer.core import timezone  # noqa: F401
from phunks_indexer.core.config import Settings, configure_logging
from phunks_indexer.core.database import setup_db_session
from phunks_indexer.indexer import build_indexer
from phunks_indexer.uow import create_uow_factory

logger = structlog.get_logger()


def create_resilient_worker(coro_func, worker_name: str, shutdown_event: asyncio.Event):
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Zero-argument coroutine function (e.g., follower.run)
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """
    RESTART_DELAY = 1  # Fixed 1 second delay between restarts

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Followers loop forever; returning is unexpected
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_func())
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_func())
    task.add_done_callback(on_worker_done)
    return task


async def resume_mints(mint_service) -> None:
    """Drive mint jobs a previous run left unfinished."""
    try:
        resumed = await mint_service.resume_unfinished()
        logger.info("startup.mints_resumed", count=resumed)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        # Left for the next deposit of the same hash or the next restart
        logger.error("startup.mint_resume_failed", error=str(e), error_type=type(e).__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    - Startup: database session factory, logging, services, block queue, followers
    - Shutdown: stop followers and queue workers
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(
        settings.database_url, settings.db_pool_size, schema=settings.data_partition
    )
    uow_factory = create_uow_factory(session_factory)

    indexer = build_indexer(settings, uow_factory)

    # Store in app.state for access in routes
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.processors = indexer.processors
    app.state.block_queue = indexer.queue

    shutdown_event = asyncio.Event()

    await indexer.queue.start()
    follower_tasks = [
        create_resilient_worker(follower.run, f"follower_{follower.chain.value}", shutdown_event)
        for follower in indexer.followers
    ]
    background = []
    if indexer.mint_service is not None:
        background.append(asyncio.create_task(resume_mints(indexer.mint_service)))

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        chain_id=settings.chain_id,
        partition=settings.data_partition,
        mint_enabled=indexer.mint_service is not None,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    for task in follower_tasks + background:
        task.cancel()
    await asyncio.gather(*follower_tasks, *background, return_exceptions=True)
    await indexer.queue.stop()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Phunks Indexer",
        description="L1/L2 ethscription indexer and bridge minter",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(admin.router)  # prefix="/admin" in definition

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
