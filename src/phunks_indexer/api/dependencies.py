"""FastAPI dependencies exposing the composition root wired in the app lifespan."""

from typing import Callable

from fastapi import Request

from phunks_indexer.core.config import Settings
from phunks_indexer.uow import UnitOfWork
from phunks_indexer.workers.block_queue import BlockProcessingQueue


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.block_jobs.get(Chain.L1, 123)
    """
    return request.app.state.uow_factory


def get_block_queue(request: Request) -> BlockProcessingQueue:
    return request.app.state.block_queue


def get_processors(request: Request) -> dict:
    """Get the per-chain ProcessingService map from app state."""
    return request.app.state.processors
