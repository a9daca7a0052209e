"""Operator endpoints for the block processing queue.

- POST /admin/reindex-block - Re-process one block now (idempotent)
- POST /admin/pause-block-queue / resume-block-queue - Gate dequeuing
- POST /admin/skip-block - Close a dead block without processing it
- GET /admin/block-queue - Queue status snapshot

Failures are reported without internal retry state or error details.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from phunks_indexer.api.dependencies import get_block_queue, get_processors
from phunks_indexer.models.enums import Chain, InvalidStateTransition
from phunks_indexer.workers.block_queue import BlockProcessingQueue

logger = structlog.get_logger()
router = APIRouter(prefix="/admin", tags=["admin"])


class BlockRequest(BaseModel):
    """Block reference as sent by the admin client (camelCase)."""

    model_config = ConfigDict(populate_by_name=True)

    block_number: int = Field(..., alias="blockNumber", ge=0, description="Block number")
    chain: Chain = Field(default=Chain.L1, description="Chain of the block (l1 or l2)")


class StatusResponse(BaseModel):
    status: str = Field(..., description="Operation outcome")


@router.post("/reindex-block", response_model=StatusResponse)
async def reindex_block(
    request: BlockRequest,
    processors: dict = Depends(get_processors),
    queue: BlockProcessingQueue = Depends(get_block_queue),
):
    """Re-process a block immediately.

    Re-processing an applied block leaves the store unchanged. On success a dead
    queue job for the block is closed so the chain resumes.
    """
    processor = processors.get(request.chain)
    if processor is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Chain {request.chain.value} is not configured",
        )

    try:
        await processor.process_block(request.block_number, is_reindex=True)
    except Exception as e:
        logger.error(
            "admin.reindex_failed",
            chain=request.chain.value,
            block_number=request.block_number,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to reindex block"
        )

    await queue.resolve_dead(request.chain, request.block_number, "reindexed via admin")
    logger.info("admin.reindexed", chain=request.chain.value, block_number=request.block_number)
    return StatusResponse(status="success")


@router.post("/pause-block-queue", response_model=StatusResponse)
async def pause_block_queue(queue: BlockProcessingQueue = Depends(get_block_queue)):
    await queue.pause_queue()
    return StatusResponse(status="success")


@router.post("/resume-block-queue", response_model=StatusResponse)
async def resume_block_queue(queue: BlockProcessingQueue = Depends(get_block_queue)):
    await queue.resume_queue()
    return StatusResponse(status="success")


@router.post("/skip-block", response_model=StatusResponse)
async def skip_block(
    request: BlockRequest, queue: BlockProcessingQueue = Depends(get_block_queue)
):
    """Mark a dead block done without processing it."""
    try:
        await queue.skip(request.chain, request.block_number)
    except (InvalidStateTransition, ValueError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Block is not dead-lettered"
        )
    return StatusResponse(status="success")


@router.get("/block-queue")
async def block_queue_status(queue: BlockProcessingQueue = Depends(get_block_queue)):
    return await queue.status()
