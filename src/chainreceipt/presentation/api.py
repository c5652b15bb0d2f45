"""
FastAPI surface: submit a bill job, poll its status.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status

from ..application.queue import JobQueue
from ..application.worker import WorkerPool
from ..config import Settings
from ..domain.errors import ValidationError
from ..domain.models import JobInput
from .schemas import BillAccepted, BillRequest, BillStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bills", tags=["Bills"])


def get_queue(request: Request) -> JobQueue:
    return request.app.state.queue


@router.post("", response_model=BillAccepted, response_model_by_alias=True,
             status_code=status.HTTP_202_ACCEPTED)
async def submit_bill(body: BillRequest, queue: JobQueue = Depends(get_queue)) -> BillAccepted:
    """Queue a generation. Every call creates a new job, even for a hash seen before."""
    try:
        handle = await queue.submit(JobInput(body.tx_hash, body.chain_id, body.connected_wallet, body.priority))
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return BillAccepted(job_id=handle.id)


@router.get("/{job_id}", response_model=BillStatusResponse, response_model_by_alias=True)
async def get_bill(job_id: str, queue: JobQueue = Depends(get_queue)) -> BillStatusResponse:
    st = await queue.get_status(job_id)
    if st is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"unknown job {job_id}")
    return BillStatusResponse(
        job_id=st.id, state=st.state, data=st.result, document_reference=st.document_ref,
        error=st.error, attempts=st.attempts, queue_position=st.queue_position,
        estimated_wait_seconds=st.estimated_wait_s,
    )


def create_app(queue: JobQueue, workers: Optional[WorkerPool] = None,
               on_shutdown: Optional[Callable[[], Awaitable[None]]] = None) -> FastAPI:
    """With `workers`, the pool runs in the background for the app's lifetime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        task = asyncio.create_task(workers.run_forever()) if workers is not None else None
        try:
            yield
        finally:
            if task is not None:
                workers.stop()
                await task
            if on_shutdown is not None:
                await on_shutdown()

    app = FastAPI(title="chainreceipt", lifespan=lifespan)
    app.state.queue = queue
    app.include_router(router)

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


def app_from_env() -> FastAPI:
    """uvicorn factory: `uvicorn chainreceipt.presentation.api:app_from_env --factory`."""
    from ..services import build_services

    services = build_services(Settings.from_env())
    return create_app(services.queue, services.workers, services.aclose)
