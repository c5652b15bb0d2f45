# chainreceipt/ports/storage.py
from __future__ import annotations

from typing import Iterable, Protocol
from ..domain.models import Job
from ..domain.value_types import JobState


class JobStore(Protocol):
    """Port for the durable job table. Implementations serialize transitions per job id."""

    async def insert(self, job: Job) -> None:
        """Persist a new job record."""

    async def get(self, job_id: str) -> Job | None:
        """Return the latest snapshot of a job."""

    async def claim_next(self, now: float) -> Job | None:
        """Atomically move the best runnable waiting job to active and return it."""

    async def save(self, job: Job) -> None:
        """Persist a new snapshot of an existing job."""

    async def list(self, states: Iterable[JobState] | None = None) -> list[Job]:
        """Return current snapshots, optionally filtered by state."""

    async def recover_stale(self, cutoff: float) -> list[str]:
        """Return active jobs whose heartbeat predates `cutoff` to waiting; return their ids."""

    async def heartbeat(self, job_id: str, now: float) -> None:
        """Mark an active job as still being worked on."""
