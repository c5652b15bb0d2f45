from __future__ import annotations

import logging
import math
import re
import secrets
import time
from typing import Callable

from eth_utils import is_hex_address

from ..config import Settings
from ..domain.errors import ValidationError
from ..domain.models import Job, JobHandle, JobInput, JobStatus
from ..ports.storage import JobStore

logger = logging.getLogger(__name__)

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def new_job_id(now: float) -> str:
    return f"job_{int(now * 1000)}_{secrets.token_hex(4)}"


def validate_input(job_input: JobInput) -> JobInput:
    """Reject malformed submissions; returns the input with normalized casing."""
    tx_hash = job_input.tx_hash
    if not tx_hash or not isinstance(tx_hash, str):
        raise ValidationError("tx_hash is required")
    if not TX_HASH_RE.match(tx_hash):
        raise ValidationError(f"tx_hash must be 0x followed by 64 hex characters, got {tx_hash!r}")
    chain_id = job_input.chain_id
    if chain_id is None or isinstance(chain_id, bool) or not isinstance(chain_id, int):
        raise ValidationError("chain_id is required and must be an integer")
    wallet = job_input.connected_wallet
    if wallet is not None and not is_hex_address(wallet):
        raise ValidationError(f"connected_wallet is not an address: {wallet!r}")
    return JobInput(tx_hash.lower(), chain_id, wallet.lower() if wallet else None, int(job_input.priority))


class JobQueue:
    """
    Intake side of the job table. Every submission gets a fresh id, so submitting
    the same hash twice runs two independent generations.
    """

    def __init__(self, store: JobStore, settings: Settings, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.settings = settings
        self.clock = clock

    async def submit(self, job_input: JobInput) -> JobHandle:
        job_input = validate_input(job_input)
        now = self.clock()
        job = Job(id=new_job_id(now), input=job_input, created_at=now, updated_at=now)
        await self.store.insert(job)
        logger.info("queued %s for %s on chain %s", job.id, job_input.tx_hash, job_input.chain_id)
        return JobHandle(job.id)

    async def get_status(self, job_id: str) -> JobStatus | None:
        job = await self.store.get(job_id)
        if job is None:
            return None
        position, wait = await self._position(job)
        return JobStatus(job.id, job.state, job.attempts, job.result, job.document_ref, job.error,
                         position, wait)

    async def _position(self, job: Job) -> tuple[int, int]:
        avg = self.settings.avg_processing_s
        if job.state == "active":
            return 0, math.ceil(avg)
        if job.state != "waiting":
            return 0, 0
        prio = job.input.priority
        ahead = [j for j in await self.store.list(("waiting", "active"))
                 if j.id != job.id and (j.input.priority > prio
                                        or (j.input.priority == prio and j.created_at < job.created_at))]
        position = len(ahead) + 1
        return position, math.ceil(math.ceil(position / self.settings.concurrency) * avg)
