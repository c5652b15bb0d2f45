from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import replace
from typing import Awaitable, Callable, Protocol

from ..config import Settings
from ..domain.assembly import receipt_to_dict
from ..domain.errors import ReceiptError, TransientError, failure_reason, is_retryable
from ..domain.models import Job, JobInput
from ..ports.storage import JobStore
from .pipeline import PipelineResult

logger = logging.getLogger(__name__)


class Runner(Protocol):
    async def run(self, job_input: JobInput) -> PipelineResult: ...


class WorkerPool:
    """
    Claims waiting jobs and runs them with at most `settings.concurrency` in flight.

    A failure is retried with exponential backoff (base, 2*base, ...) while the error
    is retryable and attempts remain; otherwise the job becomes terminal `failed`
    with a "<ErrorClass>: message" reason. A claimed job always runs to an outcome.
    """

    def __init__(self, store: JobStore, pipeline: Runner, settings: Settings,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self.store = store
        self.pipeline = pipeline
        self.settings = settings
        self.clock = clock
        self.sleep = sleep
        self._sem = asyncio.Semaphore(settings.concurrency)
        self._tasks: set[asyncio.Task[None]] = set()
        self._stop = asyncio.Event()

    # ──────────────────────────────
    # loops
    # ──────────────────────────────

    async def run_until_idle(self) -> None:
        """Process until nothing is waiting or in flight, honouring retry backoff."""
        await self.recover_stale()
        while True:
            while await self._claim_and_start():
                pass
            if self._tasks:
                await asyncio.wait(set(self._tasks), return_when=asyncio.FIRST_COMPLETED)
                continue
            waiting = await self.store.list(("waiting",))
            if not waiting:
                return
            wake = min(j.next_attempt_at for j in waiting)
            await self.sleep(max(0.0, wake - self.clock()))

    async def run_forever(self) -> None:
        """Poll for work until stop(); in-flight jobs are awaited before returning."""
        self._stop.clear()
        recovery_every = max(1.0, self.settings.processing_timeout_s / 5)
        last_recovery = float("-inf")
        while not self._stop.is_set():
            if self.clock() - last_recovery >= recovery_every:
                await self.recover_stale()
                last_recovery = self.clock()
            if await self._claim_and_start():
                continue
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop.wait(), self.settings.poll_interval_s)
        if self._tasks:
            await asyncio.gather(*self._tasks)

    def stop(self) -> None:
        self._stop.set()

    async def recover_stale(self) -> list[str]:
        return await self.store.recover_stale(self.clock() - self.settings.processing_timeout_s)

    # ──────────────────────────────
    # one job
    # ──────────────────────────────

    async def _claim_and_start(self) -> bool:
        await self._sem.acquire()
        if self._stop.is_set():
            self._sem.release()
            return False
        try:
            job = await self.store.claim_next(self.clock())
        except BaseException:
            self._sem.release()
            raise
        if job is None:
            self._sem.release()
            return False
        task = asyncio.create_task(self._run_job(job), name=job.id)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run_job(self, job: Job) -> None:
        try:
            await self._process(job)
        except Exception:
            # bookkeeping itself failed; the stale-job sweep will pick the job up again
            logger.exception("could not record outcome of %s", job.id)
        finally:
            self._sem.release()

    async def _process(self, job: Job) -> None:
        s = self.settings
        logger.info("job %s attempt %d/%d: %s on chain %s", job.id, job.attempts, s.max_attempts,
                    job.input.tx_hash, job.input.chain_id)
        if job.attempts > s.max_attempts:
            await self._fail(job, f"TransientError: gave up after {s.max_attempts} attempts (job stalled)")
            return

        beat = asyncio.create_task(self._heartbeat(job.id))
        started = self.clock()
        try:
            result = await asyncio.wait_for(self.pipeline.run(job.input), s.job_timeout_s)
        except asyncio.TimeoutError:
            exc: BaseException = TransientError(f"generation exceeded {s.job_timeout_s:g}s")
        except Exception as e:
            exc = e
        else:
            now = self.clock()
            await self.store.save(replace(
                job, state="completed", result=receipt_to_dict(result.receipt),
                document_ref=result.document_ref, error=None, finished_at=now, updated_at=now,
                duration_ms=int((now - started) * 1000)))
            logger.info("job %s completed in %.1fs -> %s", job.id, now - started, result.document_ref or "-")
            return
        finally:
            beat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await beat

        await self._handle_failure(job, exc)

    async def _handle_failure(self, job: Job, exc: BaseException) -> None:
        s = self.settings
        reason = failure_reason(exc)
        if not isinstance(exc, ReceiptError):
            logger.error("job %s hit an unexpected error", job.id, exc_info=exc)

        if is_retryable(exc) and job.attempts < s.max_attempts:
            delay = s.backoff_base_s * (2 ** (job.attempts - 1))
            now = self.clock()
            await self.store.save(replace(job, state="waiting", error=reason, next_attempt_at=now + delay,
                                          updated_at=now, heartbeat_at=None))
            logger.warning("job %s attempt %d failed (%s); retrying in %.1fs", job.id, job.attempts, reason, delay)
            return
        await self._fail(job, reason)

    async def _fail(self, job: Job, reason: str) -> None:
        now = self.clock()
        await self.store.save(replace(job, state="failed", error=reason, finished_at=now, updated_at=now))
        logger.error("job %s failed after %d attempt(s): %s", job.id, job.attempts, reason)

    async def _heartbeat(self, job_id: str) -> None:
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval_s)
            try:
                await self.store.heartbeat(job_id, self.clock())
            except Exception as e:
                logger.warning("heartbeat for %s not recorded: %s", job_id, e)
