from __future__ import annotations
import os, json, asyncio, logging, time
from dataclasses import asdict, replace
from typing import Iterable
from ..domain.models import Job
from ..domain.value_types import JobState
from ..ports.storage import JobStore

logger = logging.getLogger(__name__)


def _claim_order(job: Job) -> tuple[int, float, str]:
    return (-job.input.priority, job.created_at, job.id)


class JSONLJobStore(JobStore):
    """
    Job table kept in memory and journaled as one JSON snapshot per line
    (last snapshot per id wins). Every transition happens under one asyncio.Lock,
    so a waiting job is claimed by exactly one worker of this process.

    Lines appended by other processes (e.g. a CLI `submit`) are picked up on the
    next read. Only one process should run workers against a given journal.

    Retention keeps the newest `keep_completed` completed and `keep_failed` failed
    jobs; pruning compacts the journal. `path=None` keeps everything in memory.
    """

    def __init__(self, path: str | None, keep_completed: int = 100, keep_failed: int = 500) -> None:
        self.path = path
        self.keep = {"completed": keep_completed, "failed": keep_failed}
        self._jobs: dict[str, Job] = {}
        self._lock = asyncio.Lock()
        self._offset = 0
        self._inode: int | None = None
        if path:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            self._refresh()

    # ── journal (caller holds the lock, or is __init__) ──

    def _refresh(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        st = os.stat(self.path)
        if st.st_ino != self._inode or st.st_size < self._offset:
            # first read, or the journal was compacted underneath us
            self._jobs.clear()
            self._offset, self._inode = 0, st.st_ino
        if st.st_size == self._offset:
            return
        with open(self.path, "rb") as f:
            f.seek(self._offset)
            chunk = f.read()
        end = chunk.rfind(b"\n") + 1   # leave a torn last line for the next read
        bad = 0
        for raw in chunk[:end].splitlines():
            if not raw.strip():
                continue
            try:
                job = Job.from_dict(json.loads(raw))
            except (ValueError, KeyError, TypeError):
                bad += 1
                continue
            self._jobs[job.id] = job
        self._offset += end
        if bad:
            logger.warning("skipped %d unreadable lines in %s", bad, self.path)

    def _append(self, job: Job) -> None:
        self._jobs[job.id] = job
        if not self.path:
            return
        line = json.dumps(asdict(job), separators=(",", ":")) + "\n"
        with open(self.path, "ab") as f:
            start = f.tell()
            f.write(line.encode()); f.flush(); os.fsync(f.fileno())
            end = f.tell()
        if start == self._offset:
            # nobody appended since our last read; otherwise the next refresh replays in file order
            self._offset, self._inode = end, os.stat(self.path).st_ino

    def _compact(self) -> None:
        if not self.path:
            return
        tmp = self.path + ".tmp"
        with open(tmp, "wb") as f:
            for job in self._jobs.values():
                f.write((json.dumps(asdict(job), separators=(",", ":")) + "\n").encode())
            f.flush(); os.fsync(f.fileno())
            size = f.tell()
        os.replace(tmp, self.path)
        self._offset, self._inode = size, os.stat(self.path).st_ino

    def _prune(self) -> None:
        dropped = 0
        for state, keep in self.keep.items():
            done = sorted((j for j in self._jobs.values() if j.state == state),
                          key=lambda j: j.finished_at or j.updated_at, reverse=True)
            for j in done[keep:]:
                del self._jobs[j.id]
                dropped += 1
        if dropped:
            logger.debug("retention pruned %d terminal jobs", dropped)
            self._compact()

    # ── JobStore ──

    async def insert(self, job: Job) -> None:
        async with self._lock:
            self._refresh()
            if job.id in self._jobs:
                raise KeyError(f"duplicate job id {job.id}")
            self._append(job)

    async def get(self, job_id: str) -> Job | None:
        async with self._lock:
            self._refresh()
            return self._jobs.get(job_id)

    async def claim_next(self, now: float) -> Job | None:
        async with self._lock:
            self._refresh()
            runnable = [j for j in self._jobs.values() if j.state == "waiting" and j.next_attempt_at <= now]
            if not runnable:
                return None
            job = min(runnable, key=_claim_order)
            claimed = replace(job, state="active", attempts=job.attempts + 1, started_at=now,
                              heartbeat_at=now, updated_at=now)
            self._append(claimed)
            return claimed

    async def save(self, job: Job) -> None:
        async with self._lock:
            self._refresh()
            if job.id not in self._jobs:
                raise KeyError(f"unknown job id {job.id}")
            self._append(job)
            if job.is_terminal:
                self._prune()

    async def heartbeat(self, job_id: str, now: float) -> None:
        # memory only; after a restart the journaled claim time ages out instead
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is not None and job.state == "active":
                self._jobs[job_id] = replace(job, heartbeat_at=now)

    async def list(self, states: Iterable[JobState] | None = None) -> list[Job]:
        wanted = set(states) if states is not None else None
        async with self._lock:
            self._refresh()
            return [j for j in self._jobs.values() if wanted is None or j.state in wanted]

    async def recover_stale(self, cutoff: float) -> list[str]:
        recovered: list[str] = []
        async with self._lock:
            self._refresh()
            for job in list(self._jobs.values()):
                if job.state == "active" and (job.heartbeat_at or job.started_at or 0) < cutoff:
                    self._append(replace(job, state="waiting", next_attempt_at=0.0, updated_at=time.time(),
                                         heartbeat_at=None))
                    recovered.append(job.id)
        if recovered:
            logger.warning("returned %d stalled jobs to waiting: %s", len(recovered), ", ".join(recovered))
        return recovered
