"""
Tests for the JSONL-journaled job store.
"""
import json
from dataclasses import replace

import pytest

from chainreceipt.adapters.jobs_jsonl import JSONLJobStore
from chainreceipt.domain.models import Job, JobInput

from helpers import TX_HASH


def job(job_id: str, created_at: float = 0.0, priority: int = 0, **kw) -> Job:
    return Job(id=job_id, input=JobInput(TX_HASH, 1, None, priority), created_at=created_at,
               updated_at=created_at, **kw)


class TestClaiming:

    @pytest.mark.asyncio
    async def test_claim_marks_active_and_counts_attempt(self):
        store = JSONLJobStore(None)
        await store.insert(job("a"))
        claimed = await store.claim_next(now=10.0)
        assert claimed.state == "active"
        assert claimed.attempts == 1
        assert claimed.started_at == claimed.heartbeat_at == 10.0
        assert await store.claim_next(now=10.0) is None

    @pytest.mark.asyncio
    async def test_priority_then_age(self):
        store = JSONLJobStore(None)
        await store.insert(job("old", created_at=1.0))
        await store.insert(job("new", created_at=2.0))
        await store.insert(job("urgent", created_at=3.0, priority=5))
        order = [(await store.claim_next(now=10.0)).id for _ in range(3)]
        assert order == ["urgent", "old", "new"]

    @pytest.mark.asyncio
    async def test_backoff_gates_claim(self):
        store = JSONLJobStore(None)
        await store.insert(job("a", next_attempt_at=50.0))
        assert await store.claim_next(now=49.0) is None
        assert (await store.claim_next(now=50.0)).id == "a"

    @pytest.mark.asyncio
    async def test_duplicate_and_unknown_ids(self):
        store = JSONLJobStore(None)
        await store.insert(job("a"))
        with pytest.raises(KeyError):
            await store.insert(job("a"))
        with pytest.raises(KeyError):
            await store.save(job("missing"))

    @pytest.mark.asyncio
    async def test_heartbeat_only_touches_active_jobs(self):
        store = JSONLJobStore(None)
        await store.insert(job("a"))
        await store.heartbeat("a", 99.0)
        assert (await store.get("a")).heartbeat_at is None
        await store.claim_next(now=1.0)
        await store.heartbeat("a", 99.0)
        assert (await store.get("a")).heartbeat_at == 99.0


class TestRecovery:

    @pytest.mark.asyncio
    async def test_stale_active_job_returns_to_waiting(self):
        store = JSONLJobStore(None)
        await store.insert(job("stale"))
        await store.insert(job("fresh"))
        await store.claim_next(now=1.0)
        await store.claim_next(now=1.0)
        await store.heartbeat("fresh", 500.0)

        assert await store.recover_stale(cutoff=100.0) == ["stale"]
        stale = await store.get("stale")
        assert stale.state == "waiting"
        assert stale.attempts == 1
        assert (await store.get("fresh")).state == "active"


class TestJournal:

    @pytest.mark.asyncio
    async def test_replay_after_restart(self, tmp_path):
        path = str(tmp_path / "jobs.jsonl")
        store = JSONLJobStore(path)
        await store.insert(job("a"))
        claimed = await store.claim_next(now=5.0)
        await store.save(replace(claimed, state="completed", result={"bill_id": "B"}, finished_at=6.0))

        again = JSONLJobStore(path)
        got = await again.get("a")
        assert got.state == "completed"
        assert got.result == {"bill_id": "B"}
        assert got.input == JobInput(TX_HASH, 1, None, 0)

    @pytest.mark.asyncio
    async def test_sees_jobs_submitted_by_another_process(self, tmp_path):
        path = str(tmp_path / "jobs.jsonl")
        worker = JSONLJobStore(path)
        submitter = JSONLJobStore(path)
        await submitter.insert(job("from-cli"))
        claimed = await worker.claim_next(now=1.0)
        assert claimed.id == "from-cli"
        assert (await submitter.get("from-cli")).state == "active"

    @pytest.mark.asyncio
    async def test_unreadable_and_torn_lines(self, tmp_path):
        path = tmp_path / "jobs.jsonl"
        from dataclasses import asdict
        good = json.dumps(asdict(job("ok")))
        path.write_text("not json\n" + good + "\n" + '{"id": "half')
        store = JSONLJobStore(str(path))
        assert [j.id for j in await store.list()] == ["ok"]

    @pytest.mark.asyncio
    async def test_retention_compacts_journal(self, tmp_path):
        path = tmp_path / "jobs.jsonl"
        store = JSONLJobStore(str(path), keep_completed=2, keep_failed=1)
        for i in range(4):
            await store.insert(job(f"c{i}", created_at=float(i)))
            claimed = await store.claim_next(now=float(i))
            await store.save(replace(claimed, state="completed", finished_at=float(i)))
        await store.insert(job("w"))

        assert {j.id for j in await store.list(("completed",))} == {"c2", "c3"}
        ids = {json.loads(line)["id"] for line in path.read_text().splitlines()}
        assert ids == {"c2", "c3", "w"}
        assert {j.id for j in await JSONLJobStore(str(path)).list()} == {"c2", "c3", "w"}
