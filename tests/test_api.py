"""
Tests for the HTTP surface.
"""
import pytest
from fastapi.testclient import TestClient

from chainreceipt.adapters.jobs_jsonl import JSONLJobStore
from chainreceipt.application.queue import JobQueue
from chainreceipt.config import Settings
from chainreceipt.presentation.api import create_app

from helpers import TX_HASH


@pytest.fixture
def client():
    app = create_app(JobQueue(JSONLJobStore(None), Settings()))
    with TestClient(app) as c:
        yield c


class TestBillsApi:

    def test_submit_returns_job_id(self, client):
        r = client.post("/bills", json={"txHash": TX_HASH, "chainId": 1})
        assert r.status_code == 202
        assert r.json()["jobId"].startswith("job_")

    def test_status_uses_camel_case(self, client):
        job_id = client.post("/bills", json={"txHash": TX_HASH, "chainId": 8453}).json()["jobId"]
        r = client.get(f"/bills/{job_id}")
        assert r.status_code == 200
        body = r.json()
        assert body["jobId"] == job_id
        assert body["state"] == "waiting"
        assert body["queuePosition"] == 1
        assert body["estimatedWaitSeconds"] == 6
        assert body["documentReference"] is None

    def test_malformed_hash_is_rejected(self, client):
        r = client.post("/bills", json={"txHash": "0x1234", "chainId": 1})
        assert r.status_code == 400
        assert "tx_hash" in r.json()["detail"]

    def test_missing_chain_id(self, client):
        assert client.post("/bills", json={"txHash": TX_HASH}).status_code == 422

    def test_unknown_job(self, client):
        assert client.get("/bills/job_0_00000000").status_code == 404

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}
