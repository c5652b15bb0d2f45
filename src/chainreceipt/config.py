from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .domain.errors import ValidationError


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from None


@dataclass(slots=True, frozen=True)
class Settings:
    """Runtime configuration, passed explicitly to the queue, worker pool and pipeline."""

    data_dir: str = "./data"
    concurrency: int = 5
    max_attempts: int = 3
    backoff_base_s: float = 2.0
    job_timeout_s: float = 120.0
    processing_timeout_s: float = 300.0
    heartbeat_interval_s: float = 10.0
    poll_interval_s: float = 1.0
    avg_processing_s: float = 6.0
    http_timeout_s: float = 15.0
    keep_completed: int = 100
    keep_failed: int = 500
    template_id: str = "default"
    ad_placement: str = "receipt_footer"
    ads_file: str | None = None
    alchemy_api_key: str | None = None
    coingecko_api_key: str | None = None
    log_level: str = "INFO"

    @property
    def jobs_path(self) -> str:
        return os.path.join(self.data_dir, "jobs.jsonl")

    @property
    def documents_dir(self) -> str:
        return os.path.join(self.data_dir, "documents")

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValidationError("concurrency must be >= 1")
        if self.max_attempts < 1:
            raise ValidationError("max_attempts must be >= 1")

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()
        return cls(
            data_dir=os.getenv("CHAINRECEIPT_DATA_DIR", "./data"),
            concurrency=_env_int("CHAINRECEIPT_CONCURRENCY", 5),
            max_attempts=_env_int("CHAINRECEIPT_MAX_ATTEMPTS", 3),
            backoff_base_s=_env_float("CHAINRECEIPT_BACKOFF_BASE_S", 2.0),
            job_timeout_s=_env_float("CHAINRECEIPT_JOB_TIMEOUT_S", 120.0),
            processing_timeout_s=_env_float("CHAINRECEIPT_PROCESSING_TIMEOUT_S", 300.0),
            http_timeout_s=_env_float("CHAINRECEIPT_HTTP_TIMEOUT_S", 15.0),
            keep_completed=_env_int("CHAINRECEIPT_KEEP_COMPLETED", 100),
            keep_failed=_env_int("CHAINRECEIPT_KEEP_FAILED", 500),
            template_id=os.getenv("CHAINRECEIPT_TEMPLATE", "default"),
            ads_file=os.getenv("CHAINRECEIPT_ADS_FILE") or None,
            alchemy_api_key=os.getenv("ALCHEMY_API_KEY") or None,
            coingecko_api_key=os.getenv("COINGECKO_API_KEY") or None,
            log_level=os.getenv("CHAINRECEIPT_LOG_LEVEL", "INFO").upper(),
        )
