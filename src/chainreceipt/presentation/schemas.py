"""
Pydantic schemas for the bill HTTP surface. Field names are camelCase on the wire.
"""
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class BillRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tx_hash: str = Field(..., alias="txHash", description="0x-prefixed 32-byte transaction hash")
    chain_id: int = Field(..., alias="chainId", strict=True)
    connected_wallet: Optional[str] = Field(None, alias="connectedWallet")
    priority: int = Field(0, ge=0, le=100)


class BillAccepted(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")


class BillStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")
    state: Literal["waiting", "active", "completed", "failed"]
    data: Optional[dict[str, Any]] = None
    document_reference: Optional[str] = Field(None, alias="documentReference")
    error: Optional[str] = None
    attempts: int = 0
    queue_position: int = Field(0, alias="queuePosition")
    estimated_wait_seconds: int = Field(0, alias="estimatedWaitSeconds")
