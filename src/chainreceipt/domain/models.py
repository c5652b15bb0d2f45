from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from .value_types import Address, Direction, JobState, Standard, TxHash

# ──────────────────────────────
# Chain data (ephemeral, per job)
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class LogRecord:
    address: Address
    topics: tuple[str, ...]            # lowercased with 0x
    data_hex: str
    log_index: int

@dataclass(slots=True, frozen=True)
class TxRecord:
    hash: TxHash
    from_address: Address
    to_address: Address | None         # None for contract creation
    value: int                         # wei
    input_hex: str
    nonce: int
    gas_limit: int
    gas_price: int | None = None
    tx_type: int | None = None
    block_number: int | None = None    # None while pending

    @property
    def selector(self) -> str:
        return self.input_hex[:10].lower() if len(self.input_hex) >= 10 else ""

    @property
    def has_calldata(self) -> bool:
        return self.input_hex not in ("", "0x")

@dataclass(slots=True, frozen=True)
class ReceiptRecord:
    tx_hash: TxHash
    status: int | None
    block_number: int
    block_hash: str
    gas_used: int
    effective_gas_price: int | None   # None on nodes that omit it; fall back to the tx gasPrice
    contract_address: Address | None
    logs: tuple[LogRecord, ...]

@dataclass(slots=True, frozen=True)
class BlockRecord:
    number: int
    hash: str
    timestamp: int

@dataclass(slots=True, frozen=True)
class ChainTransaction:
    chain_id: int
    tx: TxRecord
    receipt: ReceiptRecord
    block: BlockRecord

@dataclass(slots=True, frozen=True)
class TokenMeta:
    symbol: str
    decimals: int

# ──────────────────────────────
# Derived facts
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class TransferEvent:
    standard: Standard
    from_address: Address
    to_address: Address
    contract: Address | None           # None for native value
    amount: int                        # raw units; 1 for erc721
    token_id: int | None = None
    direction: Direction | None = None # set once scoped to a user
    log_index: int = -1                # -1 for the synthesized native transfer

@dataclass(slots=True, frozen=True)
class PriceQuote:
    asset: str
    usd_price: Decimal
    source: str
    timestamp: int                     # timestamp of the quote itself
    requested_at: int                  # timestamp that was asked for
    trust: float = 1.0                 # source's base confidence

    @property
    def drift_s(self) -> int:
        return abs(self.timestamp - self.requested_at)

    @property
    def confidence(self) -> float:
        # 0.1 per hour of drift, capped at 0.05
        return max(0.0, self.trust - min(self.drift_s / 3600, 0.5) * 0.1)

@dataclass(slots=True, frozen=True)
class InternalTransfer:
    """Native value moved by a contract during execution (a trace, not a log)."""
    from_address: Address
    to_address: Address
    raw_amount: str
    amount: str

@dataclass(slots=True, frozen=True)
class Classification:
    type: str
    confidence: float
    protocol: str | None = None
    reasons: tuple[str, ...] = ()

@dataclass(slots=True, frozen=True)
class AdRef:
    ad_id: str
    link: str
    content: str

# ──────────────────────────────
# Receipt document
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class Participant:
    address: Address
    name: str | None = None

@dataclass(slots=True, frozen=True)
class LineItem:
    standard: Standard
    direction: Direction
    contract: str                      # "native" for the chain's coin
    symbol: str
    from_address: Address
    to_address: Address
    raw_amount: str                    # big ints as strings
    decimals: int
    amount: str
    token_id: str | None
    usd_price: Decimal | None
    usd_value_raw: Decimal | None      # None when not priced (nfts)
    usd_value: str
    price_source: str | None = None

@dataclass(slots=True, frozen=True)
class Fee:
    gas_used: int
    gas_price_wei: int
    gas_price_gwei: str
    fee_wei: int
    fee_native: str
    fee_usd_raw: Decimal
    fee_usd: str

@dataclass(slots=True, frozen=True)
class Totals:
    total_in_usd_raw: Decimal
    total_out_usd_raw: Decimal
    fee_usd_raw: Decimal
    net_change_usd_raw: Decimal
    total_in_usd: str
    total_out_usd: str
    net_change_usd: str
    tokens_in_count: int
    tokens_out_count: int

@dataclass(slots=True, frozen=True)
class PriceSource:
    asset: str
    source: str
    drift_s: int
    confidence: float

@dataclass(slots=True, frozen=True)
class Receipt:
    schema_version: str
    bill_id: str
    generated_at: str
    chain_id: int
    chain_name: str
    native_symbol: str
    tx_hash: TxHash
    block_number: int
    block_hash: str
    timestamp: int
    status: str
    envelope: str
    sender: Participant
    recipient: Participant | None
    contract_created: Address | None
    user_address: Address
    classification: Classification
    type_label: str
    confidence_label: str
    items: tuple[LineItem, ...]
    fee: Fee
    totals: Totals
    price_sources: tuple[PriceSource, ...]
    explorer_url: str
    ad: AdRef | None = None
    internal_transfers: tuple[InternalTransfer, ...] = ()
    receipt_hash: str = ""              # keccak of the core fields, see assembly.receipt_hash

# ──────────────────────────────
# Jobs
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class JobInput:
    tx_hash: str
    chain_id: int
    connected_wallet: str | None = None
    priority: int = 0

@dataclass(slots=True, frozen=True)
class Job:
    id: str
    input: JobInput
    state: JobState = "waiting"
    attempts: int = 0
    result: dict[str, Any] | None = None
    error: str | None = None
    document_ref: str | None = None
    created_at: float = 0.0
    updated_at: float = 0.0
    started_at: float | None = None
    finished_at: float | None = None
    heartbeat_at: float | None = None
    next_attempt_at: float = 0.0
    duration_ms: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in ("completed", "failed")

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Job":
        d = dict(d)
        d["input"] = JobInput(**d["input"])
        return cls(**d)

@dataclass(slots=True, frozen=True)
class JobHandle:
    id: str

@dataclass(slots=True, frozen=True)
class JobStatus:
    id: str
    state: JobState
    attempts: int
    result: dict[str, Any] | None = None
    document_ref: str | None = None
    error: str | None = None
    queue_position: int = 0
    estimated_wait_s: int = 0
