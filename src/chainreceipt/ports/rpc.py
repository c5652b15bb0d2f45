# chainreceipt/ports/rpc.py
from __future__ import annotations

from typing import Protocol
from ..domain.chains import ChainConfig
from ..domain.models import BlockRecord, ChainTransaction, InternalTransfer, ReceiptRecord, TxRecord


class ChainRPC(Protocol):
    """Port defining the contract for an EVM JSON-RPC client bound to one chain."""

    async def get_transaction(self, tx_hash: str) -> TxRecord | None:
        """Return the transaction, or None when the node does not know it."""

    async def get_receipt(self, tx_hash: str) -> ReceiptRecord | None:
        """Return the receipt, or None while the transaction is not mined."""

    async def get_block(self, number: int) -> BlockRecord | None:
        """Return block header fields, or None when the block is unknown."""

    async def call(self, to: str, data: str) -> str:
        """eth_call against the latest block; returns the raw hex result."""

    async def aclose(self) -> None:
        """Release pooled connections."""


class NameResolver(Protocol):
    """Port for best-effort address -> display name lookups (advisory only)."""

    async def lookup(self, address: str) -> str | None:
        """Return a verified display name, or None. Must not raise."""


class InternalTransferSource(Protocol):
    """Port for native value moved by contract calls inside a transaction (traces)."""

    async def internal_transfers(self, chain: ChainConfig, chain_tx: ChainTransaction) -> list[InternalTransfer]:
        """Return the transaction's internal transfers; empty when the chain has no trace source."""
