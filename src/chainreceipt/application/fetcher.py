from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Iterable

from ..domain.chains import ChainConfig
from ..domain.decoding import decode_string, decode_uint
from ..domain.errors import DataIntegrityError, ReceiptError, TransactionNotFound
from ..domain.models import ChainTransaction, InternalTransfer, TokenMeta
from ..ports.rpc import ChainRPC, InternalTransferSource, NameResolver

logger = logging.getLogger(__name__)

SYMBOL_SELECTOR = "0x95d89b41"
DECIMALS_SELECTOR = "0x313ce567"
FALLBACK_SYMBOL = "TOKEN"
MAX_DECIMALS = 77  # 10**78 > 2**256


class RPCRegistry:
    """One ChainRPC per chain id, built lazily from the factory and shared across jobs."""

    def __init__(self, factory: Callable[[ChainConfig], ChainRPC]) -> None:
        self.factory = factory
        self._rpcs: dict[int, ChainRPC] = {}

    def get(self, chain: ChainConfig) -> ChainRPC:
        rpc = self._rpcs.get(chain.chain_id)
        if rpc is None:
            rpc = self._rpcs[chain.chain_id] = self.factory(chain)
        return rpc

    async def aclose(self) -> None:
        await asyncio.gather(*(r.aclose() for r in self._rpcs.values()))
        self._rpcs.clear()


class ChainDataFetcher:
    def __init__(self, rpcs: RPCRegistry, names: NameResolver | None = None,
                 internal: InternalTransferSource | None = None) -> None:
        self.rpcs = rpcs
        self.names = names
        self.internal = internal

    async def fetch(self, chain: ChainConfig, tx_hash: str) -> ChainTransaction:
        rpc = self.rpcs.get(chain)
        tx, receipt = await asyncio.gather(rpc.get_transaction(tx_hash), rpc.get_receipt(tx_hash))
        if tx is None:
            raise TransactionNotFound(f"transaction {tx_hash} not found on {chain.name}")
        if receipt is None:
            raise TransactionNotFound(f"no receipt yet for {tx_hash} on {chain.name}")

        block = await rpc.get_block(receipt.block_number)
        if block is None:
            raise TransactionNotFound(f"block {receipt.block_number} not found on {chain.name}")
        if block.hash != receipt.block_hash:
            raise TransactionNotFound(f"block {receipt.block_number} was reorganised while fetching {tx_hash}")

        if receipt.effective_gas_price is None:
            if tx.gas_price is None:
                raise DataIntegrityError(f"no gas price reported for {tx_hash}")
            receipt = replace(receipt, effective_gas_price=tx.gas_price)
        return ChainTransaction(chain.chain_id, tx, receipt, block)

    async def resolve_names(self, addresses: Iterable[str | None]) -> dict[str, str | None]:
        uniq = list(dict.fromkeys(a for a in addresses if a))
        if self.names is None or not uniq:
            return {a: None for a in uniq}
        found = await asyncio.gather(*(self._name(a) for a in uniq))
        return dict(zip(uniq, found))

    async def _name(self, address: str) -> str | None:
        try:
            return await self.names.lookup(address)
        except Exception as e:  # advisory only
            logger.debug("name lookup for %s failed: %s", address, e)
            return None

    async def internal_transfers(self, chain: ChainConfig, chain_tx: ChainTransaction) -> list[InternalTransfer]:
        """Informational only; any failure yields an empty list."""
        if self.internal is None:
            return []
        try:
            return list(await self.internal.internal_transfers(chain, chain_tx))
        except Exception as e:  # advisory only
            logger.debug("internal transfers for %s unavailable: %s", chain_tx.tx.hash, e)
            return []

    # ── token metadata ──

    async def token_meta(self, chain: ChainConfig, fungible: Iterable[str],
                         nfts: Iterable[str] = ()) -> dict[str, TokenMeta]:
        """
        symbol() is display-only and degrades to "TOKEN". decimals() scales every
        figure of a line item, so its failure propagates.
        """
        rpc = self.rpcs.get(chain)
        fungible = list(dict.fromkeys(fungible))
        nfts = [c for c in dict.fromkeys(nfts) if c not in fungible]

        async def one(contract: str, need_decimals: bool) -> TokenMeta:
            if need_decimals:
                symbol, decimals = await asyncio.gather(_symbol(rpc, contract), _decimals(rpc, contract))
            else:
                symbol, decimals = await _symbol(rpc, contract), 0
            return TokenMeta(symbol, decimals)

        metas = await asyncio.gather(*(one(c, True) for c in fungible), *(one(c, False) for c in nfts))
        return dict(zip(fungible + nfts, metas))


async def _symbol(rpc: ChainRPC, contract: str) -> str:
    try:
        symbol = decode_string(await rpc.call(contract, SYMBOL_SELECTOR)).strip()
    except (ReceiptError, ValueError) as e:
        logger.debug("symbol() failed for %s: %s", contract, e)
        return FALLBACK_SYMBOL
    return symbol or FALLBACK_SYMBOL


async def _decimals(rpc: ChainRPC, contract: str) -> int:
    res = await rpc.call(contract, DECIMALS_SELECTOR)
    try:
        decimals = decode_uint(res)
    except ValueError as e:
        raise DataIntegrityError(f"decimals() of {contract} returned unusable data {res!r}") from e
    if decimals > MAX_DECIMALS:
        raise DataIntegrityError(f"decimals() of {contract} returned {decimals}")
    return decimals
