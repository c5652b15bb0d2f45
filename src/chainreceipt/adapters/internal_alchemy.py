from __future__ import annotations
import logging
from typing import Any

import httpx

from ..domain.assembly import NATIVE_DECIMALS
from ..domain.chains import ChainConfig
from ..domain.models import ChainTransaction, InternalTransfer
from ..domain.money import format_amount, to_units
from ..domain.value_types import Address
from ..ports.rpc import InternalTransferSource
from .rpc_httpx import HttpxRPC

logger = logging.getLogger(__name__)


def _raw_value(t: dict[str, Any]) -> int | None:
    raw = (t.get("rawContract") or {}).get("value")
    if raw is None:
        return None
    return int(raw, 16) if isinstance(raw, str) else int(raw)


class AlchemyInternalTransfers(InternalTransferSource):
    """
    Internal (trace-level) native transfers from alchemy_getAssetTransfers,
    restricted to the transaction's block and filtered to its hash.
    Chains without an Alchemy network yield nothing.
    """

    def __init__(self, api_key: str, client: httpx.AsyncClient | None = None, timeout_s: float = 15) -> None:
        self.api_key, self.client, self.timeout_s = api_key, client, timeout_s

    def _rpc(self, url: str) -> HttpxRPC:
        return HttpxRPC(url, timeout_s=self.timeout_s, client=self.client)

    async def internal_transfers(self, chain: ChainConfig, chain_tx: ChainTransaction) -> list[InternalTransfer]:
        url = chain.alchemy_url(self.api_key)
        if url is None:
            return []
        block = hex(chain_tx.receipt.block_number)
        params = [{"fromBlock": block, "toBlock": block, "category": ["internal"],
                   "withMetadata": False, "excludeZeroValue": True}]
        rpc = self._rpc(url)
        try:
            res = await rpc.request("alchemy_getAssetTransfers", params)
        finally:
            if self.client is None:
                await rpc.aclose()

        tx_hash = chain_tx.tx.hash.lower()
        out: list[InternalTransfer] = []
        for t in (res or {}).get("transfers") or []:
            if str(t.get("hash", "")).lower() != tx_hash or not t.get("from") or not t.get("to"):
                continue
            raw = _raw_value(t)
            if not raw:
                continue
            out.append(InternalTransfer(Address(t["from"].lower()), Address(t["to"].lower()), str(raw),
                                        format_amount(to_units(raw, NATIVE_DECIMALS))))
        logger.debug("%d internal transfers for %s", len(out), tx_hash)
        return out
