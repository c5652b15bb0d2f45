"""
Builders and in-memory fakes shared by the test modules.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable

from chainreceipt.domain.chains import ChainConfig
from chainreceipt.domain.decoding import TRANSFER_T0, TRANSFER_SINGLE_T0, TRANSFER_BATCH_T0
from chainreceipt.domain.errors import JsonRpcError
from chainreceipt.domain.models import (
    BlockRecord, ChainTransaction, LogRecord, PriceQuote, ReceiptRecord, TxRecord,
)

USER = "0x" + "11" * 20
OTHER = "0x" + "22" * 20
PAIR = "0x" + "33" * 20
TOKEN = "0x" + "aa" * 20
TOKEN_B = "0x" + "bb" * 20
NFT = "0x" + "cc" * 20
ZERO = "0x" + "00" * 20
UNI_V2_ROUTER = "0x7a250d5630b4cf539739df2c5dacb4c659f2488d"
UNI_V2_SWAP_T0 = "0xd78ad95fa46c994b6551d0da85fc275fe613ce37657fb8d5e3d130840159d822"
APPROVAL_T0 = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"

TX_HASH = "0x" + "ab" * 32
BLOCK_HASH = "0x" + "cd" * 32
BLOCK = 18_000_000
TIMESTAMP = 1_700_000_000


def word(n: int) -> str:
    return f"{n:064x}"


def topic_addr(a: str) -> str:
    return "0x" + "0" * 24 + a[2:].lower()


def addr_word(a: str) -> str:
    return "0x" + "0" * 24 + a[2:].lower()


def abi_string(s: str) -> str:
    raw = s.encode().hex()
    padded = raw + "0" * (-len(raw) % 64)
    return "0x" + word(32) + word(len(s.encode())) + padded


def erc20_log(token: str, src: str, dst: str, amount: int, index: int = 0) -> LogRecord:
    return LogRecord(token, (TRANSFER_T0, topic_addr(src), topic_addr(dst)), "0x" + word(amount), index)


def erc721_log(token: str, src: str, dst: str, token_id: int, index: int = 0) -> LogRecord:
    return LogRecord(token, (TRANSFER_T0, topic_addr(src), topic_addr(dst), "0x" + word(token_id)), "0x", index)


def erc1155_single_log(token: str, src: str, dst: str, token_id: int, value: int, index: int = 0) -> LogRecord:
    topics = (TRANSFER_SINGLE_T0, topic_addr(OTHER), topic_addr(src), topic_addr(dst))
    return LogRecord(token, topics, "0x" + word(token_id) + word(value), index)


def erc1155_batch_log(token: str, src: str, dst: str, ids: list[int], values: list[int], index: int = 0) -> LogRecord:
    n = len(ids)
    ids_off = 64
    values_off = ids_off + 32 * (1 + n)
    data = word(ids_off) + word(values_off) + word(n) + "".join(map(word, ids)) + word(len(values)) + "".join(map(word, values))
    topics = (TRANSFER_BATCH_T0, topic_addr(OTHER), topic_addr(src), topic_addr(dst))
    return LogRecord(token, topics, "0x" + data, index)


def swap_log(pair: str, index: int = 0) -> LogRecord:
    return LogRecord(pair, (UNI_V2_SWAP_T0, topic_addr(UNI_V2_ROUTER), topic_addr(USER)), "0x" + word(0) * 4, index)


def make_tx(*, frm: str = USER, to: str | None = OTHER, value: int = 0, input_hex: str = "0x",
            gas_price: int | None = 10**9, tx_type: int | None = 2, tx_hash: str = TX_HASH) -> TxRecord:
    return TxRecord(tx_hash, frm, to, value, input_hex, 7, 100_000, gas_price, tx_type, BLOCK)


def make_receipt(*, logs: tuple[LogRecord, ...] = (), status: int = 1, gas_used: int = 21_000,
                 effective_gas_price: int | None = 10**9, contract: str | None = None,
                 tx_hash: str = TX_HASH, block_hash: str = BLOCK_HASH) -> ReceiptRecord:
    return ReceiptRecord(tx_hash, status, BLOCK, block_hash, gas_used, effective_gas_price, contract, tuple(logs))


def make_block(*, timestamp: int = TIMESTAMP, block_hash: str = BLOCK_HASH) -> BlockRecord:
    return BlockRecord(BLOCK, block_hash, timestamp)


def make_chain_tx(tx: TxRecord | None = None, receipt: ReceiptRecord | None = None, chain_id: int = 1) -> ChainTransaction:
    return ChainTransaction(chain_id, tx or make_tx(), receipt or make_receipt(), make_block())


def quote(asset: str, price: str | int, source: str = "Test", *, at: int = TIMESTAMP, trust: float = 1.0) -> PriceQuote:
    return PriceQuote(asset, Decimal(str(price)), source, at, TIMESTAMP, trust)


class FakeRPC:
    """In-memory ChainRPC. `calls` maps (contract, selector) to a hex result or an exception."""

    def __init__(self, txs: dict[str, TxRecord] | None = None, receipts: dict[str, ReceiptRecord] | None = None,
                 blocks: dict[int, BlockRecord] | None = None, calls: dict[tuple[str, str], Any] | None = None,
                 call_handler: Callable[[str, str], str] | None = None) -> None:
        self.txs = txs or {}
        self.receipts = receipts or {}
        self.blocks = blocks or {}
        self.calls = calls or {}
        self.call_handler = call_handler
        self.requests: list[tuple[str, Any]] = []
        self.closed = False

    async def get_transaction(self, tx_hash: str):
        self.requests.append(("tx", tx_hash))
        return self.txs.get(tx_hash)

    async def get_receipt(self, tx_hash: str):
        self.requests.append(("receipt", tx_hash))
        return self.receipts.get(tx_hash)

    async def get_block(self, number: int):
        self.requests.append(("block", number))
        return self.blocks.get(number)

    async def call(self, to: str, data: str) -> str:
        self.requests.append(("call", (to, data)))
        if self.call_handler is not None:
            return self.call_handler(to.lower(), data)
        res = self.calls.get((to.lower(), data[:10]))
        if isinstance(res, BaseException):
            raise res
        if res is None:
            raise JsonRpcError("eth_call", -32000, "execution reverted")
        return res

    async def aclose(self) -> None:
        self.closed = True


def fake_rpc_for(chain_tx: ChainTransaction, calls: dict[tuple[str, str], Any] | None = None) -> FakeRPC:
    return FakeRPC({chain_tx.tx.hash: chain_tx.tx}, {chain_tx.tx.hash: chain_tx.receipt},
                   {chain_tx.block.number: chain_tx.block}, calls)


class StaticProvider:
    """PriceProvider double: fixed prices per asset, or an exception to raise."""

    def __init__(self, name: str, prices: dict[str, Any] | None = None, error: BaseException | None = None,
                 trust: float = 1.0) -> None:
        self.name = name
        self.prices = prices or {}
        self.error = error
        self.trust = trust
        self.calls: list[tuple[int, str, int]] = []

    async def quote(self, chain: ChainConfig, asset: str, timestamp: int):
        self.calls.append((chain.chain_id, asset, timestamp))
        if self.error is not None:
            raise self.error
        price = self.prices.get(asset)
        if price is None:
            return None
        return PriceQuote(asset, Decimal(str(price)), self.name, timestamp, timestamp, self.trust)
