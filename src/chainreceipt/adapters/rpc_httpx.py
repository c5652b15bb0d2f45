from __future__ import annotations
import asyncio, logging, httpx
from typing import Any, Sequence
from ..domain.chains import ChainConfig
from ..domain.errors import JsonRpcError, TransientError
from ..domain.models import BlockRecord, LogRecord, ReceiptRecord, TxRecord
from ..domain.value_types import Address, TxHash
from ..ports.rpc import ChainRPC

logger = logging.getLogger(__name__)

# provider-specific JSON-RPC codes that mean "slow down", not "bad request"
RATE_LIMIT_CODES = frozenset({-32005, -32090, 429})


def _int(x: Any, default: int | None = None) -> int | None:
    if x is None: return default
    return int(x, 16) if isinstance(x, str) else int(x)

def _addr(x: str | None) -> Address | None:
    return Address(x.lower()) if x else None


def parse_tx(d: dict[str, Any]) -> TxRecord:
    return TxRecord(
        hash=TxHash(d["hash"].lower()),
        from_address=Address(d["from"].lower()),
        to_address=_addr(d.get("to")),
        value=_int(d.get("value"), 0),
        input_hex=d.get("input") or d.get("data") or "0x",
        nonce=_int(d.get("nonce"), 0),
        gas_limit=_int(d.get("gas"), 0),
        gas_price=_int(d.get("gasPrice")),
        tx_type=_int(d.get("type")),
        block_number=_int(d.get("blockNumber")),
    )

def parse_log(d: dict[str, Any]) -> LogRecord:
    return LogRecord(
        address=Address(d["address"].lower()),
        topics=tuple(t.lower() for t in d.get("topics", [])),
        data_hex=d.get("data") or "0x",
        log_index=_int(d.get("logIndex"), 0),
    )

def parse_receipt(d: dict[str, Any]) -> ReceiptRecord:
    return ReceiptRecord(
        tx_hash=TxHash(d["transactionHash"].lower()),
        status=_int(d.get("status")),
        block_number=_int(d["blockNumber"]),
        block_hash=d["blockHash"].lower(),
        gas_used=_int(d.get("gasUsed"), 0),
        effective_gas_price=_int(d.get("effectiveGasPrice")),
        contract_address=_addr(d.get("contractAddress")),
        logs=tuple(parse_log(l) for l in d.get("logs", [])),
    )

def parse_block(d: dict[str, Any]) -> BlockRecord:
    return BlockRecord(number=_int(d["number"]), hash=d["hash"].lower(), timestamp=_int(d["timestamp"]))


class HttpxRPC(ChainRPC):
    def __init__(self, rpc_url: str, timeout_s: float = 15, max_conn: int = 16,
                 rate_limit_retries: int = 1, client: httpx.AsyncClient | None = None) -> None:
        self.rpc_url = rpc_url
        self.rate_limit_retries = rate_limit_retries
        self.client = client or httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max_conn//2),
        )

    def __repr__(self) -> str:
        # keyed endpoints carry the key in the path
        host = httpx.URL(self.rpc_url).host
        return f"HttpxRPC({host})"

    async def request(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc":"2.0","id":1,"method":method,"params":params}
        for attempt in range(self.rate_limit_retries + 1):
            try:
                r = await self.client.post(self.rpc_url, json=payload)
            except httpx.TimeoutException as e:
                raise TransientError(f"{method} timed out at {self!r}") from e
            except httpx.TransportError as e:
                raise TransientError(f"{method} transport error at {self!r}: {e}") from e

            if r.status_code == 429 and attempt < self.rate_limit_retries:
                ra = r.headers.get("Retry-After")
                delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                await asyncio.sleep(delay); continue
            if r.status_code == 429 or r.status_code >= 500:
                raise TransientError(f"{method} got HTTP {r.status_code} from {self!r}")
            if r.status_code >= 400:
                # auth/quota problems are endpoint problems; another node may serve us
                raise TransientError(f"{method} rejected with HTTP {r.status_code} by {self!r}")

            try:
                data = r.json()
            except ValueError as e:
                raise TransientError(f"{method} returned non-JSON body from {self!r}") from e
            if "error" in data and data["error"] is not None:
                err = data["error"]
                code = err.get("code") if isinstance(err, dict) else None
                msg = err.get("message") if isinstance(err, dict) else str(err)
                if code in RATE_LIMIT_CODES:
                    raise TransientError(f"{method} rate limited by {self!r}: {msg}")
                raise JsonRpcError(method, code, str(msg))
            return data.get("result")
        raise TransientError(f"Retries exhausted for {method}")

    async def get_transaction(self, tx_hash: str) -> TxRecord | None:
        res = await self.request("eth_getTransactionByHash", [tx_hash])
        return parse_tx(res) if res else None

    async def get_receipt(self, tx_hash: str) -> ReceiptRecord | None:
        res = await self.request("eth_getTransactionReceipt", [tx_hash])
        return parse_receipt(res) if res else None

    async def get_block(self, number: int) -> BlockRecord | None:
        res = await self.request("eth_getBlockByNumber", [hex(int(number)), False])
        return parse_block(res) if res else None

    async def call(self, to: str, data: str) -> str:
        res = await self.request("eth_call", [{"to": to, "data": data}, "latest"])
        return res or "0x"

    async def aclose(self) -> None:
        await self.client.aclose()


class FallbackRPC(ChainRPC):
    """
    Tries endpoints in order. Only endpoint trouble (TransientError) moves on to
    the next node; a JSON-RPC error from a reachable node is an answer and propagates.
    """

    def __init__(self, nodes: Sequence[ChainRPC]) -> None:
        if not nodes:
            raise ValueError("FallbackRPC needs at least one endpoint")
        self.nodes = list(nodes)

    async def _first(self, op: str, *args: Any) -> Any:
        last: TransientError | None = None
        for node in self.nodes:
            try:
                return await getattr(node, op)(*args)
            except TransientError as e:
                logger.warning("rpc %s failed on %r, trying next endpoint: %s", op, node, e)
                last = e
        assert last is not None
        raise last

    async def get_transaction(self, tx_hash: str) -> TxRecord | None:
        return await self._first("get_transaction", tx_hash)

    async def get_receipt(self, tx_hash: str) -> ReceiptRecord | None:
        return await self._first("get_receipt", tx_hash)

    async def get_block(self, number: int) -> BlockRecord | None:
        return await self._first("get_block", number)

    async def call(self, to: str, data: str) -> str:
        return await self._first("call", to, data)

    async def aclose(self) -> None:
        await asyncio.gather(*(n.aclose() for n in self.nodes))


def rpc_for_chain(chain: ChainConfig, alchemy_key: str | None = None, timeout_s: float = 15) -> FallbackRPC:
    return FallbackRPC([HttpxRPC(url, timeout_s=timeout_s) for url in chain.endpoints(alchemy_key)])
