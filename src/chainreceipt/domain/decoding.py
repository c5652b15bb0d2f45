from __future__ import annotations

import logging
from typing import Collection, Iterable, Sequence

from eth_utils import keccak

from .errors import DataIntegrityError
from .models import LogRecord, TransferEvent, TxRecord
from .value_types import Address

logger = logging.getLogger(__name__)


def event_topic(signature: str) -> str:
    return "0x" + keccak(text=signature).hex()


# Topic0 constants (lowercase, with "0x")
TRANSFER_T0        = event_topic("Transfer(address,address,uint256)")
TRANSFER_SINGLE_T0 = event_topic("TransferSingle(address,address,address,uint256,uint256)")
TRANSFER_BATCH_T0  = event_topic("TransferBatch(address,address,address,uint256[],uint256[])")
APPROVAL_T0        = event_topic("Approval(address,address,uint256)")

SWAP_T0S: dict[str, str] = {
    "0xd78ad95fa46c994b6551d0da85fc275fe613ce37657fb8d5e3d130840159d822": "Uniswap V2",
    "0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67": "Uniswap V3",
    "0x2170c741c41531aec20e7c107c24eecfdd15e69c9bb0a8dd37b1840b9e0b207b": "Balancer",
    "0x8b3e96f2b889fa771c53c981b40daf005f63f637f1869f707052d15a3dd97140": "Curve",
}
LIQUIDITY_ADD_T0S = frozenset({
    "0x4c209b5fc8ad50758f13e2e1088ba56a560dff690a1c6fef26394f4c03821c4f",  # Uniswap V2 Mint
    "0x7a53080ba414158be7ec69b987b5fb7d07dee101fe85488f0853ae16239d0bde",  # Uniswap V3 Mint
    "0x26f55a85081d24974e85c6c00045d0f0453991e95873f52bff0d21af4079a768",  # Curve AddLiquidity
})
LIQUIDITY_REMOVE_T0S = frozenset({
    "0xdccd412f0b1252819cb1fd330b93224ca42612892bb3f4f789976e6d81936496",  # Uniswap V2 Burn
    "0x0c396cd989a39f4459b5fa1aed6a9a8dcdbc45908acfd67e028cd568da98982c",  # Uniswap V3 Burn
})

# Router method selectors
SWAP_SELECTORS: dict[str, str] = {
    "0x7ff36ab5": "swapExactETHForTokens",
    "0x38ed1739": "swapExactTokensForTokens",
    "0x18cbafe5": "swapExactTokensForETH",
    "0xfb3bdb41": "swapETHForExactTokens",
    "0x8803dbee": "swapTokensForExactTokens",
    "0x4a25d94a": "swapTokensForExactETH",
    "0xb6f9de95": "swapExactETHForTokensSupportingFeeOnTransferTokens",
    "0x5c11d795": "swapExactTokensForTokensSupportingFeeOnTransferTokens",
    "0x791ac947": "swapExactTokensForETHSupportingFeeOnTransferTokens",
    "0x414bf389": "exactInputSingle",
    "0xc04b8d59": "exactInput",
    "0xdb3e2198": "exactOutputSingle",
    "0xf28c0498": "exactOutput",
    "0x3593564c": "execute",  # Universal Router
}
ADD_LIQUIDITY_SELECTORS = frozenset({"0xe8e33700", "0xf305d719"})
REMOVE_LIQUIDITY_SELECTORS = frozenset({"0xbaa2abde", "0x02751cec"})
APPROVE_SELECTOR = "0x095ea7b3"

ZERO_ADDRESS = Address("0x" + "0" * 40)

# --------- 32B word slicing (no eth_abi) --------------------------------------

def _hex_to_bytes(h: str) -> bytes:
    h = h[2:] if h[:2].lower() == "0x" else h
    if len(h) % 2: h = "0" + h
    return bytes.fromhex(h) if h else b""

def _word(b: bytes, i: int) -> bytes:
    return b[i*32:(i+1)*32]

def _u256(w: bytes) -> int:
    return int.from_bytes(w, "big")

def _addr_from_topic(t: str) -> Address:
    return Address("0x" + t[-40:].lower())

def _uint_array(data: bytes, offset: int) -> list[int]:
    if offset % 32 or offset + 32 > len(data):
        raise ValueError(f"bad array offset {offset}")
    head = offset // 32
    n = _u256(_word(data, head))
    if len(data) < (head + 1 + n) * 32:
        raise ValueError(f"array of {n} items overruns data")
    return [_u256(_word(data, head + 1 + k)) for k in range(n)]

# ---------------------------- public API --------------------------------------

def _decode_one(log: LogRecord) -> list[TransferEvent]:
    t = log.topics
    data = _hex_to_bytes(log.data_hex)
    contract = Address(log.address.lower())

    if t[0] == TRANSFER_T0:
        # NOTE: approximation. ERC-20 and ERC-721 share this signature and are told
        # apart only by indexed-topic count (3 vs 4); a nonstandard contract that
        # indexes differently is misread.
        if len(t) == 3:
            if len(data) < 32:
                raise ValueError("erc20 Transfer without value word")
            return [TransferEvent("erc20", _addr_from_topic(t[1]), _addr_from_topic(t[2]),
                                  contract, _u256(_word(data, 0)), None, None, log.log_index)]
        if len(t) == 4:
            return [TransferEvent("erc721", _addr_from_topic(t[1]), _addr_from_topic(t[2]),
                                  contract, 1, int(t[3], 16), None, log.log_index)]
        raise ValueError(f"Transfer with {len(t)} topics")

    if t[0] == TRANSFER_SINGLE_T0:
        if len(t) != 4 or len(data) < 64:
            raise ValueError("malformed TransferSingle")
        return [TransferEvent("erc1155", _addr_from_topic(t[2]), _addr_from_topic(t[3]),
                              contract, _u256(_word(data, 1)), _u256(_word(data, 0)),
                              None, log.log_index)]

    if t[0] == TRANSFER_BATCH_T0:
        if len(t) != 4 or len(data) < 64:
            raise ValueError("malformed TransferBatch")
        ids = _uint_array(data, _u256(_word(data, 0)))
        values = _uint_array(data, _u256(_word(data, 1)))
        if len(ids) != len(values):
            raise ValueError(f"TransferBatch ids/values length mismatch ({len(ids)} vs {len(values)})")
        src, dst = _addr_from_topic(t[2]), _addr_from_topic(t[3])
        return [TransferEvent("erc1155", src, dst, contract, v, i, None, log.log_index)
                for i, v in zip(ids, values)]

    return []


def _parties(log: LogRecord) -> tuple[str, ...]:
    t = log.topics
    if t[0] == TRANSFER_T0:
        return tuple(_addr_from_topic(x) for x in t[1:3])
    return tuple(_addr_from_topic(x) for x in t[2:4])


def decode_transfers(logs: Iterable[LogRecord], involved: Collection[str] = ()) -> list[TransferEvent]:
    """
    Decode fungible, unique and multi-token transfer events from receipt logs.

    A malformed transfer log touching one of `involved` raises DataIntegrityError;
    malformed logs between unrelated parties are skipped.
    """
    watched = {TRANSFER_T0, TRANSFER_SINGLE_T0, TRANSFER_BATCH_T0}
    involved = {a.lower() for a in involved}
    out: list[TransferEvent] = []
    for log in logs:
        if not log.topics or log.topics[0] not in watched:
            continue
        try:
            out.extend(_decode_one(log))
        except ValueError as e:
            parties = _parties(log) if len(log.topics) >= 3 else ()
            if involved.intersection(parties):
                raise DataIntegrityError(
                    f"undecodable transfer log #{log.log_index} from {log.address}: {e}") from e
            logger.debug("skipping malformed log #%s from %s: %s", log.log_index, log.address, e)
    return out


def native_transfer(tx: TxRecord, created: str | None = None) -> TransferEvent | None:
    """Value attached to the transaction itself, as a transfer distinct from any log."""
    if tx.value <= 0:
        return None
    to = tx.to_address or created
    if not to:
        return None
    return TransferEvent("native", Address(tx.from_address.lower()), Address(to.lower()),
                         None, tx.value, None, None, -1)


def scope_to_user(events: Sequence[TransferEvent], user: str) -> list[TransferEvent]:
    """Keep events the user sent or received, stamped with their direction."""
    u = user.lower()
    out: list[TransferEvent] = []
    for ev in events:
        if ev.from_address != u and ev.to_address != u:
            continue
        direction = "in" if ev.to_address == u else "out"
        out.append(TransferEvent(ev.standard, ev.from_address, ev.to_address, ev.contract,
                                 ev.amount, ev.token_id, direction, ev.log_index))
    return out


def swap_protocols(logs: Iterable[LogRecord]) -> list[str]:
    return [SWAP_T0S[l.topics[0]] for l in logs if l.topics and l.topics[0] in SWAP_T0S]


# ------------------------- eth_call return values ------------------------------

def decode_uint(result_hex: str) -> int:
    b = _hex_to_bytes(result_hex)
    if len(b) < 32:
        raise ValueError(f"expected a 32-byte word, got {len(b)} bytes")
    return _u256(_word(b, 0))


def decode_address(result_hex: str) -> Address:
    b = _hex_to_bytes(result_hex)
    if len(b) < 32:
        raise ValueError(f"expected a 32-byte word, got {len(b)} bytes")
    return Address("0x" + _word(b, 0)[12:].hex())


def decode_string(result_hex: str) -> str:
    """ABI `string` return value; falls back to a NUL-padded bytes32 (old tokens)."""
    b = _hex_to_bytes(result_hex)
    if len(b) == 32:
        return b.rstrip(b"\x00").decode("utf-8", errors="replace")
    if len(b) < 64:
        raise ValueError(f"string return value too short ({len(b)} bytes)")
    offset = _u256(_word(b, 0))
    if offset % 32 or offset + 32 > len(b):
        raise ValueError(f"bad string offset {offset}")
    n = _u256(_word(b, offset // 32))
    start = offset + 32
    if start + n > len(b):
        raise ValueError("string overruns return data")
    return b[start:start + n].decode("utf-8", errors="replace")
