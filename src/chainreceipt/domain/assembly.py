"""
Receipt assembly: merges chain facts, scoped transfers, the classification and
historical quotes into the canonical, versioned Receipt.

All USD arithmetic is Decimal; strings are produced only at the edge, so the
raw totals satisfy net == in - (out + fee) exactly.
"""
from __future__ import annotations

import json
from dataclasses import asdict, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Sequence

from eth_utils import keccak

from .chains import ChainConfig
from .classification import type_label
from .errors import DataIntegrityError
from .models import (
    AdRef, ChainTransaction, Classification, Fee, InternalTransfer, LineItem, Participant, PriceQuote,
    PriceSource, Receipt, TokenMeta, Totals, TransferEvent,
)
from .money import (
    EXACT, confidence_label, format_amount, format_gwei, format_signed_usd, format_usd,
    to_units, usd_value,
)
from .value_types import Address

SCHEMA_VERSION = "3.0.0"
NATIVE_DECIMALS = 18
NATIVE_REF = "native"
UNPRICED_LABEL = "n/a"

ENVELOPES: dict[int, str] = {0: "Legacy", 1: "EIP-2930", 2: "EIP-1559", 3: "EIP-4844"}


def bill_id(chain_id: int, block_number: int, tx_hash: str) -> str:
    return f"BILL-{chain_id}-{block_number}-{tx_hash[:6].lower()}"


def envelope_label(tx_type: int | None) -> str:
    return ENVELOPES.get(tx_type or 0, "Legacy")


def asset_ref(ev: TransferEvent) -> str:
    """Key used for price and metadata lookups: a token address, or 'native'."""
    return NATIVE_REF if ev.standard == "native" else str(ev.contract)


def gas_price_of(chain_tx: ChainTransaction) -> int:
    rcpt, tx = chain_tx.receipt, chain_tx.tx
    return rcpt.effective_gas_price if rcpt.effective_gas_price is not None else (tx.gas_price or 0)


def fee_wei(chain_tx: ChainTransaction) -> int:
    return chain_tx.receipt.gas_used * gas_price_of(chain_tx)


def priced_assets(events: Sequence[TransferEvent], fee: int) -> list[str]:
    """Distinct assets that need a USD quote. The native coin needs one for a non-zero fee."""
    refs = [NATIVE_REF] if fee > 0 else []
    for ev in events:
        if ev.standard in ("native", "erc20"):
            ref = asset_ref(ev)
            if ref not in refs:
                refs.append(ref)
    return refs


class ReceiptAssembler:
    def __init__(self, schema_version: str = SCHEMA_VERSION) -> None:
        self.schema_version = schema_version

    def assemble(
        self,
        chain: ChainConfig,
        chain_tx: ChainTransaction,
        events: Sequence[TransferEvent],
        classification: Classification,
        user: str,
        *,
        tokens: Mapping[str, TokenMeta],
        quotes: Mapping[str, PriceQuote],
        names: Mapping[str, str | None] | None = None,
        ad: AdRef | None = None,
        internal: Sequence[InternalTransfer] = (),
        generated_at: datetime | None = None,
    ) -> Receipt:
        names = names or {}
        tx, rcpt, block = chain_tx.tx, chain_tx.receipt, chain_tx.block

        items = tuple(self._line_item(chain, ev, tokens, quotes) for ev in events)
        fee = self._fee(rcpt.gas_used, gas_price_of(chain_tx), chain.native_symbol, quotes)
        totals = self._totals(items, fee.fee_usd_raw)

        sources = tuple(PriceSource(asset, q.source, q.drift_s, round(q.confidence, 4))
                        for asset, q in sorted(quotes.items()))
        recipient = Participant(tx.to_address, names.get(tx.to_address)) if tx.to_address else None
        ts = generated_at or datetime.now(timezone.utc)

        receipt = Receipt(
            schema_version=self.schema_version,
            bill_id=bill_id(chain.chain_id, rcpt.block_number, tx.hash),
            generated_at=ts.isoformat(),
            chain_id=chain.chain_id,
            chain_name=chain.name,
            native_symbol=chain.native_symbol,
            tx_hash=tx.hash,
            block_number=rcpt.block_number,
            block_hash=rcpt.block_hash,
            timestamp=block.timestamp,
            status="failed" if rcpt.status == 0 else "confirmed",
            envelope=envelope_label(tx.tx_type),
            sender=Participant(tx.from_address, names.get(tx.from_address)),
            recipient=recipient,
            contract_created=rcpt.contract_address,
            user_address=Address(user.lower()),
            classification=classification,
            type_label=type_label(classification.type),
            confidence_label=confidence_label(classification.confidence),
            items=items,
            fee=fee,
            totals=totals,
            price_sources=sources,
            explorer_url=chain.explorer_tx_url(tx.hash),
            ad=ad,
            internal_transfers=tuple(internal),
        )
        return replace(receipt, receipt_hash=receipt_hash(receipt_to_dict(receipt)))

    # ──────────────────────────────
    # pieces
    # ──────────────────────────────

    def _line_item(self, chain: ChainConfig, ev: TransferEvent,
                   tokens: Mapping[str, TokenMeta], quotes: Mapping[str, PriceQuote]) -> LineItem:
        if ev.direction is None:
            raise ValueError("line items need a direction; scope events to the user first")
        token_id = str(ev.token_id) if ev.token_id is not None else None

        if ev.standard in ("erc721", "erc1155"):
            meta = tokens.get(str(ev.contract))
            return LineItem(ev.standard, ev.direction, str(ev.contract), meta.symbol if meta else "NFT",
                            ev.from_address, ev.to_address, str(ev.amount), 0, str(ev.amount),
                            token_id, None, None, UNPRICED_LABEL)

        ref = asset_ref(ev)
        if ev.standard == "native":
            symbol, decimals = chain.native_symbol, NATIVE_DECIMALS
        else:
            meta = tokens.get(ref)
            if meta is None:
                raise DataIntegrityError(f"no token metadata for {ref}")
            symbol, decimals = meta.symbol, meta.decimals

        quote = quotes.get(ref)
        if quote is None:
            raise DataIntegrityError(f"no price quote for {ref}")
        value = usd_value(ev.amount, decimals, quote.usd_price)
        return LineItem(ev.standard, ev.direction, ref, symbol, ev.from_address, ev.to_address,
                        str(ev.amount), decimals, format_amount(to_units(ev.amount, decimals)),
                        token_id, quote.usd_price, value, format_usd(value), quote.source)

    @staticmethod
    def _fee(gas_used: int, gas_price: int, native_symbol: str, quotes: Mapping[str, PriceQuote]) -> Fee:
        fee_wei = gas_used * gas_price
        native = to_units(fee_wei, NATIVE_DECIMALS)
        if fee_wei == 0:
            fee_usd = Decimal(0)
        else:
            quote = quotes.get(NATIVE_REF)
            if quote is None:
                raise DataIntegrityError(f"no {native_symbol} price for the network fee")
            fee_usd = EXACT.multiply(native, quote.usd_price)
        return Fee(gas_used, gas_price, format_gwei(gas_price), fee_wei,
                   format_amount(native, 8), fee_usd, format_usd(fee_usd))

    @staticmethod
    def _totals(items: Sequence[LineItem], fee_usd: Decimal) -> Totals:
        total_in, total_out = Decimal(0), Decimal(0)
        n_in = n_out = 0
        for it in items:
            if it.direction == "in":
                n_in += 1
                if it.usd_value_raw is not None:
                    total_in = EXACT.add(total_in, it.usd_value_raw)
            else:
                n_out += 1
                if it.usd_value_raw is not None:
                    total_out = EXACT.add(total_out, it.usd_value_raw)
        net = EXACT.subtract(total_in, EXACT.add(total_out, fee_usd))
        return Totals(total_in, total_out, fee_usd, net,
                      format_usd(total_in), format_usd(total_out), format_signed_usd(net),
                      n_in, n_out)


def _jsonable(x: Any) -> Any:
    if isinstance(x, Decimal):
        return format(x, "f")
    if isinstance(x, dict):
        return {k: _jsonable(v) for k, v in x.items()}
    if isinstance(x, (list, tuple)):
        return [_jsonable(v) for v in x]
    return x


def receipt_to_dict(receipt: Receipt) -> dict[str, Any]:
    """JSON-safe view of a receipt; Decimals become plain strings so nothing is lost."""
    return _jsonable(asdict(receipt))


# ──────────────────────────────
# verification
# ──────────────────────────────

# presentation fields; everything else is covered by the hash
UNHASHED_FIELDS = frozenset({"receipt_hash", "generated_at", "ad"})


def canonical_json(doc: Mapping[str, Any]) -> str:
    core = {k: v for k, v in doc.items() if k not in UNHASHED_FIELDS}
    return json.dumps(core, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def receipt_hash(doc: Mapping[str, Any]) -> str:
    """keccak-256 of the canonical JSON of a receipt document, 0x-prefixed."""
    return "0x" + keccak(text=canonical_json(doc)).hex()


def verify_receipt(doc: Mapping[str, Any]) -> bool:
    """True when the document's `receipt_hash` matches its content."""
    expected = doc.get("receipt_hash")
    return bool(expected) and receipt_hash(doc) == str(expected).lower()
