"""
Rule-based transaction classifier.

Rules are evaluated in descending priority; the first rule that returns a
Classification wins. A rule reports its own confidence, which is passed on
untouched: nothing downstream rounds it up.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

from .decoding import (
    ADD_LIQUIDITY_SELECTORS, APPROVAL_T0, APPROVE_SELECTOR, LIQUIDITY_ADD_T0S,
    LIQUIDITY_REMOVE_T0S, REMOVE_LIQUIDITY_SELECTORS, SWAP_SELECTORS, SWAP_T0S, ZERO_ADDRESS,
    swap_protocols,
)
from .models import ChainTransaction, Classification, TransferEvent

logger = logging.getLogger(__name__)

KNOWN_ROUTERS: dict[str, str] = {
    "0x7a250d5630b4cf539739df2c5dacb4c659f2488d": "Uniswap V2",
    "0xe592427a0aece92de3edee1f18e0157c05861564": "Uniswap V3",
    "0x68b3465833fb72a70ecdf485e0e4c7bd8665fc45": "Uniswap V3",
    "0x3fc91a3afd70395cd496c647d5a6cc9d4b2b7fad": "Uniswap Universal Router",
    "0xd9e1ce17f2641f24ae83637ab66a2cca9c378b9f": "SushiSwap",
    "0x10ed43c718714eb63d5aa57b78b54704e256024e": "PancakeSwap",
    "0x11111112542d85b3ef69ae05771c2dccff4faa26": "1inch V3",
    "0x1111111254fb6c44bac0bed2854e76f90643097d": "1inch V4",
    "0x1111111254eea2514d8f0f03ce855018a9947703": "1inch V5",
    "0xdef1c0ded9bec7f1a1670819833240f027b25eff": "0x Proxy",
}

TYPE_LABELS: dict[str, str] = {
    "native_transfer": "Native Transfer",
    "token_transfer": "Token Transfer",
    "token_approval": "Token Approval",
    "swap": "Swap",
    "add_liquidity": "Add Liquidity",
    "remove_liquidity": "Remove Liquidity",
    "nft_mint": "NFT Mint",
    "nft_transfer": "NFT Transfer",
    "contract_deployment": "Contract Deployment",
    "contract_interaction": "Contract Interaction",
    "unknown": "Unknown Transaction",
}


def type_label(kind: str) -> str:
    return TYPE_LABELS.get(kind, "Unknown")


@dataclass(slots=True, frozen=True)
class Flow:
    incoming: tuple[TransferEvent, ...]
    outgoing: tuple[TransferEvent, ...]


@dataclass(slots=True, frozen=True)
class Context:
    chain_tx: ChainTransaction
    transfers: tuple[TransferEvent, ...]   # every decoded transfer, native included
    subject: str                           # whose flow is analysed
    flow: Flow

    @property
    def to(self) -> str | None:
        return self.chain_tx.tx.to_address

    @property
    def topics0(self) -> set[str]:
        return {l.topics[0] for l in self.chain_tx.receipt.logs if l.topics}


def build_context(chain_tx: ChainTransaction, transfers: Sequence[TransferEvent], subject: str) -> Context:
    s = subject.lower()
    inc = tuple(t for t in transfers if t.to_address == s and t.from_address != s)
    out = tuple(t for t in transfers if t.from_address == s and t.to_address != s)
    return Context(chain_tx, tuple(transfers), s, Flow(inc, out))


class Rule(Protocol):
    name: str
    priority: int

    def classify(self, ctx: Context) -> Classification | None:
        """Return a classification when the rule recognises the transaction, else None."""


def _protocol_for(ctx: Context, default: str | None) -> str | None:
    return KNOWN_ROUTERS.get(ctx.to or "", default)

# ──────────────────────────────
# Rules
# ──────────────────────────────

class ContractCreationRule:
    name, priority = "contract_creation", 100

    def classify(self, ctx: Context) -> Classification | None:
        if ctx.chain_tx.tx.to_address is not None:
            return None
        return Classification("contract_deployment", 1.0, None,
                              (f"Contract created at {ctx.chain_tx.receipt.contract_address}",))


class LiquidityRule:
    name, priority = "dex_liquidity", 95

    def classify(self, ctx: Context) -> Classification | None:
        sel, t0s = ctx.chain_tx.tx.selector, ctx.topics0
        if sel in ADD_LIQUIDITY_SELECTORS or t0s & LIQUIDITY_ADD_T0S:
            kind = "add_liquidity"
        elif sel in REMOVE_LIQUIDITY_SELECTORS or t0s & LIQUIDITY_REMOVE_T0S:
            kind = "remove_liquidity"
        else:
            return None
        # a swap that happens to touch a pool's mint/burn is still a swap
        if swap_protocols(ctx.chain_tx.receipt.logs) and sel not in ADD_LIQUIDITY_SELECTORS | REMOVE_LIQUIDITY_SELECTORS:
            return None
        return Classification(kind, 0.9, _protocol_for(ctx, "DEX"), ("Liquidity event or method matched",))


class SwapRule:
    name, priority = "dex_swap", 90

    def classify(self, ctx: Context) -> Classification | None:
        protocols = swap_protocols(ctx.chain_tx.receipt.logs)
        by_method = ctx.chain_tx.tx.selector in SWAP_SELECTORS
        if not protocols and not by_method:
            return None

        reasons: list[str] = []
        if protocols:
            event_match = 1.0
            reasons.append(f"Matched {len(protocols)} swap events")
        else:
            event_match = 0.6
            reasons.append(f"Router method {SWAP_SELECTORS[ctx.chain_tx.tx.selector]}")

        has_in, has_out = bool(ctx.flow.incoming), bool(ctx.flow.outgoing)
        if has_in and has_out:
            flow_match = 1.0
            reasons.append("Bidirectional token flow")
        elif has_in or has_out:
            flow_match = 0.4
            reasons.append("Unidirectional token flow")
        else:
            flow_match = 0.0

        address_match = 0.5
        if ctx.to in KNOWN_ROUTERS:
            address_match = 1.0
            reasons.append(f"Known router {KNOWN_ROUTERS[ctx.to]}")
        elif any(l.address == ctx.to for l in ctx.chain_tx.receipt.logs if l.topics and l.topics[0] in SWAP_T0S):
            address_match = 0.8
            reasons.append("Direct interaction with swap pair")

        confidence = min(1.0, event_match * 0.5 + flow_match * 0.3 + address_match * 0.2)
        protocol = _protocol_for(ctx, protocols[0] if protocols else "DEX")
        return Classification("swap", confidence, protocol, tuple(reasons))


class ApprovalRule:
    name, priority = "token_approval", 80

    def classify(self, ctx: Context) -> Classification | None:
        if ctx.chain_tx.tx.selector != APPROVE_SELECTOR:
            return None
        if APPROVAL_T0 in ctx.topics0:
            return Classification("token_approval", 0.95, None, ("approve() call with Approval event",))
        return Classification("token_approval", 0.7, None, ("approve() call without Approval event",))


class NFTRule:
    name, priority = "nft", 70

    def classify(self, ctx: Context) -> Classification | None:
        nft_in = [t for t in ctx.flow.incoming if t.standard in ("erc721", "erc1155")]
        nft_out = [t for t in ctx.flow.outgoing if t.standard in ("erc721", "erc1155")]
        if not nft_in and not nft_out:
            return None
        if nft_in and not nft_out and all(t.from_address == ZERO_ADDRESS for t in nft_in):
            return Classification("nft_mint", 0.9, None, (f"{len(nft_in)} NFT(s) minted to {ctx.subject}",))
        return Classification("nft_transfer", 0.85, None, (f"{len(nft_in) + len(nft_out)} NFT movement(s)",))


class TransferRule:
    name, priority = "transfer", 40

    def classify(self, ctx: Context) -> Classification | None:
        tx, logs = ctx.chain_tx.tx, ctx.chain_tx.receipt.logs
        if not tx.has_calldata and tx.value > 0 and not logs:
            return Classification("native_transfer", 1.0, None, ("Plain value transfer (empty calldata)",))

        inc, out = ctx.flow.incoming, ctx.flow.outgoing
        if len(inc) + len(out) == 1:
            mv = (inc or out)[0]
            if mv.standard == "native":
                return None  # value moved by a contract that emitted logs: an interaction
            kind = "token_transfer" if mv.standard == "erc20" else "nft_transfer"
            direct = mv.contract is not None and mv.contract == ctx.to
            side = "incoming" if inc else "outgoing"
            return Classification(kind, 0.95 if direct else 0.85, None,
                                  (f"Single {side} {mv.standard} movement",))

        if tx.value > 0 and len(inc) == 1 and inc[0].standard == "erc20":
            return Classification("swap", 0.8, None, ("Native sent, token received (wrap)",))
        return None


DEFAULT_RULES: tuple[Rule, ...] = (
    ContractCreationRule(), LiquidityRule(), SwapRule(), ApprovalRule(), NFTRule(), TransferRule(),
)


class Classifier:
    def __init__(self, rules: Sequence[Rule] = DEFAULT_RULES) -> None:
        self.rules = sorted(rules, key=lambda r: r.priority, reverse=True)

    def classify(self, chain_tx: ChainTransaction, transfers: Sequence[TransferEvent], subject: str) -> Classification:
        ctx = build_context(chain_tx, transfers, subject)
        for rule in self.rules:
            result = rule.classify(ctx)
            if result is not None:
                logger.debug("tx %s classified by %s as %s (%.2f)",
                             chain_tx.tx.hash, rule.name, result.type, result.confidence)
                return result

        if chain_tx.receipt.status != 0:
            return Classification("contract_interaction", 0.1, None,
                                  ("Valid execution but no semantic rule matched",))
        return Classification("unknown", 0.0, None, ("Failed transaction, no rule matched",))
