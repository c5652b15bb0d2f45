# chainreceipt/ports/prices.py
from __future__ import annotations

from typing import Protocol
from ..domain.chains import ChainConfig
from ..domain.models import PriceQuote

NATIVE = "native"


class PriceProvider(Protocol):
    """Port for one historical USD price source."""

    name: str
    trust: float  # base confidence of the source, 0..1

    async def quote(self, chain: ChainConfig, asset: str, timestamp: int) -> PriceQuote | None:
        """
        Closest historical quote for `asset` (a token address or NATIVE) at `timestamp`.
        Return None when the source has no price; raise TransientError on transport trouble.
        """
