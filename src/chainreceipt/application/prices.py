from __future__ import annotations

import logging
import time
from typing import Iterable, Sequence

from ..domain.chains import get_chain
from ..domain.errors import PriceUnavailable, TransientError
from ..domain.models import PriceQuote
from ..ports.prices import PriceProvider
from .tasks import gather_or_cancel

logger = logging.getLogger(__name__)
audit = logging.getLogger("chainreceipt.audit")


class PriceService:
    """
    Historical USD price waterfall. Providers are tried in order and the first
    positive quote wins; later providers are not consulted. Nothing is cached.
    """

    def __init__(self, providers: Sequence[PriceProvider]) -> None:
        self.providers = list(providers)

    async def get_price(self, chain_id: int, asset: str, timestamp: int) -> PriceQuote:
        chain = get_chain(chain_id)
        outcomes: list[str] = []
        t0 = time.perf_counter()

        for provider in self.providers:
            try:
                quote = await provider.quote(chain, asset, timestamp)
            except TransientError as e:
                outcomes.append(f"{provider.name}: {e}")
                continue
            except Exception as e:
                logger.warning("price provider %s raised unexpectedly: %r", provider.name, e)
                outcomes.append(f"{provider.name}: {type(e).__name__}: {e}")
                continue
            if quote is None or quote.usd_price <= 0:
                outcomes.append(f"{provider.name}: no price")
                continue

            audit.info("price_resolved chain=%s asset=%s ts=%s price=%s source=%s drift_s=%s duration_ms=%d tried=%s",
                       chain_id, asset, timestamp, quote.usd_price, quote.source,
                       abs(quote.timestamp - timestamp), (time.perf_counter() - t0) * 1000,
                       outcomes or "-")
            return quote

        audit.warning("price_unavailable chain=%s asset=%s ts=%s duration_ms=%d outcomes=%s",
                      chain_id, asset, timestamp, (time.perf_counter() - t0) * 1000, outcomes)
        raise PriceUnavailable(asset, outcomes)

    async def get_prices(self, chain_id: int, assets: Iterable[str], timestamp: int) -> dict[str, PriceQuote]:
        assets = list(dict.fromkeys(assets))
        quotes = await gather_or_cancel(*(self.get_price(chain_id, a, timestamp) for a in assets))
        return dict(zip(assets, quotes))
