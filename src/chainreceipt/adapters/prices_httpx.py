from __future__ import annotations
import logging, httpx
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from ..domain.chains import ChainConfig
from ..domain.errors import TransientError
from ..domain.models import PriceQuote
from ..domain.money import to_decimal
from ..ports.prices import NATIVE, PriceProvider

logger = logging.getLogger(__name__)

ALCHEMY_PRICES_URL = "https://api.g.alchemy.com/prices/v1/{key}/tokens/historical"
DEFILLAMA_URL = "https://coins.llama.fi/prices/historical/{ts}/{coin}"
COINGECKO_URL = "https://api.coingecko.com/api/v3"
LLAMA_NATIVE = "0x0000000000000000000000000000000000000000"


def make_client(timeout_s: float = 15) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        http2=True,
        timeout=httpx.Timeout(timeout_s),
        limits=httpx.Limits(max_connections=32, max_keepalive_connections=16),
        headers={"accept": "application/json"},
    )


async def _fetch_json(client: httpx.AsyncClient, source: str, method: str, url: str, **kw: Any) -> Any | None:
    """JSON body, None on a 4xx "don't know", TransientError on transport, 429 and 5xx."""
    try:
        r = await client.request(method, url, **kw)
    except httpx.TimeoutException as e:
        raise TransientError(f"{source} timed out") from e
    except httpx.TransportError as e:
        raise TransientError(f"{source} transport error: {e}") from e
    if r.status_code == 429 or r.status_code >= 500:
        raise TransientError(f"{source} HTTP {r.status_code}")
    if r.status_code >= 400:
        logger.debug("%s answered HTTP %s for %s", source, r.status_code, r.url)
        return None
    try:
        return r.json()
    except ValueError as e:
        raise TransientError(f"{source} returned non-JSON body") from e


def _positive(x: Any) -> Decimal | None:
    if x is None: return None
    try:
        d = to_decimal(x)
    except ArithmeticError:
        return None
    return d if d.is_finite() and d > 0 else None


def _iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class AlchemyPriceProvider(PriceProvider):
    """Hourly buckets in a ±1h window; native coins are priced through their wrapped token."""

    name = "Alchemy"
    trust = 0.95

    def __init__(self, client: httpx.AsyncClient, api_key: str, window_s: int = 3600) -> None:
        self.client, self.api_key, self.window_s = client, api_key, window_s

    async def quote(self, chain: ChainConfig, asset: str, timestamp: int) -> PriceQuote | None:
        if not chain.alchemy_network:
            return None
        address = chain.wrapped_native if asset == NATIVE else asset
        if not address:
            return None
        body = {"address": address, "network": chain.alchemy_network,
                "startTime": _iso(timestamp - self.window_s), "endTime": _iso(timestamp + self.window_s),
                "interval": "1h"}
        data = await _fetch_json(self.client, self.name, "POST",
                                 ALCHEMY_PRICES_URL.format(key=self.api_key), json=body)
        points = (data or {}).get("data") or []
        best: tuple[int, Any] | None = None
        for p in points:
            try:
                ts = int(datetime.fromisoformat(str(p["timestamp"]).replace("Z", "+00:00")).timestamp())
            except (KeyError, ValueError):
                continue
            price = _positive(p.get("value"))
            if price is not None and (best is None or abs(ts - timestamp) < abs(best[0] - timestamp)):
                best = (ts, price)
        if best is None:
            return None
        return PriceQuote(asset, best[1], self.name, best[0], timestamp, self.trust)


class DefiLlamaPriceProvider(PriceProvider):
    name = "DeFiLlama"
    trust = 0.85

    def __init__(self, client: httpx.AsyncClient, max_drift_s: int = 2 * 3600) -> None:
        self.client, self.max_drift_s = client, max_drift_s

    async def quote(self, chain: ChainConfig, asset: str, timestamp: int) -> PriceQuote | None:
        coin = f"{chain.defillama_chain}:{LLAMA_NATIVE if asset == NATIVE else asset}"
        data = await _fetch_json(self.client, self.name, "GET", DEFILLAMA_URL.format(ts=timestamp, coin=coin))
        entry = ((data or {}).get("coins") or {}).get(coin) or {}
        price = _positive(entry.get("price"))
        if price is None:
            return None
        ts = int(entry.get("timestamp") or timestamp)
        if abs(ts - timestamp) > self.max_drift_s:
            logger.debug("DeFiLlama quote for %s drifts %ss from %s, rejected", coin, abs(ts - timestamp), timestamp)
            return None
        return PriceQuote(asset, price, self.name, ts, timestamp, self.trust)


class CoinGeckoPriceProvider(PriceProvider):
    """Daily history (the day's opening snapshot, UTC)."""

    name = "CoinGecko"
    trust = 0.6

    def __init__(self, client: httpx.AsyncClient, api_key: str | None = None) -> None:
        self.client, self.api_key = client, api_key

    async def quote(self, chain: ChainConfig, asset: str, timestamp: int) -> PriceQuote | None:
        day = datetime.fromtimestamp(timestamp, timezone.utc)
        if asset == NATIVE:
            url = f"{COINGECKO_URL}/coins/{chain.coingecko_native_id}/history"
        else:
            url = f"{COINGECKO_URL}/coins/{chain.coingecko_platform}/contract/{asset}/history"
        headers = {"x-cg-demo-api-key": self.api_key} if self.api_key else None
        data = await _fetch_json(self.client, self.name, "GET", url,
                                 params={"date": day.strftime("%d-%m-%Y"), "localization": "false"},
                                 headers=headers)
        price = _positive((((data or {}).get("market_data") or {}).get("current_price") or {}).get("usd"))
        if price is None:
            return None
        day_start = int(day.replace(hour=0, minute=0, second=0, microsecond=0).timestamp())
        return PriceQuote(asset, price, self.name, day_start, timestamp, self.trust)


def default_providers(client: httpx.AsyncClient, alchemy_key: str | None = None,
                      coingecko_key: str | None = None) -> list[PriceProvider]:
    providers: list[PriceProvider] = []
    if alchemy_key:
        providers.append(AlchemyPriceProvider(client, alchemy_key))
    providers += [DefiLlamaPriceProvider(client), CoinGeckoPriceProvider(client, coingecko_key)]
    return providers
