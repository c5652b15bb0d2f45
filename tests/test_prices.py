"""
Tests for the price waterfall and the httpx-backed providers.
"""
import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from chainreceipt.adapters.prices_httpx import (
    AlchemyPriceProvider, CoinGeckoPriceProvider, DefiLlamaPriceProvider, default_providers,
)
from chainreceipt.application.prices import PriceService
from chainreceipt.domain.chains import get_chain
from chainreceipt.domain.errors import DataIntegrityError, PriceUnavailable, TransientError, ValidationError

from helpers import TIMESTAMP, TOKEN, StaticProvider

ETH = get_chain(1)
LLAMA_NATIVE_KEY = "ethereum:0x0000000000000000000000000000000000000000"


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWaterfall:

    @pytest.mark.asyncio
    async def test_first_valid_price_wins(self):
        """P1 throws, P2 answers 2000, P3 is never consulted."""
        p1 = StaticProvider("P1", error=RuntimeError("boom"))
        p2 = StaticProvider("P2", {"native": 2000})
        p3 = StaticProvider("P3", {"native": 1})
        q = await PriceService([p1, p2, p3]).get_price(1, "native", TIMESTAMP)
        assert (q.usd_price, q.source) == (Decimal(2000), "P2")
        assert p3.calls == []
        assert len(p1.calls) == 1

    @pytest.mark.asyncio
    async def test_absence_and_transient_both_fall_through(self):
        p1 = StaticProvider("P1", error=TransientError("HTTP 503"))
        p2 = StaticProvider("P2", {})
        p3 = StaticProvider("P3", {TOKEN: "0.9998"})
        q = await PriceService([p1, p2, p3]).get_price(1, TOKEN, TIMESTAMP)
        assert q.source == "P3"
        assert q.usd_price == Decimal("0.9998")

    @pytest.mark.asyncio
    async def test_zero_price_is_not_a_price(self):
        p1 = StaticProvider("P1", {"native": 0})
        p2 = StaticProvider("P2", {"native": 1800})
        q = await PriceService([p1, p2]).get_price(1, "native", TIMESTAMP)
        assert q.source == "P2"

    @pytest.mark.asyncio
    async def test_exhaustion_fails_loudly(self):
        providers = [StaticProvider("P1", error=TransientError("timed out")), StaticProvider("P2", {})]
        with pytest.raises(PriceUnavailable) as err:
            await PriceService(providers).get_price(1, "native", TIMESTAMP)
        assert isinstance(err.value, DataIntegrityError)
        assert len(err.value.outcomes) == 2
        assert "P1: timed out" in str(err.value)
        assert "P2: no price" in str(err.value)

    @pytest.mark.asyncio
    async def test_unsupported_chain(self):
        with pytest.raises(ValidationError):
            await PriceService([StaticProvider("P1", {"native": 1})]).get_price(999, "native", TIMESTAMP)

    @pytest.mark.asyncio
    async def test_get_prices_dedupes(self):
        p = StaticProvider("P", {"native": 2000, TOKEN: 1})
        quotes = await PriceService([p]).get_prices(1, ["native", TOKEN, "native"], TIMESTAMP)
        assert set(quotes) == {"native", TOKEN}
        assert len(p.calls) == 2


class TestDefiLlama:

    @pytest.mark.asyncio
    async def test_native_quote(self):
        def handler(request):
            assert request.url.path == f"/prices/historical/{TIMESTAMP}/{LLAMA_NATIVE_KEY}"
            return httpx.Response(200, json={"coins": {LLAMA_NATIVE_KEY: {"price": 2000.5, "timestamp": TIMESTAMP + 60}}})

        async with mock_client(handler) as client:
            q = await DefiLlamaPriceProvider(client).quote(ETH, "native", TIMESTAMP)
        assert q.usd_price == Decimal("2000.5")
        assert (q.source, q.timestamp, q.requested_at) == ("DeFiLlama", TIMESTAMP + 60, TIMESTAMP)
        assert q.drift_s == 60
        assert q.confidence == pytest.approx(0.85 - (60 / 3600) * 0.1)

    @pytest.mark.asyncio
    async def test_drifting_quote_is_rejected(self):
        def handler(request):
            return httpx.Response(200, json={"coins": {LLAMA_NATIVE_KEY: {"price": 2000, "timestamp": TIMESTAMP - 3 * 3600}}})

        async with mock_client(handler) as client:
            assert await DefiLlamaPriceProvider(client).quote(ETH, "native", TIMESTAMP) is None

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        async with mock_client(lambda request: httpx.Response(502)) as client:
            with pytest.raises(TransientError):
                await DefiLlamaPriceProvider(client).quote(ETH, "native", TIMESTAMP)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with mock_client(handler) as client:
            with pytest.raises(TransientError):
                await DefiLlamaPriceProvider(client).quote(ETH, "native", TIMESTAMP)


class TestCoinGecko:

    @pytest.mark.asyncio
    async def test_daily_history_for_token(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["date"] = request.url.params["date"]
            return httpx.Response(200, json={"market_data": {"current_price": {"usd": 1.001}}})

        async with mock_client(handler) as client:
            q = await CoinGeckoPriceProvider(client).quote(ETH, TOKEN, TIMESTAMP)
        assert seen["path"] == f"/api/v3/coins/ethereum/contract/{TOKEN}/history"
        assert seen["date"] == "14-11-2023"
        assert q.usd_price == Decimal("1.001")
        assert q.timestamp == 1_699_920_000

    @pytest.mark.asyncio
    async def test_unknown_coin_is_absence(self):
        async with mock_client(lambda request: httpx.Response(404, json={"error": "not found"})) as client:
            assert await CoinGeckoPriceProvider(client).quote(ETH, TOKEN, TIMESTAMP) is None

    @pytest.mark.asyncio
    async def test_rate_limit_is_transient(self):
        async with mock_client(lambda request: httpx.Response(429)) as client:
            with pytest.raises(TransientError):
                await CoinGeckoPriceProvider(client).quote(ETH, "native", TIMESTAMP)


class TestAlchemy:

    @pytest.mark.asyncio
    async def test_native_priced_via_wrapped_token_closest_point(self):
        sent = {}

        def handler(request):
            sent.update(json.loads(request.content))
            return httpx.Response(200, json={"data": [
                {"value": "1990.0", "timestamp": "2023-11-14T21:00:00Z"},
                {"value": "2001.0", "timestamp": "2023-11-14T22:00:00Z"},
                {"value": "2010.0", "timestamp": "2023-11-14T23:00:00Z"},
            ]})

        async with mock_client(handler) as client:
            q = await AlchemyPriceProvider(client, "key").quote(ETH, "native", TIMESTAMP)
        assert sent["address"] == ETH.wrapped_native
        assert sent["network"] == "eth-mainnet"
        assert sent["interval"] == "1h"
        assert q.usd_price == Decimal("2001.0")
        assert q.source == "Alchemy"

    @pytest.mark.asyncio
    async def test_chain_without_alchemy_network(self):
        async with mock_client(lambda request: httpx.Response(500)) as client:
            assert await AlchemyPriceProvider(client, "key").quote(get_chain(56), "native", TIMESTAMP) is None


def test_alchemy_only_with_a_key():
    client = httpx.AsyncClient()
    assert [p.name for p in default_providers(client)] == ["DeFiLlama", "CoinGecko"]
    assert [p.name for p in default_providers(client, alchemy_key="k")] == ["Alchemy", "DeFiLlama", "CoinGecko"]
    assert [p.trust for p in default_providers(client, alchemy_key="k")] == [0.95, 0.85, 0.6]


class TestConcurrentLookups:

    @pytest.mark.asyncio
    async def test_failed_asset_cancels_the_others(self):
        cancelled = asyncio.Event()

        class Slow(StaticProvider):
            async def quote(self, chain, asset, timestamp):
                if asset == "native":
                    return None
                try:
                    await asyncio.sleep(30)
                except asyncio.CancelledError:
                    cancelled.set()
                    raise

        with pytest.raises(PriceUnavailable):
            await asyncio.wait_for(PriceService([Slow("S")]).get_prices(1, ["native", TOKEN], TIMESTAMP), 5)
        assert cancelled.is_set()
