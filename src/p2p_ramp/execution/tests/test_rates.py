"""
Exchange rate cache tests.

These tests verify:
- Entries younger than the TTL are served without a network call
- Entries older than the TTL are refetched
- A failed fetch yields None instead of a stale or zero rate
"""
import pytest
from unittest.mock import AsyncMock

from p2p_ramp.chains.tokens import ICP_TOKENS, TokenCatalog
from p2p_ramp.errors import NetworkError, ServiceRejectedError
from p2p_ramp.execution.rates import ExchangeRateCache, ExchangeRateEntry, RateCacheConfig, rate_key
from p2p_ramp.service.models import EvmChain


class TestRateKey:
    def test_chain_agnostic(self):
        assert rate_key("ETH") == "ETH_exchange_rate"

    def test_chain_qualified(self):
        assert rate_key("USDT", "11155111") == "USDT_11155111_exchange_rate"


@pytest.mark.asyncio
class TestGetRate:
    async def test_first_request_fetches_and_stores(self, rates, mock_service, memory_store, clock):
        assert await rates.get_rate("USD", "ETH") == 2000.0

        mock_service.get_exchange_rate.assert_awaited_once_with("USD", "ETH")
        entry = ExchangeRateEntry.model_validate_json(memory_store.data["ETH_exchange_rate"])
        assert entry.fetched_at == clock.now
        assert entry.currency == "USD"

    async def test_within_ttl_served_from_cache(self, rates, mock_service, clock):
        await rates.get_rate("USD", "ETH")
        clock.advance(19 * 60 + 59)

        assert await rates.get_rate("USD", "ETH") == 2000.0
        assert mock_service.get_exchange_rate.await_count == 1

    async def test_after_ttl_refetches(self, rates, mock_service, clock):
        await rates.get_rate("USD", "ETH")
        clock.advance(20 * 60)

        await rates.get_rate("USD", "ETH")
        assert mock_service.get_exchange_rate.await_count == 2

    async def test_other_currency_refetches(self, rates, mock_service):
        await rates.get_rate("USD", "ETH")
        await rates.get_rate("EUR", "ETH")

        assert mock_service.get_exchange_rate.await_count == 2
        assert mock_service.get_exchange_rate.call_args[0] == ("EUR", "ETH")

    async def test_qualified_symbols_are_cached_separately(self, rates, memory_store):
        await rates.get_rate("USD", "USDT", "11155111")
        assert "USDT_11155111_exchange_rate" in memory_store.data
        assert "USDT_exchange_rate" not in memory_store.data

    async def test_service_error_yields_none(self, mock_service, memory_store, clock):
        mock_service.get_exchange_rate = AsyncMock(
            side_effect=ServiceRejectedError({"SystemError": {"InvalidInput": "symbol"}})
        )
        cache = ExchangeRateCache(mock_service, memory_store, clock=clock)

        assert await cache.get_rate("USD", "DOGE") is None
        assert memory_store.data == {}

    async def test_stale_entry_not_served_when_refresh_fails(self, rates, mock_service, clock):
        await rates.get_rate("USD", "ETH")
        clock.advance(21 * 60)
        mock_service.get_exchange_rate.side_effect = NetworkError("offline")

        assert await rates.get_rate("USD", "ETH") is None

    async def test_corrupt_entry_is_discarded(self, rates, memory_store, mock_service):
        memory_store.data["ETH_exchange_rate"] = "not json"

        assert await rates.get_rate("USD", "ETH") == 2000.0
        mock_service.get_exchange_rate.assert_awaited_once()

    async def test_invalidate(self, rates, mock_service):
        await rates.get_rate("USD", "ETH")
        await rates.invalidate("ETH")
        await rates.get_rate("USD", "ETH")

        assert mock_service.get_exchange_rate.await_count == 2

    async def test_custom_ttl(self, mock_service, memory_store, clock):
        mock_service.get_exchange_rate = AsyncMock(return_value=1.5)
        cache = ExchangeRateCache(mock_service, memory_store, RateCacheConfig(ttl_seconds=10), clock=clock)

        await cache.get_rate("USD", "ICP")
        clock.advance(11)
        await cache.get_rate("USD", "ICP")

        assert mock_service.get_exchange_rate.await_count == 2


@pytest.mark.asyncio
class TestQuoteFiatAmount:
    async def test_eth_amount_at_2000(self, rates):
        eth = TokenCatalog().find(EvmChain(chain_id=11155111), None)

        # 0.05 ETH * 2000 USD = 100.00 USD
        assert await rates.quote_fiat_amount("USD", eth, 5 * 10**16) == 10_000

    async def test_rounds_up_to_minor_unit(self, rates):
        icp = ICP_TOKENS[0]

        # 0.123456 ICP * 10 USD = 1.23456 USD -> 124 cents
        assert await rates.quote_fiat_amount("USD", icp, 12_345_600) == 124

    async def test_no_rate(self, mock_service, memory_store, clock):
        mock_service.get_exchange_rate = AsyncMock(side_effect=NetworkError("offline"))
        cache = ExchangeRateCache(mock_service, memory_store, clock=clock)
        eth = TokenCatalog().find(EvmChain(chain_id=11155111), None)

        assert await cache.quote_fiat_amount("USD", eth, 10**18) is None
