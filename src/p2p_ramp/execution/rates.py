"""
Exchange rate cache.

Rates come from the order service and are kept in durable client storage
under ``{symbol}_{qualifier}_exchange_rate`` (``{symbol}_exchange_rate`` for
chain-agnostic symbols). An entry is served without a network call while it
is younger than the TTL (20 minutes) and was fetched for the same fiat
currency.

A failed fetch yields ``None``: callers must treat the fiat amount as
unavailable, never as zero.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import BaseModel, ValidationError

from p2p_ramp.chains.tokens import TokenOption
from p2p_ramp.errors import NetworkError, ServiceRejectedError
from p2p_ramp.service.client import OrderServiceClient
from p2p_ramp.storage.client_store import ClientStore

logger = logging.getLogger(__name__)


@dataclass
class RateCacheConfig:
    ttl_seconds: float = 20 * 60


class ExchangeRateEntry(BaseModel):
    rate: float
    fetched_at: float  # unix seconds
    currency: str

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.fetched_at < ttl_seconds


def rate_key(token_rate_symbol: str, chain_qualifier: Optional[str] = None) -> str:
    if chain_qualifier:
        return f"{token_rate_symbol}_{chain_qualifier}_exchange_rate"
    return f"{token_rate_symbol}_exchange_rate"


class ExchangeRateCache:
    """
    TTL cache of fiat/crypto rates.

    Usage:
        cache = ExchangeRateCache(service, store)
        rate = await cache.get_rate("USD", "ETH")
        if rate is None:
            ...  # fiat amount unavailable
    """

    def __init__(
        self,
        service: OrderServiceClient,
        store: ClientStore,
        config: Optional[RateCacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._service = service
        self._store = store
        self._config = config or RateCacheConfig()
        self._clock = clock

    async def _load(self, key: str) -> Optional[ExchangeRateEntry]:
        raw = await self._store.get(key)
        if raw is None:
            return None
        try:
            return ExchangeRateEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Discarding unreadable rate entry {key}")
            await self._store.delete(key)
            return None

    async def get_rate(
        self,
        currency: str,
        token_rate_symbol: str,
        chain_qualifier: Optional[str] = None,
    ) -> Optional[float]:
        """
        Rate of one ``token_rate_symbol`` unit in ``currency``.

        Returns:
            The cached or freshly fetched rate, or None if the service failed
        """
        key = rate_key(token_rate_symbol, chain_qualifier)
        now = self._clock()

        entry = await self._load(key)
        if (
            entry is not None
            and entry.currency == currency
            and entry.is_fresh(now, self._config.ttl_seconds)
        ):
            logger.debug(f"Rate cache hit {key} ({currency}): {entry.rate}")
            return entry.rate

        try:
            rate = await self._service.get_exchange_rate(currency, token_rate_symbol)
        except (ServiceRejectedError, NetworkError) as e:
            logger.warning(f"Could not fetch {token_rate_symbol}/{currency} rate: {e}")
            return None

        entry = ExchangeRateEntry(rate=rate, fetched_at=now, currency=currency)
        await self._store.set(key, entry.model_dump_json())
        logger.debug(f"Rate cache refreshed {key} ({currency}): {rate}")
        return rate

    async def invalidate(self, token_rate_symbol: str, chain_qualifier: Optional[str] = None) -> None:
        await self._store.delete(rate_key(token_rate_symbol, chain_qualifier))

    async def quote_fiat_amount(
        self, currency: str, token: TokenOption, crypto_units: int
    ) -> Optional[int]:
        """
        Fiat value of ``crypto_units`` in currency minor units, rounded up.

        Returns:
            None if no rate is available
        """
        rate = await self.get_rate(currency, token.rate_symbol, token.chain_qualifier)
        if rate is None:
            return None
        return math.ceil(round(crypto_units / token.scale * rate * 100, 6))
