"""
Gas and fee pre-flight estimation.

The lock (commit) and release legs of an order are executed by the order
service's own signer, so the client cannot simulate them. It asks the service
for the average gas it observed for each leg over recent blocks and falls
back to a static default at the live gas price.

Fee policy (pre-submission guard only; the order service charges the
authoritative fee):
    offramper_fee = fiat_amount_minor // 40          (2.5 %)
    crypto_fee    = blockchain_fee + amount // 200   (0.5 % + both gas legs)
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from p2p_ramp.chains.evm import EvmGateway
from p2p_ramp.chains.tokens import TokenCatalog, TokenOption
from p2p_ramp.errors import NetworkError, RateUnavailableError, ServiceRejectedError
from p2p_ramp.execution.rates import ExchangeRateCache
from p2p_ramp.service.client import OrderServiceClient
from p2p_ramp.service.models import EvmChain

logger = logging.getLogger(__name__)


class GasOperation(str, Enum):
    COMMIT = "Commit"
    RELEASE_TOKEN = "ReleaseToken"
    RELEASE_NATIVE = "ReleaseNative"


@dataclass
class GasConfig:
    default_commit_gas: int = 80_000
    default_release_gas: int = 100_000
    history_days: int = 7
    block_time_seconds: int = 12
    offramper_fee_divisor: int = 40
    admin_fee_divisor: int = 200

    @property
    def max_blocks_in_past(self) -> int:
        return math.ceil(self.history_days * 86_400 / self.block_time_seconds)


@dataclass(frozen=True)
class GasEstimate:
    gas_units: int
    gas_price: int

    @property
    def cost(self) -> int:
        return self.gas_units * self.gas_price


@dataclass(frozen=True)
class FeeEstimate:
    offramper_fee: int  # fiat minor units
    crypto_fee: int  # order token smallest units


class GasFeeEstimator:
    """
    Usage:
        estimator = GasFeeEstimator(service, gateway, rates, TokenCatalog())
        commit = await estimator.estimate_gas_and_gas_price(chain_id, GasOperation.COMMIT)
        release = await estimator.estimate_gas_and_gas_price(chain_id, GasOperation.RELEASE_NATIVE)
        fees = await estimator.estimate_order_fees(chain_id, 10_000, amount, None, commit, release)
    """

    def __init__(
        self,
        service: OrderServiceClient,
        evm: EvmGateway,
        rates: ExchangeRateCache,
        catalog: TokenCatalog,
        config: Optional[GasConfig] = None,
    ) -> None:
        self._service = service
        self._evm = evm
        self._rates = rates
        self._catalog = catalog
        self._config = config or GasConfig()

    def default_gas_for(self, operation: GasOperation) -> int:
        if operation == GasOperation.COMMIT:
            return self._config.default_commit_gas
        return self._config.default_release_gas

    async def estimate_gas_and_gas_price(
        self,
        chain_id: int,
        operation: GasOperation,
        default_gas_units: Optional[int] = None,
    ) -> GasEstimate:
        """
        Gas units and price for one service-executed leg.

        Uses the service's recent average when it has one (and a non-zero
        price), otherwise ``default_gas_units`` at the live network price.
        """
        default_units = default_gas_units if default_gas_units is not None else self.default_gas_for(operation)

        try:
            average = await self._service.get_average_gas_prices(
                chain_id, self._config.max_blocks_in_past, operation.value
            )
        except (ServiceRejectedError, NetworkError) as e:
            logger.warning(f"No gas history for {operation.value} on chain {chain_id}: {e}")
            average = None

        if average is not None:
            gas_units, gas_price = average
            if gas_units > 0 and gas_price > 0:
                return GasEstimate(gas_units=gas_units, gas_price=gas_price)

        gas_price = await self._evm.gas_price(chain_id)
        return GasEstimate(gas_units=default_units, gas_price=gas_price)

    async def estimate_deposit_gas(
        self, chain_id: int, token: TokenOption, amount: int, sender: str
    ) -> GasEstimate:
        gas_units = await self._evm.estimate_deposit_gas(chain_id, token.address, amount, sender)
        gas_price = await self._evm.gas_price(chain_id)
        return GasEstimate(gas_units=gas_units, gas_price=gas_price)

    async def _native_to_token_units(
        self,
        native_units: int,
        native: TokenOption,
        token: TokenOption,
        currency: str,
    ) -> int:
        """Convert a native-asset cost into ``token`` units through a common fiat rate."""
        native_rate = await self._rates.get_rate(currency, native.rate_symbol, native.chain_qualifier)
        token_rate = await self._rates.get_rate(currency, token.rate_symbol, token.chain_qualifier)
        if not native_rate or not token_rate:
            raise RateUnavailableError(
                f"Cannot price gas in {token.name}: missing {native.rate_symbol} or "
                f"{token.rate_symbol} rate in {currency}"
            )
        value = native_units / native.scale * native_rate / token_rate
        return math.ceil(value * token.scale)

    async def estimate_order_fees(
        self,
        chain_id: int,
        fiat_amount_minor: int,
        crypto_amount_units: int,
        token_address: Optional[str],
        commit: GasEstimate,
        release: GasEstimate,
        currency: str = "USD",
    ) -> FeeEstimate:
        """
        Offramper fee and total crypto fee of an EVM order.

        For a token order the blockchain fee (native units) is converted into
        token units through the fiat rates of both assets.

        Raises:
            UnsupportedChainError: If the chain has no token catalog
            RateUnavailableError: If a conversion rate is unavailable
        """
        offramper_fee = fiat_amount_minor // self._config.offramper_fee_divisor

        blockchain_fee = commit.cost + release.cost
        if token_address is not None:
            chain = EvmChain(chain_id=chain_id)
            token = self._catalog.find(chain, token_address)
            if token is None:
                raise RateUnavailableError(f"Unknown token {token_address} on chain {chain_id}")
            blockchain_fee = await self._native_to_token_units(
                blockchain_fee, self._catalog.default(chain), token, currency
            )

        crypto_fee = blockchain_fee + crypto_amount_units // self._config.admin_fee_divisor
        logger.debug(
            f"Fee estimate on chain {chain_id}: offramper_fee={offramper_fee} "
            f"blockchain_fee={blockchain_fee} crypto_fee={crypto_fee}"
        )
        return FeeEstimate(offramper_fee=offramper_fee, crypto_fee=crypto_fee)
