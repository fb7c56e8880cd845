"""
Fixtures for order lifecycle tests.

Order builders return fully-formed service order states so filters and the
orchestrator see the same shapes the service returns.
"""
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from p2p_ramp.execution.rates import ExchangeRateCache, RateCacheConfig
from p2p_ramp.service.models import (
    AddressType,
    Blockchain,
    CompletedOrder,
    CompletedOrderState,
    CreatedOrderState,
    Crypto,
    EvmChain,
    LockedOrder,
    LockedOrderState,
    Onramper,
    Order,
    PaymentProviderType,
    PayPalProvider,
    RevolutProvider,
    TransactionAddress,
)

SEPOLIA_ID = 11155111

OFFRAMPER_ADDRESS = "0x1111111111111111111111111111111111111111"
ONRAMPER_ADDRESS = "0x2222222222222222222222222222222222222222"


def _evm(address: str) -> TransactionAddress:
    return TransactionAddress(address_type=AddressType.EVM, address=address)


def _base_order(order_id: int, blockchain: Blockchain, amount: int, token: Optional[str]) -> Order:
    return Order(
        id=order_id,
        currency="USD",
        fiat_amount=10_000,
        offramper_user_id=1,
        offramper_address=_evm(OFFRAMPER_ADDRESS),
        offramper_providers={
            PaymentProviderType.PAYPAL: PayPalProvider(id="offramper@example.org"),
            PaymentProviderType.REVOLUT: RevolutProvider(
                id="GB33BUKB20201555555555", scheme="UK.OBIE.IBAN", name="Alice Offramper"
            ),
        },
        crypto=Crypto(blockchain=blockchain, token=token, amount=amount),
    )


class OrderFactory:
    """Builds Created/Locked/Completed order states."""

    def created(
        self,
        order_id: int = 1,
        blockchain: Optional[Blockchain] = None,
        amount: int = 5 * 10**16,
        token: Optional[str] = None,
    ) -> CreatedOrderState:
        return CreatedOrderState(
            order=_base_order(order_id, blockchain or EvmChain(chain_id=SEPOLIA_ID), amount, token)
        )

    def locked(
        self,
        order_id: int = 2,
        onramper_id: int = 2,
        onramper_address: str = ONRAMPER_ADDRESS,
        blockchain: Optional[Blockchain] = None,
    ) -> LockedOrderState:
        base = _base_order(order_id, blockchain or EvmChain(chain_id=SEPOLIA_ID), 5 * 10**16, None)
        return LockedOrderState(
            order=LockedOrder(
                base=base,
                price=10_000,
                offramper_fee=250,
                onramper=Onramper(
                    user_id=onramper_id,
                    provider=PayPalProvider(id="onramper@example.org"),
                    address=_evm(onramper_address),
                ),
            )
        )

    def completed(self, order_id: int = 3, blockchain: Optional[Blockchain] = None) -> CompletedOrderState:
        return CompletedOrderState(
            order=CompletedOrder(
                id=order_id,
                onramper=_evm(ONRAMPER_ADDRESS),
                offramper=_evm(OFFRAMPER_ADDRESS),
                price=10_000,
                offramper_fee=250,
                blockchain=blockchain or EvmChain(chain_id=SEPOLIA_ID),
            )
        )


@pytest.fixture
def orders():
    return OrderFactory()


@pytest.fixture
def rates(mock_service, memory_store, clock):
    """Rate cache over the mocked service; 2000 USD per ETH, 1 USD per stablecoin."""

    async def _rate(currency, symbol):
        return {"ETH": 2000.0, "USDT": 1.0, "USDC": 1.0, "ICP": 10.0, "BTC": 60_000.0}[symbol]

    mock_service.get_exchange_rate = AsyncMock(side_effect=_rate)
    return ExchangeRateCache(mock_service, memory_store, RateCacheConfig(), clock=clock)


@pytest.fixture
def auth(offramper):
    """Authentication manager stand-in holding the offramper's session."""
    auth = MagicMock()
    auth.require_session = AsyncMock(return_value=(offramper, offramper.session))
    return auth
