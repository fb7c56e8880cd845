"""
Shared test fixtures.

IMPORTANT: No test touches a real network, chain or database.
Durable storage is replaced by an in-memory store with the same
interface as ClientStore; time comes from a controllable clock.
"""
from typing import Dict, Optional
from unittest.mock import MagicMock

import pytest

from p2p_ramp.service.client import OrderServiceClient
from p2p_ramp.service.models import (
    AddressType,
    EmailCredential,
    EvmCredential,
    PayPalProvider,
    RevolutProvider,
    Session,
    TransactionAddress,
    User,
    UserType,
)

NOW = 1_700_000_000.0
TWELVE_HOURS_NS = 12 * 3600 * 1_000_000_000

OFFRAMPER_ADDRESS = "0x1111111111111111111111111111111111111111"
ONRAMPER_ADDRESS = "0x2222222222222222222222222222222222222222"


class MemoryStore:
    """In-memory stand-in for ClientStore."""

    def __init__(self) -> None:
        self.data: Dict[str, str] = {}

    async def ensure_schema(self) -> None:
        return None

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> bool:
        return self.data.pop(key, None) is not None

    async def pop(self, key: str) -> Optional[str]:
        return self.data.pop(key, None)


class FakeClock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def memory_store_factory():
    """For tests that simulate several clients, each with its own storage."""
    return MemoryStore


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_service():
    """Order service client with every coroutine method mocked."""
    return MagicMock(spec=OrderServiceClient)


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
def session(clock):
    return Session(token="session-token-abcdef", expires_at=int(clock.now * 1_000_000_000) + TWELVE_HOURS_NS)


@pytest.fixture
def offramper(session):
    return User(
        id=1,
        user_type=UserType.OFFRAMPER,
        payment_providers=[
            PayPalProvider(id="offramper@example.org"),
            RevolutProvider(id="GB33BUKB20201555555555", scheme="UK.OBIE.IBAN", name="Alice Offramper"),
        ],
        addresses=[TransactionAddress(address_type=AddressType.EVM, address=OFFRAMPER_ADDRESS)],
        fiat_amounts={"USD": 12_345_678_901_234_567_890},
        score=1,
        login=EvmCredential(address=OFFRAMPER_ADDRESS),
        session=session,
    )


@pytest.fixture
def onramper(clock):
    return User(
        id=2,
        user_type=UserType.ONRAMPER,
        payment_providers=[PayPalProvider(id="onramper@example.org")],
        addresses=[
            TransactionAddress(address_type=AddressType.EVM, address=ONRAMPER_ADDRESS),
            TransactionAddress(address_type=AddressType.EMAIL, address="onramper@example.org"),
        ],
        login=EmailCredential(email="onramper@example.org"),
        session=Session(
            token="onramper-token-123456",
            expires_at=int(clock.now * 1_000_000_000) + TWELVE_HOURS_NS,
        ),
    )
