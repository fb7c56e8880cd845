"""
Wire models for the order service.

Every tagged variant of the service (credentials, payment providers,
blockchains, order states, order filters) is a pydantic discriminated union
so consumers dispatch on the concrete class instead of probing keys.

IMPORTANT: Amounts and nanosecond timestamps are unbounded integers. They are
serialised to JSON as decimal strings (``BigInt``) and validated back into
``int``, so records round-trip through durable storage unchanged.
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, TypeAdapter


from p2p_ramp.errors import InvalidInputError

BigInt = Annotated[int, PlainSerializer(lambda v: str(v), return_type=str, when_used="json")]


# =============================================================================
# ENUMS
# =============================================================================


class AddressType(str, Enum):
    """Chain kind of a registered address."""

    EVM = "EVM"
    ICP = "ICP"
    EMAIL = "Email"
    SOLANA = "Solana"


class UserType(str, Enum):
    """Side of the marketplace a user trades on."""

    OFFRAMPER = "Offramper"
    ONRAMPER = "Onramper"


class PaymentProviderType(str, Enum):
    """Off-chain payment rail."""

    PAYPAL = "PayPal"
    REVOLUT = "Revolut"


class OrderStateFilter(str, Enum):
    """Order state tags, as used by ``ByState`` filters."""

    CREATED = "Created"
    LOCKED = "Locked"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


# =============================================================================
# CREDENTIALS AND ADDRESSES
# =============================================================================


class TransactionAddress(BaseModel):
    """An address registered to a user, tagged by chain kind."""

    model_config = ConfigDict(frozen=True)

    address_type: AddressType
    address: str

    def same_address(self, other: "TransactionAddress") -> bool:
        """Compare addresses; EVM addresses are case-insensitive (checksum casing)."""
        if self.address_type == AddressType.EVM:
            return self.address.lower() == other.address.lower()
        return self.address == other.address


class EvmCredential(BaseModel):
    """Login by EVM address; proven by signing a service-issued challenge."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["EVM"] = "EVM"
    address: str

    @property
    def address_type(self) -> AddressType:
        return AddressType.EVM

    @property
    def identifier(self) -> str:
        return self.address


class IdentityCredential(BaseModel):
    """Login by identity-chain principal; proven by a delegated identity."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["ICP"] = "ICP"
    principal: str

    @property
    def address_type(self) -> AddressType:
        return AddressType.ICP

    @property
    def identifier(self) -> str:
        return self.principal


class EmailCredential(BaseModel):
    """Login by email; proven by password."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["Email"] = "Email"
    email: str

    @property
    def address_type(self) -> AddressType:
        return AddressType.EMAIL

    @property
    def identifier(self) -> str:
        return self.email


Credential = Annotated[
    Union[EvmCredential, IdentityCredential, EmailCredential],
    Field(discriminator="kind"),
]


class AuthenticationData(BaseModel):
    """Proof sent alongside a credential."""

    signature: Optional[str] = None
    password: Optional[str] = None


# =============================================================================
# PAYMENT PROVIDERS
# =============================================================================


class PayPalProvider(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["PayPal"] = "PayPal"
    id: str

    @property
    def provider_type(self) -> PaymentProviderType:
        return PaymentProviderType.PAYPAL


class RevolutProvider(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["Revolut"] = "Revolut"
    id: str
    scheme: str
    name: Optional[str] = None

    @property
    def provider_type(self) -> PaymentProviderType:
        return PaymentProviderType.REVOLUT


PaymentProvider = Annotated[
    Union[PayPalProvider, RevolutProvider],
    Field(discriminator="kind"),
]

REVOLUT_SCHEMES = (
    "UK.OBIE.IBAN",
    "UK.OBIE.SortCodeAccountNumber",
    "US.RoutingNumberAccountNumber",
    "US.BranchCodeAccountNumber",
)


def validate_provider(provider: PaymentProvider, user_type: UserType) -> None:
    """
    Reject incomplete provider details.

    Offramper-side Revolut entries need the account holder name (it is the
    payee on the onramper's transfer); onramper-side entries do not.

    Raises:
        InvalidInputError: If the provider is incomplete
    """
    if isinstance(provider, PayPalProvider):
        if not provider.id:
            raise InvalidInputError("PayPal ID is empty")
    elif isinstance(provider, RevolutProvider):
        if not provider.id or not provider.scheme:
            raise InvalidInputError("Revolut details are empty")
        if provider.scheme not in REVOLUT_SCHEMES:
            raise InvalidInputError(f"Unknown Revolut account scheme {provider.scheme}")
        if user_type == UserType.OFFRAMPER and not provider.name:
            raise InvalidInputError("Revolut account name is required for offrampers")


def providers_by_type(
    providers: List[PaymentProvider],
) -> Dict[PaymentProviderType, PaymentProvider]:
    """Key providers by type; a later provider of the same type wins."""
    return {p.provider_type: p for p in providers}


# =============================================================================
# BLOCKCHAINS
# =============================================================================


class EvmChain(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["EVM"] = "EVM"
    chain_id: int

    @property
    def address_type(self) -> AddressType:
        return AddressType.EVM


class IcpChain(BaseModel):
    """Identity chain; the ledger principal identifies the token ledger."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["ICP"] = "ICP"
    ledger_principal: str

    @property
    def address_type(self) -> AddressType:
        return AddressType.ICP


class SolanaChain(BaseModel):
    """Reserved; no operation is implemented for it."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["Solana"] = "Solana"

    @property
    def address_type(self) -> AddressType:
        return AddressType.SOLANA


Blockchain = Annotated[
    Union[EvmChain, IcpChain, SolanaChain],
    Field(discriminator="kind"),
]


# =============================================================================
# USERS AND SESSIONS
# =============================================================================


class Session(BaseModel):
    """Time-bounded authorization token; ``expires_at`` is nanoseconds since epoch."""

    token: str
    expires_at: BigInt


class User(BaseModel):
    id: int
    user_type: UserType
    payment_providers: List[PaymentProvider] = Field(default_factory=list)
    addresses: List[TransactionAddress] = Field(default_factory=list)
    fiat_amounts: Dict[str, BigInt] = Field(default_factory=dict)
    score: int = 1
    login: Credential
    session: Optional[Session] = None

    @property
    def is_offramper(self) -> bool:
        return self.user_type == UserType.OFFRAMPER

    @property
    def is_onramper(self) -> bool:
        return self.user_type == UserType.ONRAMPER

    def address_for(self, address_type: AddressType) -> Optional[TransactionAddress]:
        """First registered address of the given chain kind."""
        for address in self.addresses:
            if address.address_type == address_type:
                return address
        return None


# =============================================================================
# ORDERS
# =============================================================================


class Crypto(BaseModel):
    blockchain: Blockchain
    token: Optional[str] = None  # None = native asset
    amount: BigInt
    fee: BigInt = 0


class Order(BaseModel):
    """Immutable core of an order, shared by the Created and Locked states."""

    id: int
    created_at: BigInt = 0
    currency: str
    fiat_amount: BigInt  # currency minor units
    offramper_user_id: int
    offramper_address: TransactionAddress
    offramper_providers: Dict[PaymentProviderType, PaymentProvider] = Field(default_factory=dict)
    crypto: Crypto


class Onramper(BaseModel):
    user_id: int
    provider: PaymentProvider
    address: TransactionAddress


class LockedOrder(BaseModel):
    base: Order
    locked_at: BigInt = 0
    price: BigInt = 0
    offramper_fee: BigInt = 0
    onramper: Onramper
    payment_id: Optional[str] = None
    payment_done: bool = False


class CompletedOrder(BaseModel):
    id: int
    onramper: TransactionAddress
    offramper: TransactionAddress
    price: BigInt = 0
    offramper_fee: BigInt = 0
    blockchain: Blockchain
    completed_at: BigInt = 0


class CreatedOrderState(BaseModel):
    """Funds deposited in the vault, open for locking."""

    state: Literal["Created"] = "Created"
    order: Order

    @property
    def order_id(self) -> int:
        return self.order.id

    @property
    def state_filter(self) -> OrderStateFilter:
        return OrderStateFilter.CREATED

    @property
    def blockchain(self) -> Optional[Blockchain]:
        return self.order.crypto.blockchain


class LockedOrderState(BaseModel):
    """Reserved by exactly one onramper."""

    state: Literal["Locked"] = "Locked"
    order: LockedOrder

    @property
    def order_id(self) -> int:
        return self.order.base.id

    @property
    def state_filter(self) -> OrderStateFilter:
        return OrderStateFilter.LOCKED

    @property
    def blockchain(self) -> Optional[Blockchain]:
        return self.order.base.crypto.blockchain


class CompletedOrderState(BaseModel):
    """Payment verified, funds released."""

    state: Literal["Completed"] = "Completed"
    order: CompletedOrder

    @property
    def order_id(self) -> int:
        return self.order.id

    @property
    def state_filter(self) -> OrderStateFilter:
        return OrderStateFilter.COMPLETED

    @property
    def blockchain(self) -> Optional[Blockchain]:
        return self.order.blockchain


class CancelledOrderState(BaseModel):
    """Terminal; funds withdrawn back to the offramper."""

    state: Literal["Cancelled"] = "Cancelled"
    id: int

    @property
    def order_id(self) -> int:
        return self.id

    @property
    def state_filter(self) -> OrderStateFilter:
        return OrderStateFilter.CANCELLED

    @property
    def blockchain(self) -> Optional[Blockchain]:
        return None


OrderState = Annotated[
    Union[CreatedOrderState, LockedOrderState, CompletedOrderState, CancelledOrderState],
    Field(discriminator="state"),
]

# Only these edges exist; the service performs every transition.
VALID_TRANSITIONS = {
    OrderStateFilter.CREATED: frozenset({OrderStateFilter.LOCKED, OrderStateFilter.CANCELLED}),
    OrderStateFilter.LOCKED: frozenset({OrderStateFilter.COMPLETED}),
    OrderStateFilter.COMPLETED: frozenset(),
    OrderStateFilter.CANCELLED: frozenset(),
}


def can_transition(current: OrderStateFilter, target: OrderStateFilter) -> bool:
    return target in VALID_TRANSITIONS[current]


# =============================================================================
# FILTERS
# =============================================================================


class ByOfframperId(BaseModel):
    kind: Literal["ByOfframperId"] = "ByOfframperId"
    user_id: int


class ByOnramperId(BaseModel):
    kind: Literal["ByOnramperId"] = "ByOnramperId"
    user_id: int


class ByOfframperAddress(BaseModel):
    kind: Literal["ByOfframperAddress"] = "ByOfframperAddress"
    address: TransactionAddress


class LockedByOnramper(BaseModel):
    kind: Literal["LockedByOnramper"] = "LockedByOnramper"
    address: TransactionAddress


class ByState(BaseModel):
    kind: Literal["ByState"] = "ByState"
    state: OrderStateFilter


class ByBlockchain(BaseModel):
    kind: Literal["ByBlockchain"] = "ByBlockchain"
    blockchain: Blockchain


class ByChainId(BaseModel):
    """Client-side only: EVM orders on one chain id."""

    kind: Literal["ByChainId"] = "ByChainId"
    chain_id: int


OrderFilter = Annotated[
    Union[
        ByOfframperId,
        ByOnramperId,
        ByOfframperAddress,
        LockedByOnramper,
        ByState,
        ByBlockchain,
        ByChainId,
    ],
    Field(discriminator="kind"),
]


# =============================================================================
# MISC SERVICE PAYLOADS
# =============================================================================


class IcpTokenInfo(BaseModel):
    """Identity-chain ledger metadata returned by the service."""

    symbol: str = ""
    decimals: int = 8
    fee: BigInt


CredentialAdapter: TypeAdapter = TypeAdapter(Credential)
PaymentProviderAdapter: TypeAdapter = TypeAdapter(PaymentProvider)
BlockchainAdapter: TypeAdapter = TypeAdapter(Blockchain)
OrderStateAdapter: TypeAdapter = TypeAdapter(OrderState)
OrderStateListAdapter: TypeAdapter = TypeAdapter(List[OrderState])
OrderFilterAdapter: TypeAdapter = TypeAdapter(OrderFilter)
