"""
Order Service - wire models and async client for the remote order ledger.

Public API:
    OrderServiceClient - aiohttp client (Ok/Err envelopes, Bearer sessions)
    unwrap - Envelope unwrapping
    Models: credentials, payment providers, blockchains, users, sessions,
        order states and order filters (pydantic discriminated unions)
"""
from p2p_ramp.service.client import OrderServiceClient, unwrap
from p2p_ramp.service.models import (
    AddressType,
    AuthenticationData,
    Blockchain,
    ByBlockchain,
    ByChainId,
    ByOfframperAddress,
    ByOfframperId,
    ByOnramperId,
    ByState,
    CancelledOrderState,
    CompletedOrder,
    CompletedOrderState,
    CreatedOrderState,
    Credential,
    Crypto,
    EmailCredential,
    EvmChain,
    EvmCredential,
    IcpChain,
    IcpTokenInfo,
    IdentityCredential,
    LockedByOnramper,
    LockedOrder,
    LockedOrderState,
    Onramper,
    Order,
    OrderFilter,
    OrderState,
    OrderStateFilter,
    PaymentProvider,
    PaymentProviderType,
    PayPalProvider,
    RevolutProvider,
    Session,
    SolanaChain,
    TransactionAddress,
    User,
    UserType,
    can_transition,
    validate_provider,
)

__all__ = [
    "OrderServiceClient",
    "unwrap",
    "AddressType",
    "AuthenticationData",
    "Blockchain",
    "ByBlockchain",
    "ByChainId",
    "ByOfframperAddress",
    "ByOfframperId",
    "ByOnramperId",
    "ByState",
    "CancelledOrderState",
    "CompletedOrder",
    "CompletedOrderState",
    "CreatedOrderState",
    "Credential",
    "Crypto",
    "EmailCredential",
    "EvmChain",
    "EvmCredential",
    "IcpChain",
    "IcpTokenInfo",
    "IdentityCredential",
    "LockedByOnramper",
    "LockedOrder",
    "LockedOrderState",
    "Onramper",
    "Order",
    "OrderFilter",
    "OrderState",
    "OrderStateFilter",
    "PaymentProvider",
    "PaymentProviderType",
    "PayPalProvider",
    "RevolutProvider",
    "Session",
    "SolanaChain",
    "TransactionAddress",
    "User",
    "UserType",
    "can_transition",
    "validate_provider",
]
