"""
Exception taxonomy for the ramp client.

Four families mirror the trust domains the client reconciles:

    CredentialError  - the order service rejected the credential proof
    SessionError     - no usable session for an authenticated operation
    OrderError       - order lifecycle failures (chain, vault, fee guard,
                       or a service-reported rejection)
    NetworkError     - RPC or order service unreachable / malformed reply

Service `Err` envelopes carry a tagged variant; `ramp_error_to_string`
renders it for display and `ServiceRejectedError` keeps the raw variant so
callers can branch on the tag.
"""
from __future__ import annotations

import json
from typing import Any, Optional

UNKNOWN_ERROR = "An unknown error occurred"


def ramp_error_to_string(error: Any) -> str:
    """
    Render a service error variant for display.

    Variants arrive as JSON: a bare tag (``"OrderNotFound"``), a tag with a
    null payload (``{"OrderNotFound": null}``), a unit nested variant
    encoded as a string (``{"UserError": "InvalidPassword"}``) or a two-level variant
    (``{"UserError": {"UserNotFound": null}}``).

    Examples:
        >>> ramp_error_to_string({"UserError": {"UserNotFound": None}})
        'UserError: UserNotFound'
        >>> ramp_error_to_string({"BlockchainError": {"ChainIdNotFound": 5}})
        'BlockchainError: ChainIdNotFound - 5'
    """
    if isinstance(error, str):
        return error or UNKNOWN_ERROR
    if not isinstance(error, dict) or not error:
        return UNKNOWN_ERROR

    key, value = next(iter(error.items()))

    if isinstance(value, dict) and value:
        nested_key, nested_value = next(iter(value.items()))
        if nested_value is None:
            return f"{key}: {nested_key}"
        if isinstance(nested_value, (list, dict)):
            return f"Error: {key} - {nested_key} - {json.dumps(nested_value, default=str)}"
        return f"{key}: {nested_key} - {nested_value}"

    # A bare string payload is a unit nested variant in the JSON encoding
    if isinstance(value, str) and value:
        return f"{key}: {value}"
    if isinstance(value, list):
        return f"Error: {key} - {json.dumps(value, default=str)}"
    return f"{key}"


def variant_tags(error: Any) -> tuple[str, ...]:
    """Return the (outer, inner) tag path of a variant, e.g. ("UserError", "UserNotFound")."""
    if isinstance(error, str):
        return (error,)
    if not isinstance(error, dict) or not error:
        return ()
    key, value = next(iter(error.items()))
    if isinstance(value, dict) and value:
        return (key, next(iter(value)))
    if isinstance(value, str):
        return (key, value)
    return (key,)


class RampClientError(Exception):
    """Base class for all ramp client errors."""


# =============================================================================
# Credential errors
# =============================================================================


class CredentialError(RampClientError):
    """Credential proof was rejected or could not be produced."""


class UserNotFoundError(CredentialError):
    """No user is registered for this credential. Callers redirect to registration."""


class InvalidPasswordError(CredentialError):
    """Email login with a wrong password."""


class UnauthorizedPrincipalError(CredentialError):
    """Identity-chain login with a principal the service does not accept."""


class MissingProofError(CredentialError):
    """The proof required by the credential kind was not supplied."""


# =============================================================================
# Session errors
# =============================================================================


class SessionError(RampClientError):
    """No usable session for an authenticated operation."""


class SessionExpiredError(SessionError):
    """Session expires within the renewal margin; the user was logged out."""


class SessionNotSetError(SessionError):
    """No session is held, or the service returned a user without one."""


# =============================================================================
# Order errors
# =============================================================================


class OrderError(RampClientError):
    """Base class for order lifecycle failures."""


class UnsupportedChainError(OrderError):
    """The blockchain is reserved or not configured for this client."""


class NoAddressForBlockchainError(OrderError):
    """The user has no registered address of the chain kind the order needs."""

    def __init__(self, chain_kind: str):
        self.chain_kind = chain_kind
        super().__init__(f"No address available for blockchain {chain_kind}")


class FeesExceedAmountError(OrderError):
    """Estimated crypto fee would consume the entire principal."""

    def __init__(self, crypto_fee: int, crypto_amount: int):
        self.crypto_fee = crypto_fee
        self.crypto_amount = crypto_amount
        super().__init__(
            f"Fees would consume the entire principal: fee {crypto_fee} >= amount {crypto_amount}"
        )


class VaultTransactionFailedError(OrderError):
    """An on-chain vault or token transaction reverted, failed or was rejected."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class ServiceRejectedError(OrderError):
    """The order service answered with an `Err` envelope."""

    def __init__(self, variant: Any, method: Optional[str] = None):
        self.variant = variant
        self.method = method
        super().__init__(ramp_error_to_string(variant))

    @property
    def tags(self) -> tuple[str, ...]:
        return variant_tags(self.variant)

    def is_variant(self, *path: str) -> bool:
        """True if the variant's tag path ends with ``path`` (e.g. "UserNotFound")."""
        tags = self.tags
        return len(path) <= len(tags) and tags[-len(path):] == path


class InvalidOrderStateError(OrderError):
    """Operation is not valid for the order's current state."""

    def __init__(self, order_id: Optional[int], state: str, operation: str):
        self.order_id = order_id
        self.state = state
        self.operation = operation
        super().__init__(f"Cannot {operation} order {order_id} in state {state}")


class UserRoleError(OrderError):
    """Operation reserved for the other side of the trade."""


class ProviderNotOfferedError(OrderError):
    """Lock requested with a provider type the offramper did not list."""


class RateUnavailableError(OrderError):
    """An exchange rate needed for fiat or fee math is unavailable."""


class StrandedDepositError(OrderError):
    """
    Deposit landed in the vault but the paired order submission failed.

    Funds sit in the vault under the depositor's address until withdrawn
    manually; nothing is compensated automatically.
    """

    def __init__(self, deposit_reference: str, cause: Exception):
        self.deposit_reference = deposit_reference
        self.cause = cause
        super().__init__(
            f"Deposit {deposit_reference} succeeded but order submission failed: {cause}. "
            f"Funds remain in the vault pending manual withdrawal."
        )


class LedgerError(OrderError):
    """An identity-chain ledger query or transfer failed (raised by host ledgers)."""


class InvalidInputError(RampClientError):
    """Locally rejected input (e.g. incomplete payment provider details)."""


# =============================================================================
# Network errors
# =============================================================================


class NetworkError(RampClientError):
    """RPC or service unreachable, or the response was malformed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
