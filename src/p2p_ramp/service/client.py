"""
Async client for the remote order service.

The order service is the authoritative ledger of users, sessions, orders and
exchange rates. Every method is ``POST {base_url}/api/{method}`` with a JSON
object body and answers with an ``{"Ok": value}`` / ``{"Err": variant}``
envelope.

Retry policy:
    - Reads (rates, orders, gas history, token info) go through the
      backoff loop, bounded by ``read_retries`` (default 1 attempt).
    - Mutations (authenticate, register, create/lock/verify/cancel) are
      attempted exactly once. A failed mutation is surfaced to the caller,
      who decides whether to re-trigger it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp
from pydantic import ValidationError

from p2p_ramp.errors import NetworkError, ServiceRejectedError
from p2p_ramp.service.models import (
    AuthenticationData,
    Blockchain,
    BlockchainAdapter,
    Credential,
    CredentialAdapter,
    IcpTokenInfo,
    OrderFilter,
    OrderFilterAdapter,
    OrderState,
    OrderStateListAdapter,
    PaymentProvider,
    PaymentProviderAdapter,
    TransactionAddress,
    User,
    UserType,
)

logger = logging.getLogger(__name__)


def unwrap(envelope: Any, method: Optional[str] = None) -> Any:
    """
    Unwrap an Ok/Err envelope.

    Raises:
        ServiceRejectedError: On an ``Err`` envelope
        NetworkError: If the body is not an envelope at all
    """
    if isinstance(envelope, dict) and len(envelope) == 1:
        if "Ok" in envelope:
            return envelope["Ok"]
        if "Err" in envelope:
            raise ServiceRejectedError(envelope["Err"], method=method)
    raise NetworkError(f"Malformed response from {method or 'order service'}: {envelope!r}")


class OrderServiceClient:
    """
    Async client for the order service API.

    Usage:
        async with OrderServiceClient("https://ramp.example.org") as service:
            rate = await service.get_exchange_rate("USD", "ETH")
            orders = await service.get_orders(ByState(state=OrderStateFilter.CREATED))
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        read_retries: int = 1,
        retry_delay: float = 0.5,
    ):
        """
        Initialize the client.

        Args:
            base_url: Order service root URL
            session: Optional aiohttp session (created if not provided)
            timeout: Request timeout in seconds
            read_retries: Attempts for idempotent reads (mutations always get one)
            retry_delay: Base delay between read retries (exponential backoff)
        """
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._read_retries = max(1, read_retries)
        self._retry_delay = retry_delay

    async def __aenter__(self) -> "OrderServiceClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def _request(
        self,
        method: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        idempotent: bool = False,
    ) -> Any:
        """
        POST one service method and return the decoded JSON body.

        Raises:
            NetworkError: Unreachable service, HTTP error, or non-JSON body
            asyncio.CancelledError: When task is cancelled (re-raised)
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        url = f"{self._base_url}/api/{method}"
        attempts = self._read_retries if idempotent else 1
        last_error: Optional[NetworkError] = None

        for attempt in range(attempts):
            if attempt:
                delay = self._retry_delay * (2 ** (attempt - 1))
                logger.warning(f"{method} failed ({last_error}), retry {attempt + 1}/{attempts} in {delay}s")
                await asyncio.sleep(delay)

            try:
                async with self._session.post(url, json=payload, headers=headers) as response:
                    if response.status >= 400:
                        text = await response.text()
                        last_error = NetworkError(
                            f"{method} returned HTTP {response.status}: {text}",
                            status_code=response.status,
                        )
                        # 4xx will not change on retry
                        if response.status < 500:
                            raise last_error
                        continue
                    return await response.json(content_type=None)

            except asyncio.CancelledError:
                logger.debug(f"{method} cancelled")
                raise

            except asyncio.TimeoutError:
                last_error = NetworkError(f"{method} timed out")

            except aiohttp.ClientError as e:
                last_error = NetworkError(f"{method} failed: {e}")

            except ValueError as e:
                raise NetworkError(f"{method} returned invalid JSON: {e}")

        raise last_error or NetworkError(f"{method} failed")

    async def _call(
        self,
        method: str,
        payload: Dict[str, Any],
        session_token: Optional[str] = None,
        extra_headers: Optional[Dict[str, str]] = None,
        idempotent: bool = False,
    ) -> Any:
        headers: Dict[str, str] = {}
        if session_token:
            headers["Authorization"] = f"Bearer {session_token}"
        if extra_headers:
            headers.update(extra_headers)
        body = await self._request(method, payload, headers=headers or None, idempotent=idempotent)
        return unwrap(body, method)

    @staticmethod
    def _parse_user(value: Any, method: str) -> User:
        try:
            return User.model_validate(value)
        except ValidationError as e:
            raise NetworkError(f"{method} returned a malformed user: {e}")

    # =========================================================================
    # Users and sessions
    # =========================================================================

    async def generate_evm_auth_message(self, credential: Credential) -> str:
        """Request a one-time challenge for an EVM login."""
        value = await self._call(
            "generate_evm_auth_message",
            {"login_address": CredentialAdapter.dump_python(credential, mode="json")},
        )
        return str(value)

    async def authenticate_user(
        self,
        credential: Credential,
        auth_data: Optional[AuthenticationData] = None,
        identity_headers: Optional[Dict[str, str]] = None,
    ) -> User:
        """Exchange a credential proof for a user carrying a fresh session."""
        value = await self._call(
            "authenticate_user",
            {
                "login_address": CredentialAdapter.dump_python(credential, mode="json"),
                "auth_data": auth_data.model_dump(mode="json") if auth_data else None,
            },
            extra_headers=identity_headers,
        )
        return self._parse_user(value, "authenticate_user")

    async def register_user(
        self,
        user_type: UserType,
        providers: Sequence[PaymentProvider],
        credential: Credential,
        password: Optional[str] = None,
        identity_headers: Optional[Dict[str, str]] = None,
    ) -> User:
        value = await self._call(
            "register_user",
            {
                "user_type": user_type.value,
                "payment_providers": [
                    PaymentProviderAdapter.dump_python(p, mode="json") for p in providers
                ],
                "login_address": CredentialAdapter.dump_python(credential, mode="json"),
                "password": password,
            },
            extra_headers=identity_headers,
        )
        return self._parse_user(value, "register_user")

    async def refetch_user(self, user_id: int, session_token: str) -> User:
        value = await self._call(
            "refetch_user",
            {"user_id": user_id},
            session_token=session_token,
            idempotent=True,
        )
        return self._parse_user(value, "refetch_user")

    async def add_user_payment_provider(
        self, user_id: int, session_token: str, provider: PaymentProvider
    ) -> None:
        await self._call(
            "add_user_payment_provider",
            {"user_id": user_id, "payment_provider": PaymentProviderAdapter.dump_python(provider, mode="json")},
            session_token=session_token,
        )

    async def add_user_transaction_address(
        self, user_id: int, session_token: str, address: TransactionAddress
    ) -> None:
        await self._call(
            "add_user_transaction_address",
            {"user_id": user_id, "address": address.model_dump(mode="json")},
            session_token=session_token,
        )

    async def update_password(
        self,
        credential: Credential,
        new_password: Optional[str],
        session_token: Optional[str] = None,
    ) -> None:
        """Set (or clear, with ``None``) the password of an email login."""
        await self._call(
            "update_password",
            {
                "login_address": CredentialAdapter.dump_python(credential, mode="json"),
                "new_password": new_password,
            },
            session_token=session_token,
        )

    # =========================================================================
    # Orders
    # =========================================================================

    async def create_order(
        self,
        session_token: str,
        fiat_amount: int,
        currency: str,
        providers: Sequence[PaymentProvider],
        blockchain: Blockchain,
        token_address: Optional[str],
        crypto_amount: int,
        address: TransactionAddress,
        user_id: int,
        estimated_gas_lock: Optional[int] = None,
        estimated_gas_release: Optional[int] = None,
    ) -> int:
        """Submit a new order. Returns the service-assigned order id."""
        value = await self._call(
            "create_order",
            {
                "fiat_amount": str(fiat_amount),
                "currency": currency,
                "offramper_providers": [
                    [p.provider_type.value, PaymentProviderAdapter.dump_python(p, mode="json")]
                    for p in providers
                ],
                "blockchain": BlockchainAdapter.dump_python(blockchain, mode="json"),
                "token_address": token_address,
                "crypto_amount": str(crypto_amount),
                "offramper_address": address.model_dump(mode="json"),
                "offramper_user_id": user_id,
                "estimated_gas_lock": str(estimated_gas_lock) if estimated_gas_lock is not None else None,
                "estimated_gas_release": (
                    str(estimated_gas_release) if estimated_gas_release is not None else None
                ),
            },
            session_token=session_token,
        )
        try:
            return int(value)
        except (TypeError, ValueError):
            raise NetworkError(f"create_order returned a non-numeric order id: {value!r}")

    async def lock_order(
        self,
        order_id: int,
        provider: PaymentProvider,
        address: TransactionAddress,
        gas_override: Optional[int] = None,
        *,
        session_token: str,
        user_id: int,
    ) -> str:
        """Reserve a Created order for the calling onramper. Returns a transaction reference."""
        value = await self._call(
            "lock_order",
            {
                "order_id": order_id,
                "onramper_user_id": user_id,
                "onramper_provider": PaymentProviderAdapter.dump_python(provider, mode="json"),
                "onramper_address": address.model_dump(mode="json"),
                "estimated_gas": str(gas_override) if gas_override is not None else None,
            },
            session_token=session_token,
        )
        return str(value)

    async def verify_transaction(
        self,
        order_id: int,
        provider_transaction_id: str,
        gas_override: Optional[int] = None,
        *,
        session_token: str,
    ) -> None:
        await self._call(
            "verify_transaction",
            {
                "order_id": order_id,
                "transaction_id": provider_transaction_id,
                "estimated_gas": str(gas_override) if gas_override is not None else None,
            },
            session_token=session_token,
        )

    async def cancel_order(self, order_id: int, *, session_token: str) -> None:
        await self._call("cancel_order", {"order_id": order_id}, session_token=session_token)

    async def get_orders(
        self,
        order_filter: Optional[OrderFilter] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> List[OrderState]:
        """
        Query orders.

        The service answers either a bare list or a page envelope
        ``{"orders": [...], "total": n}``; both are accepted.
        """
        value = await self._call(
            "get_orders",
            {
                "filter": OrderFilterAdapter.dump_python(order_filter, mode="json") if order_filter else None,
                "page": page,
                "page_size": page_size,
            },
            idempotent=True,
        )
        if isinstance(value, dict):
            value = value.get("orders", [])
        try:
            return OrderStateListAdapter.validate_python(value)
        except ValidationError as e:
            raise NetworkError(f"get_orders returned malformed orders: {e}")

    # =========================================================================
    # Rates, gas and ledgers
    # =========================================================================

    async def get_exchange_rate(self, currency: str, token_symbol: str) -> float:
        value = await self._call(
            "get_exchange_rate",
            {"fiat_symbol": currency, "crypto_symbol": token_symbol},
            idempotent=True,
        )
        try:
            return float(value)
        except (TypeError, ValueError):
            raise NetworkError(f"get_exchange_rate returned a non-numeric rate: {value!r}")

    async def get_average_gas_prices(
        self, chain_id: int, max_blocks_in_past: int, method: str
    ) -> Optional[Tuple[int, int]]:
        """
        Average (gas units, gas price) the service observed for ``method``.

        Returns:
            None if the service has no history for the chain and method
        """
        value = await self._call(
            "get_average_gas_prices",
            {"chain_id": chain_id, "max_blocks_in_past": max_blocks_in_past, "method": method},
            idempotent=True,
        )
        if not value:
            return None
        # The service wraps the record in an optional: [] or [[gas, price]]
        if isinstance(value, list) and len(value) == 1 and isinstance(value[0], (list, tuple)):
            value = value[0]
        try:
            gas, price = value
            return int(gas), int(price)
        except (TypeError, ValueError):
            raise NetworkError(f"get_average_gas_prices returned {value!r}")

    async def get_icp_token_info(self, ledger_principal: str) -> IcpTokenInfo:
        value = await self._call(
            "get_icp_token_info",
            {"ledger_principal": ledger_principal},
            idempotent=True,
        )
        try:
            return IcpTokenInfo.model_validate(value)
        except ValidationError as e:
            raise NetworkError(f"get_icp_token_info returned malformed data: {e}")
