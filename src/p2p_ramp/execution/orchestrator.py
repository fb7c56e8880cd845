"""
Order lifecycle orchestration.

Drives an order through the service's state machine:

    Created --lock--> Locked --verify--> Completed
       |
       +--cancel--> Cancelled

The order service performs every transition; the client only sequences the
calls around them and mirrors state through reads.

Create sequencing (order matters, funds move in step 4):
    1. session must be usable
    2. resolve the token (decimals, native or not)
    3. EVM: estimate both gas legs and the fees; reject if the crypto fee
       would consume the whole amount
    4. escrow the funds: vault deposit (EVM) or ledger transfer of
       amount + fee to the service account (identity chain)
    5. only after step 4 succeeded, submit the order

A failure in step 5 leaves the deposit in the vault under the offramper's
address. It is reported as ``StrandedDepositError`` and recovered manually
through ``withdraw_from_vault``; nothing is compensated automatically.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from p2p_ramp.chains.evm import EvmGateway
from p2p_ramp.chains.icp import IdentityLedger, transfer_to_service
from p2p_ramp.chains.tokens import TokenCatalog, TokenOption
from p2p_ramp.errors import (
    FeesExceedAmountError,
    InvalidInputError,
    InvalidOrderStateError,
    NetworkError,
    NoAddressForBlockchainError,
    ProviderNotOfferedError,
    RateUnavailableError,
    ServiceRejectedError,
    StrandedDepositError,
    UnsupportedChainError,
    UserRoleError,
)
from p2p_ramp.execution.filters import apply_filters, service_filter
from p2p_ramp.execution.gas import FeeEstimate, GasFeeEstimator, GasOperation
from p2p_ramp.execution.rates import ExchangeRateCache
from p2p_ramp.service.client import OrderServiceClient
from p2p_ramp.service.models import (
    Blockchain,
    CreatedOrderState,
    EvmChain,
    IcpChain,
    LockedOrderState,
    OrderFilter,
    OrderState,
    PaymentProvider,
    SolanaChain,
    TransactionAddress,
    User,
)

if TYPE_CHECKING:
    from p2p_ramp.auth.manager import AuthenticationManager
    from p2p_ramp.execution.balance_tracker import BalanceTracker

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorConfig:
    service_account: Optional[str] = None  # identity-chain account receiving deposits
    default_commit_gas: int = 80_000
    default_release_gas: int = 100_000


@dataclass
class CreateOrderRequest:
    blockchain: Blockchain
    token_address: Optional[str]  # None = native asset (EVM) / the chain's ledger (identity chain)
    crypto_amount_units: int
    currency: str
    providers: Sequence[PaymentProvider]
    fiat_amount_minor: Optional[int] = None  # quoted from the exchange rate if omitted


@dataclass
class CreateOrderResult:
    order_id: int
    fiat_amount_minor: int
    deposit_reference: str
    fees: Optional[FeeEstimate] = None
    estimated_gas_lock: Optional[int] = None
    estimated_gas_release: Optional[int] = None


def _receipt_reference(receipt: Dict[str, Any]) -> str:
    tx_hash = receipt.get("transactionHash")
    if tx_hash is None:
        return "unknown"
    return tx_hash.hex() if hasattr(tx_hash, "hex") else str(tx_hash)


class OrderLifecycleOrchestrator:
    """
    Usage:
        orchestrator = OrderLifecycleOrchestrator(
            auth, service, catalog, rates, gas=estimator, evm=gateway
        )
        result = await orchestrator.create_order(CreateOrderRequest(
            blockchain=EvmChain(chain_id=11155111),
            token_address=None,
            crypto_amount_units=5 * 10**16,
            currency="USD",
            providers=[PayPalProvider(id="offramper@example.org")],
        ))
    """

    def __init__(
        self,
        auth: "AuthenticationManager",
        service: OrderServiceClient,
        catalog: TokenCatalog,
        rates: ExchangeRateCache,
        gas: Optional[GasFeeEstimator] = None,
        evm: Optional[EvmGateway] = None,
        ledger: Optional[IdentityLedger] = None,
        balances: Optional["BalanceTracker"] = None,
        config: Optional[OrchestratorConfig] = None,
    ) -> None:
        self._auth = auth
        self._service = service
        self._catalog = catalog
        self._rates = rates
        self._gas = gas
        self._evm = evm
        self._ledger = ledger
        self._balances = balances
        self._config = config or OrchestratorConfig()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_evm(self) -> EvmGateway:
        if self._evm is None:
            raise UnsupportedChainError("No EVM gateway configured")
        return self._evm

    @staticmethod
    def _address_for(user: User, blockchain: Blockchain) -> TransactionAddress:
        if isinstance(blockchain, SolanaChain):
            raise UnsupportedChainError("Solana is not supported")
        address = user.address_for(blockchain.address_type)
        if address is None:
            raise NoAddressForBlockchainError(blockchain.address_type.value)
        return address

    def _resolve_token(self, blockchain: Blockchain, token_address: Optional[str]) -> TokenOption:
        if isinstance(blockchain, IcpChain):
            # The ledger principal names the token that moves on the identity chain
            if token_address and token_address != blockchain.ledger_principal:
                raise InvalidInputError(
                    f"Token {token_address} does not match ledger {blockchain.ledger_principal}"
                )
            token_address = blockchain.ledger_principal
        token = self._catalog.find(blockchain, token_address)
        if token is None:
            raise InvalidInputError(f"Unknown token {token_address or 'native'}")
        return token

    def _balances_moved(self) -> None:
        if self._balances is not None:
            self._balances.invalidate()

    async def quote_fiat_amount(
        self,
        currency: str,
        blockchain: Blockchain,
        token_address: Optional[str],
        crypto_amount_units: int,
    ) -> Optional[int]:
        """Fiat minor units for an amount, or None if no rate is available."""
        token = self._resolve_token(blockchain, token_address)
        return await self._rates.quote_fiat_amount(currency, token, crypto_amount_units)

    # =========================================================================
    # Create
    # =========================================================================

    async def create_order(self, request: CreateOrderRequest) -> CreateOrderResult:
        """
        Escrow funds and submit a new order.

        Raises:
            SessionError: No usable session
            UserRoleError: Caller is not an offramper
            UnsupportedChainError: Solana, or chain not configured
            NoAddressForBlockchainError: Caller has no address on the chain
            RateUnavailableError: No fiat amount given and no rate available
            FeesExceedAmountError: Crypto fee >= amount (nothing was deposited)
            VaultTransactionFailedError: Deposit failed (nothing was submitted)
            StrandedDepositError: Deposit succeeded, order submission failed
        """
        user, session = await self._auth.require_session()
        if not user.is_offramper:
            raise UserRoleError("Only offrampers can create orders")
        if request.crypto_amount_units <= 0:
            raise InvalidInputError("Crypto amount must be positive")
        if not request.providers:
            raise InvalidInputError("At least one payment provider is required")

        blockchain = request.blockchain
        address = self._address_for(user, blockchain)
        token = self._resolve_token(blockchain, request.token_address)
        units = request.crypto_amount_units

        fiat_amount = request.fiat_amount_minor
        if fiat_amount is None:
            fiat_amount = await self._rates.quote_fiat_amount(request.currency, token, units)
            if fiat_amount is None:
                raise RateUnavailableError(
                    f"No {token.rate_symbol}/{request.currency} rate to price the order"
                )

        fees: Optional[FeeEstimate] = None
        gas_lock: Optional[int] = None
        gas_release: Optional[int] = None
        order_token: Optional[str] = None

        if isinstance(blockchain, EvmChain):
            evm = self._require_evm()
            if self._gas is None:
                raise UnsupportedChainError("No gas estimator configured")
            chain_id = blockchain.chain_id
            order_token = None if token.is_native else token.address

            commit = await self._gas.estimate_gas_and_gas_price(
                chain_id, GasOperation.COMMIT, self._config.default_commit_gas
            )
            release = await self._gas.estimate_gas_and_gas_price(
                chain_id,
                GasOperation.RELEASE_NATIVE if token.is_native else GasOperation.RELEASE_TOKEN,
                self._config.default_release_gas,
            )
            fees = await self._gas.estimate_order_fees(
                chain_id, fiat_amount, units, order_token, commit, release, request.currency
            )
            if fees.crypto_fee >= units:
                raise FeesExceedAmountError(fees.crypto_fee, units)
            gas_lock, gas_release = commit.gas_units, release.gas_units

            receipt = await evm.deposit(chain_id, order_token, units, address.address)
            deposit_reference = _receipt_reference(receipt)

        elif isinstance(blockchain, IcpChain):
            if self._ledger is None or not self._config.service_account:
                raise UnsupportedChainError("Identity-chain deposits are not configured")
            info = await self._service.get_icp_token_info(blockchain.ledger_principal)
            block_index = await transfer_to_service(
                self._ledger,
                blockchain.ledger_principal,
                self._config.service_account,
                units,
                info.fee,
            )
            deposit_reference = f"{blockchain.ledger_principal}:{block_index}"

        else:
            raise UnsupportedChainError(f"Unsupported blockchain {blockchain!r}")

        self._balances_moved()

        try:
            order_id = await self._service.create_order(
                session.token,
                fiat_amount,
                request.currency,
                request.providers,
                blockchain,
                order_token,
                units,
                address,
                user.id,
                estimated_gas_lock=gas_lock,
                estimated_gas_release=gas_release,
            )
        except (ServiceRejectedError, NetworkError) as e:
            logger.error(
                f"Deposit {deposit_reference} of {units} {token.name} by user {user.id} is stranded: "
                f"order submission failed ({e}). Withdraw manually from the vault."
            )
            raise StrandedDepositError(deposit_reference, e) from e

        logger.info(
            f"Order {order_id} created: {units} {token.name} for {fiat_amount} {request.currency} "
            f"minor units (deposit {deposit_reference})"
        )
        return CreateOrderResult(
            order_id=order_id,
            fiat_amount_minor=fiat_amount,
            deposit_reference=deposit_reference,
            fees=fees,
            estimated_gas_lock=gas_lock,
            estimated_gas_release=gas_release,
        )

    # =========================================================================
    # Lock / verify / cancel
    # =========================================================================

    async def lock_order(
        self,
        order_state: OrderState,
        provider: PaymentProvider,
        address: Optional[TransactionAddress] = None,
        gas_override: Optional[int] = None,
    ) -> str:
        """
        Reserve a Created order for the calling onramper.

        The provider must be of a type the offramper offered; only the type is
        compared, since each side lists its own account ids.

        Returns:
            The service's transaction reference
        """
        user, session = await self._auth.require_session()
        if not isinstance(order_state, CreatedOrderState):
            raise InvalidOrderStateError(order_state.order_id, order_state.state, "lock")
        if not user.is_onramper:
            raise UserRoleError("Only onrampers can lock orders")

        order = order_state.order
        if provider.provider_type not in order.offramper_providers:
            raise ProviderNotOfferedError(
                f"Order {order.id} does not accept {provider.provider_type.value}"
            )

        blockchain = order.crypto.blockchain
        if address is None:
            address = self._address_for(user, blockchain)
        elif address.address_type != blockchain.address_type:
            raise NoAddressForBlockchainError(blockchain.address_type.value)

        tx_ref = await self._service.lock_order(
            order.id,
            provider,
            address,
            gas_override,
            session_token=session.token,
            user_id=user.id,
        )
        logger.info(f"Order {order.id} locked by user {user.id} via {provider.provider_type.value}")
        return tx_ref

    async def verify_transaction(
        self,
        order_state: OrderState,
        provider_transaction_id: str,
        gas_override: Optional[int] = None,
    ) -> None:
        """
        Report the onramper's off-chain payment.

        On success the service releases the escrow on-chain itself; the client
        submits no release transaction.
        """
        user, session = await self._auth.require_session()
        if not isinstance(order_state, LockedOrderState):
            raise InvalidOrderStateError(order_state.order_id, order_state.state, "verify")
        if not user.is_onramper or order_state.order.onramper.user_id != user.id:
            raise UserRoleError("Only the onramper holding the lock can verify payment")
        if not provider_transaction_id:
            raise InvalidInputError("Provider transaction id is empty")

        await self._service.verify_transaction(
            order_state.order_id,
            provider_transaction_id,
            gas_override,
            session_token=session.token,
        )
        logger.info(f"Order {order_state.order_id} payment verified")

    async def cancel_order(self, order_state: OrderState) -> None:
        """
        Withdraw the escrow and cancel a Created order.

        EVM orders are withdrawn from the vault first; if that transaction
        fails the order stays Created and the service is not called.
        """
        user, session = await self._auth.require_session()
        if not isinstance(order_state, CreatedOrderState):
            raise InvalidOrderStateError(order_state.order_id, order_state.state, "cancel")
        order = order_state.order
        if not user.is_offramper or order.offramper_user_id != user.id:
            raise UserRoleError("Only the offramper who created the order can cancel it")

        blockchain = order.crypto.blockchain
        if isinstance(blockchain, EvmChain):
            await self._require_evm().withdraw(
                blockchain.chain_id,
                order.crypto.token,
                order.crypto.amount,
                order.offramper_address.address,
            )
            self._balances_moved()
        elif isinstance(blockchain, SolanaChain):
            raise UnsupportedChainError("Solana is not supported")

        await self._service.cancel_order(order.id, session_token=session.token)
        logger.info(f"Order {order.id} cancelled")

    async def withdraw_from_vault(
        self, chain_id: int, token_address: Optional[str], amount: int
    ) -> Dict[str, Any]:
        """
        Manually withdraw uncommitted vault funds, e.g. a stranded deposit.

        Never called automatically.
        """
        user, _ = await self._auth.require_session()
        if not user.is_offramper:
            raise UserRoleError("Only offrampers hold vault deposits")
        address = self._address_for(user, EvmChain(chain_id=chain_id))
        receipt = await self._require_evm().withdraw(chain_id, token_address, amount, address.address)
        self._balances_moved()
        logger.info(f"Withdrew {amount} from vault on chain {chain_id} ({_receipt_reference(receipt)})")
        return receipt

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_orders(
        self,
        order_filter: Optional[OrderFilter] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
        extra_filters: Sequence[OrderFilter] = (),
    ) -> List[OrderState]:
        """
        Query orders; ``extra_filters`` and client-only filters are applied locally.

        Pagination applies to the service query, before local filtering.
        """
        orders = await self._service.get_orders(service_filter(order_filter), page, page_size)
        filters = list(extra_filters)
        if order_filter is not None:
            filters.append(order_filter)
        return apply_filters(orders, filters)
