"""
Authentication and session lifecycle.

Three credential kinds, three proofs:

    EVM address         signature over a service-issued challenge
    identity principal  delegated identity (request headers)
    email               password

A successful proof yields a ``User`` carrying a ``Session``. The session is
written to durable storage before it becomes the in-memory session, so either
a complete session is held or none is.

A session is usable iff ``now + renewal_margin < expires_at``. Every
authenticated operation goes through ``require_session()``, which logs out
and raises on an expiring session instead of racing the token mid-flight.

Lifecycle:
    resume()   - on start: reload the durable record, reconcile with the service
    logout()   - revoke the delegated identity (best effort), clear all state
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from p2p_ramp.auth.session import SessionStore, truncate_token
from p2p_ramp.chains.icp import DelegatedIdentity
from p2p_ramp.errors import (
    InvalidPasswordError,
    MissingProofError,
    NetworkError,
    ServiceRejectedError,
    SessionExpiredError,
    SessionNotSetError,
    UnauthorizedPrincipalError,
)
from p2p_ramp.service.client import OrderServiceClient
from p2p_ramp.service.models import (
    AuthenticationData,
    Credential,
    EmailCredential,
    EvmCredential,
    IdentityCredential,
    PaymentProvider,
    Session,
    TransactionAddress,
    User,
    UserType,
    validate_provider,
)

logger = logging.getLogger(__name__)

NANOS_PER_SECOND = 1_000_000_000


@dataclass
class AuthConfig:
    renewal_margin_seconds: float = 240.0


@dataclass(frozen=True)
class AuthResult:
    """
    Outcome of a credential proof.

    ``needs_registration`` is set (and ``user`` is None) when the service
    knows no user for the credential; callers redirect to registration.
    """

    user: Optional[User] = None
    needs_registration: bool = False


class AuthenticationManager:
    """
    Holds the current user, session and delegated identity.

    Usage:
        auth = AuthenticationManager(service, SessionStore(store))
        await auth.resume()

        challenge = await auth.begin_challenge(EvmCredential(address=addr))
        result = await auth.prove_and_authenticate(
            EvmCredential(address=addr), signature=wallet.sign(challenge)
        )
        if result.needs_registration:
            ...

        user, session = await auth.require_session()
    """

    def __init__(
        self,
        service: OrderServiceClient,
        sessions: SessionStore,
        config: Optional[AuthConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._service = service
        self._sessions = sessions
        self._config = config or AuthConfig()
        self._clock = clock

        self._user: Optional[User] = None
        self._identity: Optional[DelegatedIdentity] = None

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def identity(self) -> Optional[DelegatedIdentity]:
        return self._identity

    def _now_ns(self) -> int:
        return int(self._clock() * NANOS_PER_SECOND)

    def is_expired(self, user: Optional[User] = None) -> bool:
        """True if there is no session or it expires within the renewal margin."""
        user = user if user is not None else self._user
        if user is None or user.session is None:
            return True
        margin_ns = int(self._config.renewal_margin_seconds * NANOS_PER_SECOND)
        return user.session.expires_at <= self._now_ns() + margin_ns

    async def require_session(self) -> Tuple[User, Session]:
        """
        The current user and its usable session.

        Raises:
            SessionNotSetError: If nobody is logged in
            SessionExpiredError: If the session is expiring (the user is logged out)
        """
        if self._user is None or self._user.session is None:
            raise SessionNotSetError("Not logged in")
        if self.is_expired():
            logger.info(f"Session for user {self._user.id} expired, logging out")
            await self.logout()
            raise SessionExpiredError("Session expired, please log in again")
        return self._user, self._user.session

    # =========================================================================
    # Login
    # =========================================================================

    async def begin_challenge(self, credential: Credential) -> Optional[str]:
        """
        Start a login. Only EVM credentials need a challenge round-trip.

        Returns:
            The message to sign for EVM credentials, otherwise None
        """
        if isinstance(credential, EvmCredential):
            return await self._service.generate_evm_auth_message(credential)
        return None

    async def prove_and_authenticate(
        self,
        credential: Credential,
        *,
        signature: Optional[str] = None,
        password: Optional[str] = None,
        identity: Optional[DelegatedIdentity] = None,
    ) -> AuthResult:
        """
        Exchange a proof for a session.

        A rejected proof leaves any existing session untouched.

        Raises:
            MissingProofError: The proof for this credential kind was not given
            InvalidPasswordError: Wrong password (email)
            UnauthorizedPrincipalError: Principal not accepted (identity chain)
            SessionNotSetError: The service returned a user without a session
            NetworkError: Service unreachable
        """
        identity_headers = None
        if isinstance(credential, EvmCredential):
            if not signature:
                raise MissingProofError("EVM login requires a signature")
        elif isinstance(credential, EmailCredential):
            if not password:
                raise MissingProofError("Email login requires a password")
        elif isinstance(credential, IdentityCredential):
            if identity is None:
                raise MissingProofError("Identity login requires a delegated identity")
            if identity.principal != credential.principal:
                raise UnauthorizedPrincipalError(
                    f"Delegated identity {identity.principal} does not match {credential.principal}"
                )
            identity_headers = identity.auth_headers()

        try:
            user = await self._service.authenticate_user(
                credential,
                AuthenticationData(signature=signature, password=password),
                identity_headers=identity_headers,
            )
        except ServiceRejectedError as e:
            if e.is_variant("UserNotFound"):
                logger.info(f"No user for {credential.address_type.value} credential, registration needed")
                return AuthResult(needs_registration=True)
            if e.is_variant("InvalidPassword"):
                raise InvalidPasswordError(str(e))
            if e.is_variant("UnauthorizedPrincipal"):
                raise UnauthorizedPrincipalError(str(e))
            raise

        if user.session is None:
            raise SessionNotSetError("Authentication succeeded but no session was issued")

        await self._adopt(user, identity)
        logger.info(
            f"User {user.id} authenticated, session {truncate_token(user.session.token)} "
            f"expires at {user.session.expires_at}"
        )
        return AuthResult(user=user)

    async def _adopt(self, user: User, identity: Optional[DelegatedIdentity]) -> None:
        """Persist, then install, a freshly authenticated user."""
        await self._sessions.save_user(user)
        if self._identity is not None and self._identity is not identity:
            await self._revoke_identity()
        self._user = user
        self._identity = identity

    async def register(
        self,
        user_type: UserType,
        providers: Sequence[PaymentProvider],
        credential: Credential,
        password: Optional[str] = None,
        identity: Optional[DelegatedIdentity] = None,
    ) -> User:
        """
        Create a user. The result carries no session; log in afterwards.

        Raises:
            InvalidInputError: If a provider is incomplete for ``user_type``
        """
        for provider in providers:
            validate_provider(provider, user_type)
        user = await self._service.register_user(
            user_type,
            providers,
            credential,
            password=password,
            identity_headers=identity.auth_headers() if identity else None,
        )
        logger.info(f"Registered {user_type.value} user {user.id}")
        return user

    # =========================================================================
    # Session maintenance
    # =========================================================================

    async def refresh_user(self) -> Optional[User]:
        """
        Re-fetch the current user from the service.

        Any service-reported failure logs the user out.

        Returns:
            The refreshed user, or None if the user was logged out
        """
        user, session = await self.require_session()
        try:
            fresh = await self._service.refetch_user(user.id, session.token)
        except ServiceRejectedError as e:
            logger.warning(f"Refetch of user {user.id} rejected ({e}), logging out")
            await self.logout()
            return None

        if fresh.session is None:
            fresh = fresh.model_copy(update={"session": session})
        await self._sessions.save_user(fresh)
        self._user = fresh
        return fresh

    async def resume(self) -> Optional[User]:
        """
        Restore the durable session on start.

        An absent or expiring record logs out; otherwise the record is only
        trusted after the service confirms it.
        """
        stored = await self._sessions.load_user()
        if stored is None or self.is_expired(stored):
            await self.logout()
            return None

        self._user = stored
        try:
            return await self.refresh_user()
        except NetworkError:
            # Offline: keep the cached user until the next reconcile
            logger.warning(f"Could not reconcile stored session for user {stored.id}")
            return self._user

    async def _revoke_identity(self) -> None:
        identity, self._identity = self._identity, None
        if identity is None:
            return
        try:
            await identity.revoke()
        except Exception as e:
            logger.warning(f"Revoking delegated identity {identity.principal} failed: {e}")

    async def logout(self) -> None:
        """Clear all session state. Safe to call repeatedly; never raises on revoke failure."""
        await self._revoke_identity()
        had_user = self._user is not None
        self._user = None
        await self._sessions.clear()
        if had_user:
            logger.info("Logged out")

    # =========================================================================
    # Account management
    # =========================================================================

    async def add_payment_provider(self, provider: PaymentProvider) -> Optional[User]:
        user, session = await self.require_session()
        validate_provider(provider, user.user_type)
        await self._service.add_user_payment_provider(user.id, session.token, provider)
        return await self.refresh_user()

    async def add_transaction_address(self, address: TransactionAddress) -> Optional[User]:
        user, session = await self.require_session()
        await self._service.add_user_transaction_address(user.id, session.token, address)
        return await self.refresh_user()

    async def update_password(self, new_password: str) -> None:
        user, session = await self.require_session()
        if not isinstance(user.login, EmailCredential):
            raise MissingProofError("Only email logins have a password")
        await self._service.update_password(user.login, new_password, session_token=session.token)
        logger.info(f"Password updated for user {user.id}")

    async def get_preferred_currency(self, default: str = "USD") -> str:
        return await self._sessions.get_preferred_currency() or default

    async def set_preferred_currency(self, currency: str) -> None:
        await self._sessions.set_preferred_currency(currency.upper())
