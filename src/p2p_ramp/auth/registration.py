"""
Email registration and password reset.

Both flows park a payload in durable storage under a fresh uuid4
confirmation token, email a link carrying the token, and complete when the
token comes back. Payloads are single-use (popped on read) and expire after
``pending_ttl_seconds``.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import httpx
from pydantic import BaseModel, ValidationError

from p2p_ramp.auth.manager import AuthenticationManager
from p2p_ramp.errors import CredentialError, NetworkError
from p2p_ramp.service.client import OrderServiceClient
from p2p_ramp.service.models import (
    EmailCredential,
    PaymentProvider,
    User,
    UserType,
    validate_provider,
)
from p2p_ramp.storage.client_store import ClientStore

logger = logging.getLogger(__name__)

PENDING_REGISTRATION_PREFIX = "pending_registration:"
PENDING_RESET_PREFIX = "pending_password_reset:"


@dataclass
class RegistrationConfig:
    pending_ttl_seconds: float = 3600.0


class PendingRegistration(BaseModel):
    user_type: UserType
    providers: List[PaymentProvider]
    credential: EmailCredential
    password: str
    created_at: float


class PendingPasswordReset(BaseModel):
    credential: EmailCredential
    created_at: float


class EmailNotifier:
    """Client of the transactional email server."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        link_domain: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._link_domain = link_domain
        self._timeout = timeout
        self._transport = transport

    async def _post(self, path: str, body: dict) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}{path}",
                    json=body,
                    headers={"x-access-token": self._access_token},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"Email server rejected {path}: {e.response.status_code}",
                status_code=e.response.status_code,
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"Email server unreachable: {e}")

    async def send_confirmation_email(self, to: str, token: str) -> None:
        await self._post(
            "/send-confirmation-email",
            {"to": to, "token": token, "domain": self._link_domain},
        )

    async def send_password_reset_email(self, to: str, token: str) -> None:
        await self._post(
            "/send-password-reset-email",
            {"to": to, "resetToken": token, "domain": self._link_domain},
        )


class RegistrationFlow:
    """
    Usage:
        flow = RegistrationFlow(auth, service, store, notifier)
        token = await flow.start_registration(UserType.ONRAMPER, providers, email, password)
        # ... user follows the emailed link ...
        user = await flow.confirm_registration(token)
    """

    def __init__(
        self,
        auth: AuthenticationManager,
        service: OrderServiceClient,
        store: ClientStore,
        notifier: EmailNotifier,
        config: Optional[RegistrationConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._auth = auth
        self._service = service
        self._store = store
        self._notifier = notifier
        self._config = config or RegistrationConfig()
        self._clock = clock

    def _expired(self, created_at: float) -> bool:
        return self._clock() - created_at >= self._config.pending_ttl_seconds

    async def start_registration(
        self,
        user_type: UserType,
        providers: Sequence[PaymentProvider],
        credential: EmailCredential,
        password: str,
    ) -> str:
        """
        Park a registration and email its confirmation link.

        Returns:
            The confirmation token
        """
        for provider in providers:
            validate_provider(provider, user_type)

        token = str(uuid.uuid4())
        pending = PendingRegistration(
            user_type=user_type,
            providers=list(providers),
            credential=credential,
            password=password,
            created_at=self._clock(),
        )
        key = PENDING_REGISTRATION_PREFIX + token
        await self._store.set(key, pending.model_dump_json())
        try:
            await self._notifier.send_confirmation_email(credential.email, token)
        except NetworkError:
            await self._store.delete(key)
            raise
        logger.info(f"Confirmation email sent for pending {user_type.value} registration")
        return token

    async def confirm_registration(self, token: str) -> User:
        """
        Register the parked user. The token is consumed even if registration fails.

        Raises:
            CredentialError: Unknown, already used or expired token
        """
        raw = await self._store.pop(PENDING_REGISTRATION_PREFIX + token)
        pending = self._parse(raw, PendingRegistration)
        return await self._auth.register(
            pending.user_type,
            pending.providers,
            pending.credential,
            password=pending.password,
        )

    async def start_password_reset(self, credential: EmailCredential) -> str:
        token = str(uuid.uuid4())
        pending = PendingPasswordReset(credential=credential, created_at=self._clock())
        key = PENDING_RESET_PREFIX + token
        await self._store.set(key, pending.model_dump_json())
        try:
            await self._notifier.send_password_reset_email(credential.email, token)
        except NetworkError:
            await self._store.delete(key)
            raise
        logger.info("Password reset email sent")
        return token

    async def complete_password_reset(self, token: str, new_password: str) -> None:
        raw = await self._store.pop(PENDING_RESET_PREFIX + token)
        pending = self._parse(raw, PendingPasswordReset)
        await self._service.update_password(pending.credential, new_password)
        logger.info("Password reset completed")

    def _parse(self, raw: Optional[str], model):
        if raw is None:
            raise CredentialError("Unknown or already used confirmation token")
        try:
            pending = model.model_validate_json(raw)
        except ValidationError:
            raise CredentialError("Corrupt pending confirmation record")
        if self._expired(pending.created_at):
            raise CredentialError("Confirmation token expired")
        return pending
