"""
Authentication manager tests.

These tests verify:
- Each credential kind requires its own proof
- UserNotFound turns into a registration redirect, not an error
- Sessions expiring within the renewal margin log the user out
- logout() is idempotent and survives revoke failures
- resume() reconciles the durable record with the service
"""
from typing import Dict
from unittest.mock import AsyncMock

import pytest

from p2p_ramp.auth.manager import AuthConfig, AuthenticationManager
from p2p_ramp.auth.session import USER_SESSION_KEY, SessionStore
from p2p_ramp.errors import (
    InvalidInputError,
    InvalidPasswordError,
    MissingProofError,
    NetworkError,
    ServiceRejectedError,
    SessionExpiredError,
    SessionNotSetError,
    UnauthorizedPrincipalError,
)
from p2p_ramp.service.models import (
    AddressType,
    EmailCredential,
    EvmCredential,
    IdentityCredential,
    PayPalProvider,
    RevolutProvider,
    TransactionAddress,
    UserType,
)

NANOS = 1_000_000_000


class FakeIdentity:
    def __init__(self, principal: str, fail_revoke: bool = False) -> None:
        self._principal = principal
        self.revoke = AsyncMock(side_effect=RuntimeError("agent gone") if fail_revoke else None)

    @property
    def principal(self) -> str:
        return self._principal

    def auth_headers(self) -> Dict[str, str]:
        return {"x-ic-principal": self._principal}


@pytest.fixture
def sessions(memory_store):
    return SessionStore(memory_store)


@pytest.fixture
def manager(mock_service, sessions, clock):
    return AuthenticationManager(mock_service, sessions, AuthConfig(renewal_margin_seconds=240), clock=clock)


async def _login(manager, mock_service, user):
    mock_service.authenticate_user.return_value = user
    return await manager.prove_and_authenticate(user.login, signature="0xsig", password="pw")


@pytest.mark.asyncio
class TestProveAndAuthenticate:
    async def test_evm_login_yields_live_session(self, manager, mock_service, offramper, memory_store, clock):
        mock_service.generate_evm_auth_message.return_value = "Sign this: 42"
        mock_service.authenticate_user.return_value = offramper

        challenge = await manager.begin_challenge(offramper.login)
        result = await manager.prove_and_authenticate(offramper.login, signature="0xsigned")

        assert challenge == "Sign this: 42"
        assert result.user.session.expires_at > clock.now * NANOS
        assert manager.user == offramper
        assert USER_SESSION_KEY in memory_store.data
        auth_data = mock_service.authenticate_user.call_args[0][1]
        assert auth_data.signature == "0xsigned"

    async def test_email_needs_no_challenge(self, manager, mock_service):
        assert await manager.begin_challenge(EmailCredential(email="a@b.c")) is None
        mock_service.generate_evm_auth_message.assert_not_awaited()

    @pytest.mark.parametrize(
        "credential",
        [
            EvmCredential(address="0xabc"),
            EmailCredential(email="a@b.c"),
            IdentityCredential(principal="aaaaa-aa"),
        ],
    )
    async def test_missing_proof(self, manager, mock_service, credential):
        with pytest.raises(MissingProofError):
            await manager.prove_and_authenticate(credential)
        mock_service.authenticate_user.assert_not_awaited()

    async def test_unknown_user_redirects_to_registration(self, manager, mock_service):
        mock_service.authenticate_user.side_effect = ServiceRejectedError({"UserError": {"UserNotFound": None}})

        result = await manager.prove_and_authenticate(EmailCredential(email="new@b.c"), password="pw")

        assert result.needs_registration
        assert result.user is None
        assert manager.user is None

    async def test_invalid_password(self, manager, mock_service):
        mock_service.authenticate_user.side_effect = ServiceRejectedError({"UserError": "InvalidPassword"})

        with pytest.raises(InvalidPasswordError):
            await manager.prove_and_authenticate(EmailCredential(email="a@b.c"), password="wrong")

    async def test_other_rejections_propagate(self, manager, mock_service):
        mock_service.authenticate_user.side_effect = ServiceRejectedError({"SystemError": "Busy"})

        with pytest.raises(ServiceRejectedError):
            await manager.prove_and_authenticate(EmailCredential(email="a@b.c"), password="pw")

    async def test_rejected_proof_keeps_existing_session(self, manager, mock_service, onramper):
        await _login(manager, mock_service, onramper)
        mock_service.authenticate_user.return_value = None
        mock_service.authenticate_user.side_effect = ServiceRejectedError({"UserError": "InvalidPassword"})

        with pytest.raises(InvalidPasswordError):
            await manager.prove_and_authenticate(onramper.login, password="wrong")

        assert manager.user == onramper

    async def test_missing_session_in_response(self, manager, mock_service, offramper):
        mock_service.authenticate_user.return_value = offramper.model_copy(update={"session": None})

        with pytest.raises(SessionNotSetError):
            await manager.prove_and_authenticate(offramper.login, signature="0xsig")
        assert manager.user is None

    async def test_identity_principal_must_match(self, manager, mock_service):
        with pytest.raises(UnauthorizedPrincipalError):
            await manager.prove_and_authenticate(
                IdentityCredential(principal="aaaaa-aa"), identity=FakeIdentity("bbbbb-bb")
            )
        mock_service.authenticate_user.assert_not_awaited()

    async def test_identity_login_sends_headers_and_replaces_old_identity(
        self, manager, mock_service, offramper
    ):
        mock_service.authenticate_user.return_value = offramper
        first, second = FakeIdentity("aaaaa-aa"), FakeIdentity("aaaaa-aa")

        await manager.prove_and_authenticate(IdentityCredential(principal="aaaaa-aa"), identity=first)
        await manager.prove_and_authenticate(IdentityCredential(principal="aaaaa-aa"), identity=second)

        assert mock_service.authenticate_user.call_args.kwargs["identity_headers"] == {
            "x-ic-principal": "aaaaa-aa"
        }
        first.revoke.assert_awaited_once()
        second.revoke.assert_not_awaited()
        assert manager.identity is second


@pytest.mark.asyncio
class TestSessionExpiry:
    async def test_no_session(self, manager):
        with pytest.raises(SessionNotSetError):
            await manager.require_session()

    async def test_live_session(self, manager, mock_service, offramper):
        await _login(manager, mock_service, offramper)

        user, session = await manager.require_session()
        assert user.id == offramper.id
        assert session.token == "session-token-abcdef"

    async def test_session_inside_renewal_margin_logs_out(self, manager, mock_service, offramper, memory_store, clock):
        await _login(manager, mock_service, offramper)
        clock.advance(12 * 3600 - 200)

        with pytest.raises(SessionExpiredError):
            await manager.require_session()

        assert manager.user is None
        assert USER_SESSION_KEY not in memory_store.data

    async def test_is_expired_boundary(self, manager, offramper, clock):
        clock.advance(12 * 3600 - 250)
        assert not manager.is_expired(offramper)
        clock.advance(20)
        assert manager.is_expired(offramper)


@pytest.mark.asyncio
class TestLogout:
    async def test_logout_twice_is_idempotent(self, manager, mock_service, offramper, memory_store):
        mock_service.authenticate_user.return_value = offramper
        identity = FakeIdentity("aaaaa-aa")
        await manager.prove_and_authenticate(IdentityCredential(principal="aaaaa-aa"), identity=identity)

        await manager.logout()
        await manager.logout()

        assert manager.user is None
        assert manager.identity is None
        assert memory_store.data == {}
        identity.revoke.assert_awaited_once()

    async def test_revoke_failure_is_not_raised(self, manager, mock_service, offramper):
        mock_service.authenticate_user.return_value = offramper
        identity = FakeIdentity("aaaaa-aa", fail_revoke=True)
        await manager.prove_and_authenticate(IdentityCredential(principal="aaaaa-aa"), identity=identity)

        await manager.logout()

        assert manager.identity is None
        assert manager.user is None


@pytest.mark.asyncio
class TestResume:
    async def test_nothing_stored(self, manager):
        assert await manager.resume() is None

    async def test_valid_record_is_reconciled(self, manager, mock_service, sessions, offramper):
        await sessions.save_user(offramper)
        refreshed = offramper.model_copy(update={"score": 5, "session": None})
        mock_service.refetch_user.return_value = refreshed

        user = await manager.resume()

        assert user.score == 5
        # The service answer carries no session; the stored one is kept
        assert user.session == offramper.session
        mock_service.refetch_user.assert_awaited_once_with(1, "session-token-abcdef")

    async def test_expired_record_is_cleared(self, manager, mock_service, sessions, offramper, memory_store, clock):
        await sessions.save_user(offramper)
        clock.advance(13 * 3600)

        assert await manager.resume() is None
        assert memory_store.data == {}
        mock_service.refetch_user.assert_not_awaited()

    async def test_offline_keeps_cached_user(self, manager, mock_service, sessions, offramper):
        await sessions.save_user(offramper)
        mock_service.refetch_user.side_effect = NetworkError("offline")

        user = await manager.resume()

        assert user == offramper
        assert manager.user == offramper

    async def test_rejected_record_logs_out(self, manager, mock_service, sessions, offramper, memory_store):
        await sessions.save_user(offramper)
        mock_service.refetch_user.side_effect = ServiceRejectedError({"UserError": "SessionNotFound"})

        assert await manager.resume() is None
        assert manager.user is None
        assert USER_SESSION_KEY not in memory_store.data


@pytest.mark.asyncio
class TestAccountManagement:
    async def test_add_payment_provider_refreshes(self, manager, mock_service, onramper):
        await _login(manager, mock_service, onramper)
        provider = PayPalProvider(id="second@example.org")
        mock_service.refetch_user.return_value = onramper.model_copy(
            update={"payment_providers": onramper.payment_providers + [provider]}
        )

        user = await manager.add_payment_provider(provider)

        mock_service.add_user_payment_provider.assert_awaited_once_with(2, "onramper-token-123456", provider)
        assert provider in user.payment_providers

    async def test_offramper_revolut_needs_name(self, manager, mock_service, offramper):
        await _login(manager, mock_service, offramper)

        with pytest.raises(InvalidInputError):
            await manager.add_payment_provider(RevolutProvider(id="GB33", scheme="UK.OBIE.IBAN"))
        mock_service.add_user_payment_provider.assert_not_awaited()

    async def test_add_transaction_address(self, manager, mock_service, offramper):
        await _login(manager, mock_service, offramper)
        address = TransactionAddress(address_type=AddressType.ICP, address="principal-1")
        mock_service.refetch_user.return_value = offramper

        await manager.add_transaction_address(address)

        mock_service.add_user_transaction_address.assert_awaited_once_with(1, "session-token-abcdef", address)

    async def test_update_password_requires_email_login(self, manager, mock_service, offramper):
        await _login(manager, mock_service, offramper)

        with pytest.raises(MissingProofError):
            await manager.update_password("new")

    async def test_update_password(self, manager, mock_service, onramper):
        await _login(manager, mock_service, onramper)

        await manager.update_password("new-secret")

        mock_service.update_password.assert_awaited_once_with(
            onramper.login, "new-secret", session_token="onramper-token-123456"
        )

    async def test_register_validates_providers(self, manager, mock_service):
        with pytest.raises(InvalidInputError):
            await manager.register(
                UserType.OFFRAMPER,
                [RevolutProvider(id="GB33", scheme="UK.OBIE.IBAN")],
                EmailCredential(email="a@b.c"),
                password="pw",
            )
        mock_service.register_user.assert_not_awaited()

    async def test_preferred_currency(self, manager):
        assert await manager.get_preferred_currency() == "USD"
        await manager.set_preferred_currency("eur")
        assert await manager.get_preferred_currency() == "EUR"
