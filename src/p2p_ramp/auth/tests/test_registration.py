"""
Email registration and password reset tests.

The email server is replaced by an httpx.MockTransport.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from p2p_ramp.auth.registration import (
    PENDING_REGISTRATION_PREFIX,
    PENDING_RESET_PREFIX,
    EmailNotifier,
    RegistrationConfig,
    RegistrationFlow,
)
from p2p_ramp.errors import CredentialError, InvalidInputError, NetworkError
from p2p_ramp.service.models import EmailCredential, PayPalProvider, RevolutProvider, UserType

EMAIL = EmailCredential(email="new@example.org")


class RecordingTransport:
    """Builds an httpx.MockTransport answering every request with ``status``."""

    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.requests = []

    def __call__(self) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return httpx.Response(self.status, json={"ok": self.status < 400})

        return httpx.MockTransport(handler)


@pytest.fixture
def notifier():
    notifier = MagicMock(spec=EmailNotifier)
    notifier.send_confirmation_email = AsyncMock()
    notifier.send_password_reset_email = AsyncMock()
    return notifier


@pytest.fixture
def auth(onramper):
    auth = MagicMock()
    auth.register = AsyncMock(return_value=onramper.model_copy(update={"session": None}))
    return auth


@pytest.fixture
def flow(auth, mock_service, memory_store, notifier, clock):
    return RegistrationFlow(
        auth, mock_service, memory_store, notifier, RegistrationConfig(pending_ttl_seconds=3600), clock=clock
    )


class TestEmailNotifier:
    @pytest.mark.asyncio
    async def test_confirmation_email_request(self):
        transport = RecordingTransport()
        notifier = EmailNotifier("https://mail.example.org/", "secret", "app.example.org", transport=transport())

        await notifier.send_confirmation_email("new@example.org", "tok-1")

        request = transport.requests[0]
        assert str(request.url) == "https://mail.example.org/send-confirmation-email"
        assert request.headers["x-access-token"] == "secret"
        assert json.loads(request.content) == {
            "to": "new@example.org",
            "token": "tok-1",
            "domain": "app.example.org",
        }

    @pytest.mark.asyncio
    async def test_reset_email_uses_reset_token_field(self):
        transport = RecordingTransport()
        notifier = EmailNotifier("https://mail.example.org", "secret", "app.example.org", transport=transport())

        await notifier.send_password_reset_email("new@example.org", "tok-2")

        assert json.loads(transport.requests[0].content)["resetToken"] == "tok-2"

    @pytest.mark.asyncio
    async def test_server_error_is_network_error(self):
        notifier = EmailNotifier(
            "https://mail.example.org", "secret", "app.example.org", transport=RecordingTransport(502)()
        )

        with pytest.raises(NetworkError) as exc_info:
            await notifier.send_confirmation_email("new@example.org", "tok")
        assert exc_info.value.status_code == 502


@pytest.mark.asyncio
class TestRegistrationFlow:
    async def test_start_parks_payload_and_emails(self, flow, memory_store, notifier):
        token = await flow.start_registration(
            UserType.ONRAMPER, [PayPalProvider(id="new@example.org")], EMAIL, "pw"
        )

        assert PENDING_REGISTRATION_PREFIX + token in memory_store.data
        notifier.send_confirmation_email.assert_awaited_once_with("new@example.org", token)

    async def test_email_failure_discards_payload(self, flow, memory_store, notifier):
        notifier.send_confirmation_email.side_effect = NetworkError("mail down")

        with pytest.raises(NetworkError):
            await flow.start_registration(UserType.ONRAMPER, [PayPalProvider(id="x")], EMAIL, "pw")
        assert memory_store.data == {}

    async def test_invalid_provider_rejected_before_storing(self, flow, memory_store, notifier):
        with pytest.raises(InvalidInputError):
            await flow.start_registration(
                UserType.OFFRAMPER, [RevolutProvider(id="GB33", scheme="UK.OBIE.IBAN")], EMAIL, "pw"
            )
        assert memory_store.data == {}
        notifier.send_confirmation_email.assert_not_awaited()

    async def test_confirm_registers_once(self, flow, auth):
        providers = [PayPalProvider(id="new@example.org")]
        token = await flow.start_registration(UserType.ONRAMPER, providers, EMAIL, "pw")

        user = await flow.confirm_registration(token)

        assert user.id == 2
        auth.register.assert_awaited_once_with(UserType.ONRAMPER, providers, EMAIL, password="pw")
        with pytest.raises(CredentialError):
            await flow.confirm_registration(token)

    async def test_expired_token(self, flow, clock, auth):
        token = await flow.start_registration(UserType.ONRAMPER, [PayPalProvider(id="x")], EMAIL, "pw")
        clock.advance(3600)

        with pytest.raises(CredentialError):
            await flow.confirm_registration(token)
        auth.register.assert_not_awaited()

    async def test_corrupt_payload(self, flow, memory_store):
        memory_store.data[PENDING_REGISTRATION_PREFIX + "bad"] = "{"

        with pytest.raises(CredentialError):
            await flow.confirm_registration("bad")


@pytest.mark.asyncio
class TestPasswordReset:
    async def test_reset_round(self, flow, memory_store, notifier, mock_service):
        token = await flow.start_password_reset(EMAIL)
        assert PENDING_RESET_PREFIX + token in memory_store.data
        notifier.send_password_reset_email.assert_awaited_once_with("new@example.org", token)

        await flow.complete_password_reset(token, "new-secret")

        mock_service.update_password.assert_awaited_once_with(EMAIL, "new-secret")
        assert memory_store.data == {}

    async def test_unknown_token(self, flow, mock_service):
        with pytest.raises(CredentialError):
            await flow.complete_password_reset("missing", "x")
        mock_service.update_password.assert_not_awaited()
