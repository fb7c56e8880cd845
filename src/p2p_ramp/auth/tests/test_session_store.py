"""
Durable session record tests.
"""
import pytest

from p2p_ramp.auth.session import (
    PREFERRED_CURRENCY_KEY,
    USER_SESSION_KEY,
    SessionStore,
    truncate_token,
)


def test_truncate_token():
    assert truncate_token("session-token-abcdef") == "sessio..."
    assert truncate_token("abc") == "***"


@pytest.mark.asyncio
class TestSessionStore:
    async def test_save_and_load_round_trip(self, memory_store, offramper):
        sessions = SessionStore(memory_store)

        await sessions.save_user(offramper)
        loaded = await sessions.load_user()

        assert loaded == offramper
        assert '"12345678901234567890"' in memory_store.data[USER_SESSION_KEY]

    async def test_empty(self, memory_store):
        assert await SessionStore(memory_store).load_user() is None

    async def test_unreadable_record_is_dropped(self, memory_store):
        memory_store.data[USER_SESSION_KEY] = '{"id": "not-a-user"}'

        assert await SessionStore(memory_store).load_user() is None
        assert USER_SESSION_KEY not in memory_store.data

    async def test_clear_keeps_preferences(self, memory_store, offramper):
        sessions = SessionStore(memory_store)
        await sessions.save_user(offramper)
        await sessions.set_preferred_currency("EUR")

        await sessions.clear()

        assert await sessions.load_user() is None
        assert memory_store.data == {PREFERRED_CURRENCY_KEY: "EUR"}
