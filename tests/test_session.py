import asyncio

import pytest

from sleepnumber_stats.adapters import SleepIQAPIError
from sleepnumber_stats.session import (
    AuthenticationError,
    QueryError,
    SessionClient,
    SessionExpiredError,
)


def _client(fake) -> SessionClient:
    return SessionClient(fake, username="sleeper@example.com", password="secret")


@pytest.mark.asyncio
async def test_login_stores_session(fake_sleepiq):
    client = _client(fake_sleepiq)
    assert client.is_authenticated is False

    session = await client.login()

    assert session.key == "key-1"
    assert client.session is session
    assert client.is_authenticated is True


@pytest.mark.asyncio
async def test_login_failure_raises_authentication_error(fake_sleepiq):
    fake_sleepiq.fail("login", SleepIQAPIError("bad credentials", status=403))
    client = _client(fake_sleepiq)

    with pytest.raises(AuthenticationError) as excinfo:
        await client.login()

    assert "Failed to log into SleepIQ account" in str(excinfo.value)
    assert client.session is None


@pytest.mark.asyncio
async def test_query_without_session_is_refused_locally(fake_sleepiq):
    client = _client(fake_sleepiq)

    with pytest.raises(SessionExpiredError):
        await client.list_beds()

    assert fake_sleepiq.calls == []


@pytest.mark.asyncio
async def test_session_invalid_error_invalidates_session(fake_sleepiq):
    client = _client(fake_sleepiq)
    await client.login()
    fake_sleepiq.fail(
        "family_status",
        SleepIQAPIError(
            "SleepIQ request failed with status 401: Session is invalid",
            status=401,
            code=50002,
        ),
    )

    with pytest.raises(SessionExpiredError) as excinfo:
        await client.family_status()

    assert excinfo.value.operation == "query family status"
    assert client.is_authenticated is False

    # further queries are refused without reaching the API
    with pytest.raises(SessionExpiredError):
        await client.foundation_status("bed-1")
    assert "foundation_status" not in fake_sleepiq.calls

    await client.login()
    assert client.is_authenticated is True
    assert await client.foot_warmer_status("bed-1") is not None


@pytest.mark.asyncio
async def test_message_marker_classifies_session_expiry(fake_sleepiq):
    client = _client(fake_sleepiq)
    await client.login()
    fake_sleepiq.fail("list_beds", SleepIQAPIError("Session is invalid"))

    with pytest.raises(SessionExpiredError):
        await client.list_beds()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        SleepIQAPIError("server error", status=500),
        asyncio.TimeoutError(),
        KeyError("foundation"),
    ],
)
async def test_other_failures_keep_session(fake_sleepiq, error):
    client = _client(fake_sleepiq)
    await client.login()
    fake_sleepiq.fail("foundation_status", error)

    with pytest.raises(QueryError) as excinfo:
        await client.foundation_status("bed-1")

    assert not isinstance(excinfo.value, SessionExpiredError)
    assert str(excinfo.value).startswith("Failed to query bed foundation status")
    assert client.is_authenticated is True


@pytest.mark.asyncio
async def test_aclose_closes_adapter(fake_sleepiq):
    client = _client(fake_sleepiq)
    await client.aclose()
    assert fake_sleepiq.closed is True
