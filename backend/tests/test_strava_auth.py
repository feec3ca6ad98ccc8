"""Tests for the Strava authorization flow: authorize URL, callback, credential upsert."""

from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import func, select

from runsync.config import settings
from runsync.core.exceptions import (
    ConfigurationError,
    InvalidState,
    MissingParameters,
    TokenExchangeFailed,
)
from runsync.models.oauth_state import OAuthState
from runsync.models.strava_credentials import StravaCredentials
from runsync.models.user import User
from runsync.services.crypto import TokenCipher
from runsync.services.strava_auth import AuthorizationState, StravaAuthorizationFlow


async def _count(session, model) -> int:
    r = await session.execute(select(func.count()).select_from(model))
    return r.scalar_one()


def _state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


@pytest.mark.asyncio
async def test_begin_authorization_builds_url_and_persists_state(session, strava_client):
    flow = StravaAuthorizationFlow(session, settings, strava_client)
    url = await flow.begin_authorization()

    parsed = urlparse(url)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://www.strava.com/oauth/authorize"
    params = parse_qs(parsed.query)
    assert params["client_id"] == ["abc"]
    assert params["redirect_uri"] == ["https://x/cb"]
    assert params["response_type"] == ["code"]
    assert params["scope"] == ["read,activity:read_all"]
    state = params["state"][0]
    assert len(state) == 36
    assert flow.state == AuthorizationState.AWAITING_CALLBACK
    assert await session.get(OAuthState, state) is not None


@pytest.mark.asyncio
async def test_begin_authorization_rejects_plain_http_callback(session, strava_client):
    insecure = settings.model_copy(update={"strava_redirect_uri": "http://example.com/cb"})
    flow = StravaAuthorizationFlow(session, insecure, strava_client)
    with pytest.raises(ConfigurationError):
        await flow.begin_authorization()
    assert await _count(session, OAuthState) == 0


@pytest.mark.asyncio
async def test_begin_authorization_allows_localhost_http(session, strava_client):
    local = settings.model_copy(update={"strava_redirect_uri": "http://localhost:8000/api/v1/strava/callback"})
    url = await StravaAuthorizationFlow(session, local, strava_client).begin_authorization()
    assert "redirect_uri=http%3A%2F%2Flocalhost%3A8000" in url


@pytest.mark.asyncio
async def test_begin_authorization_requires_client_id(session, strava_client):
    unconfigured = settings.model_copy(update={"strava_client_id": ""})
    with pytest.raises(ConfigurationError):
        await StravaAuthorizationFlow(session, unconfigured, strava_client).begin_authorization()
    assert await _count(session, OAuthState) == 0


@pytest.mark.asyncio
async def test_complete_authorization_creates_account(session, strava, strava_client):
    flow = StravaAuthorizationFlow(session, settings, strava_client)
    state = _state_from(await flow.begin_authorization())

    result = await flow.complete_authorization("c1", state)

    assert result.status == AuthorizationState.COMPLETED
    assert result.athlete_id == 42
    assert result.created is True
    assert strava.token_calls[0]["code"] == "c1"
    assert strava.token_calls[0]["grant_type"] == "authorization_code"
    assert strava.token_calls[0]["client_secret"] == "client-secret"

    r = await session.execute(select(StravaCredentials))
    rows = r.scalars().all()
    assert len(rows) == 1
    creds = rows[0]
    assert creds.strava_athlete_id == 42
    assert creds.user_id == result.user_id
    assert creds.access_token == "t1"
    assert creds.encrypted_refresh_token != "r1"
    assert TokenCipher(settings).decrypt(creds.encrypted_refresh_token) == "r1"
    user = await session.get(User, result.user_id)
    assert user.display_name == "Ada Runner"
    assert await _count(session, OAuthState) == 0


@pytest.mark.asyncio
async def test_replayed_callback_is_rejected(session, strava, strava_client):
    flow = StravaAuthorizationFlow(session, settings, strava_client)
    state = _state_from(await flow.begin_authorization())
    await flow.complete_authorization("c1", state)

    with pytest.raises(InvalidState):
        await StravaAuthorizationFlow(session, settings, strava_client).complete_authorization("c1", state)
    assert len(strava.token_calls) == 1


@pytest.mark.asyncio
async def test_denied_authorization_leaves_state(session, strava, strava_client):
    flow = StravaAuthorizationFlow(session, settings, strava_client)
    state = _state_from(await flow.begin_authorization())

    result = await flow.complete_authorization(None, state, error="access_denied")

    assert result.status == AuthorizationState.DENIED
    assert result.error == "access_denied"
    assert strava.token_calls == []
    assert await session.get(OAuthState, state) is not None
    assert await _count(session, StravaCredentials) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("code,state", [(None, "s"), ("c1", None), ("", "")])
async def test_missing_parameters(session, strava, strava_client, code, state):
    flow = StravaAuthorizationFlow(session, settings, strava_client)
    with pytest.raises(MissingParameters):
        await flow.complete_authorization(code, state)
    assert flow.state == AuthorizationState.FAILED
    assert strava.token_calls == []


@pytest.mark.asyncio
async def test_exchange_failure_consumes_state(session, strava, strava_client):
    flow = StravaAuthorizationFlow(session, settings, strava_client)
    state = _state_from(await flow.begin_authorization())
    strava.token_status = 400

    with pytest.raises(TokenExchangeFailed):
        await flow.complete_authorization("bad-code", state)

    assert flow.state == AuthorizationState.FAILED
    assert await _count(session, OAuthState) == 0
    assert await _count(session, StravaCredentials) == 0


@pytest.mark.asyncio
async def test_exchange_without_athlete_fails(session, strava, strava_client):
    strava.exchange_body = {"access_token": "t1", "refresh_token": "r1", "expires_at": 1900000000}
    flow = StravaAuthorizationFlow(session, settings, strava_client)
    state = _state_from(await flow.begin_authorization())
    with pytest.raises(TokenExchangeFailed):
        await flow.complete_authorization("c1", state)
    assert await _count(session, User) == 0


@pytest.mark.asyncio
async def test_reconnect_updates_tokens_and_keeps_account(session, strava, strava_client):
    flow = StravaAuthorizationFlow(session, settings, strava_client)
    first = await flow.complete_authorization("c1", _state_from(await flow.begin_authorization()))

    strava.exchange_body = {
        "access_token": "t2",
        "refresh_token": "r2",
        "expires_at": 1900000000,
        "athlete": {"id": 42, "firstname": "Ada", "lastname": "Runner"},
    }
    flow = StravaAuthorizationFlow(session, settings, strava_client)
    second = await flow.complete_authorization("c2", _state_from(await flow.begin_authorization()))

    assert second.created is False
    assert second.user_id == first.user_id
    assert await _count(session, User) == 1
    session.expunge_all()
    r = await session.execute(select(StravaCredentials))
    creds = r.scalar_one()
    assert creds.access_token == "t2"
    assert TokenCipher(settings).decrypt(creds.encrypted_refresh_token) == "r2"
    assert int(creds.expires_at.timestamp()) == 1900000000


@pytest.mark.asyncio
async def test_concurrent_first_connect_falls_back_to_update(session, strava, strava_client, make_athlete):
    existing_user_id, _ = await make_athlete(athlete_id=42)
    flow = StravaAuthorizationFlow(session, settings, strava_client)
    state = _state_from(await flow.begin_authorization())

    # The other callback commits its row after this one has looked for it
    real_find = flow._find_credentials
    calls = []

    async def find_after_race(athlete_id):
        calls.append(athlete_id)
        if len(calls) == 1:
            return None
        return await real_find(athlete_id)

    with patch.object(flow, "_find_credentials", side_effect=find_after_race):
        result = await flow.complete_authorization("c1", state)

    assert calls == [42, 42]
    assert result.status == AuthorizationState.COMPLETED
    assert result.created is False
    assert result.user_id == existing_user_id
    assert await _count(session, User) == 1
    session.expunge_all()
    creds = (await session.execute(select(StravaCredentials))).scalar_one()
    assert creds.access_token == "t1"
    assert TokenCipher(settings).decrypt(creds.encrypted_refresh_token) == "r1"
