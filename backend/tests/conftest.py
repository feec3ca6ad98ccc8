"""Pytest configuration and shared fixtures: test DB, stubbed Strava platform, API client."""

import os
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text

# Set test DB and Strava app before app imports so config/engine use them
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./runsync_test.db")
os.environ["APP_ENV"] = "test"
os.environ["APP_URL"] = "http://localhost:4200"
os.environ["STRAVA_CLIENT_ID"] = "abc"
os.environ["STRAVA_CLIENT_SECRET"] = "client-secret"
os.environ["STRAVA_REDIRECT_URI"] = "https://x/cb"
os.environ["STRAVA_VERIFY_TOKEN"] = "verify-me"
os.environ["STRAVA_OAUTH_BASE"] = "https://www.strava.com/oauth"
os.environ["STRAVA_API_BASE"] = "https://www.strava.com/api/v3"
os.environ["ENCRYPTION_KEY"] = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA="
os.environ["SYNC_ITEM_DELAY_SECONDS"] = "0"
os.environ["API_RATE_LIMIT"] = "10000/minute"

from runsync.api.deps import get_strava_client
from runsync.config import settings
from runsync.db.base import Base
from runsync.db.session import async_session_maker, engine, init_db
from runsync.main import app
from runsync.models.strava_credentials import StravaCredentials
from runsync.models.user import User
from runsync.services.crypto import TokenCipher
from runsync.services.strava_client import StravaClient

ATHLETE_ID = 42


def run_payload(activity_id: int, **overrides) -> dict:
    payload = {
        "id": activity_id,
        "name": "Morning Run",
        "type": "Run",
        "sport_type": "Run",
        "start_date": "2026-10-01T06:30:00Z",
        "distance": 10000.0,
        "moving_time": 3000,
        "elapsed_time": 3100,
        "average_speed": 3.33,
        "max_speed": 4.8,
        "average_heartrate": 148.0,
        "max_heartrate": 171.0,
        "suffer_score": 42,
    }
    payload.update(overrides)
    return payload


class FakeStrava:
    """In-memory Strava platform served through httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_calls: list[dict[str, str]] = []
        self.token_status = 200
        self.exchange_body: dict | None = None
        self.activities: dict[int, dict] = {}
        self.activity_status: dict[int, int] = {}
        self.pages: list[list[dict]] = []
        self.listing_status: dict[int, int] = {}
        self.unauthorized = 0  # next N API calls answer 401

    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith("/api/v3/")]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/oauth/token":
            return self._token(request)
        if self.unauthorized > 0:
            self.unauthorized -= 1
            return httpx.Response(401, json={"message": "Authorization Error"})
        if path == "/api/v3/athlete/activities":
            page = int(request.url.params["page"])
            if page in self.listing_status:
                return httpx.Response(self.listing_status[page], json={"message": "error"})
            batch = self.pages[page - 1] if page <= len(self.pages) else []
            return httpx.Response(200, json=batch)
        if path.startswith("/api/v3/activities/"):
            activity_id = int(path.rsplit("/", 1)[1])
            if activity_id in self.activity_status:
                return httpx.Response(self.activity_status[activity_id], json={"message": "error"})
            if activity_id not in self.activities:
                return httpx.Response(404, json={"message": "Record Not Found"})
            return httpx.Response(200, json=self.activities[activity_id])
        return httpx.Response(404)

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.token_calls.append(form)
        if self.token_status != 200:
            return httpx.Response(self.token_status, json={"message": "Bad Request"})
        if form["grant_type"] == "authorization_code":
            body = self.exchange_body or {
                "access_token": "t1",
                "refresh_token": "r1",
                "expires_at": int(time.time()) + 3600,
                "athlete": {"id": ATHLETE_ID, "firstname": "Ada", "lastname": "Runner"},
            }
            return httpx.Response(200, json=body)
        n = len(self.token_calls)
        return httpx.Response(
            200,
            json={
                "access_token": f"access-{n}",
                "refresh_token": f"refresh-{n}",
                "expires_at": int(time.time()) + 21600,
            },
        )


async def _truncate_all():
    """Empty all tables in reverse dependency order so tests start clean."""
    tables = [t.name for t in reversed(Base.metadata.sorted_tables)]
    async with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            await conn.execute(text("TRUNCATE " + ", ".join(tables) + " RESTART IDENTITY CASCADE"))
        else:
            for name in tables:
                await conn.execute(text(f"DELETE FROM {name}"))


@pytest_asyncio.fixture
async def clean_db():
    """Create tables, empty them, and drop pooled connections after the test (each test has its own loop)."""
    await init_db()
    await _truncate_all()
    yield
    await engine.dispose()


@pytest.fixture
def strava() -> FakeStrava:
    return FakeStrava()


@pytest_asyncio.fixture
async def strava_client(strava):
    async with httpx.AsyncClient(transport=httpx.MockTransport(strava.handle)) as http:
        yield StravaClient(settings, http)


@pytest_asyncio.fixture
async def session(clean_db):
    async with async_session_maker() as s:
        yield s


@pytest_asyncio.fixture
async def client(clean_db, strava_client):
    """API client with the Strava dependency pointed at the fake platform."""
    app.dependency_overrides[get_strava_client] = lambda: strava_client
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


async def create_connected_athlete(
    athlete_id: int = ATHLETE_ID,
    expires_in: int = 3600,
    access_token: str = "valid-access",
    refresh_token: str = "stored-refresh",
) -> tuple[int, int]:
    """Insert a local user with Strava credentials. Returns (user_id, credentials_id)."""
    async with async_session_maker() as s:
        user = User(display_name="Ada Runner")
        s.add(user)
        await s.flush()
        creds = StravaCredentials(
            user_id=user.id,
            strava_athlete_id=athlete_id,
            access_token=access_token,
            encrypted_refresh_token=TokenCipher(settings).encrypt(refresh_token),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )
        s.add(creds)
        await s.commit()
        return user.id, creds.id


@pytest_asyncio.fixture
async def connected_athlete(clean_db) -> tuple[int, int]:
    return await create_connected_athlete()


@pytest.fixture
def make_athlete(clean_db):
    return create_connected_athlete


@pytest.fixture
def make_run():
    return run_payload
