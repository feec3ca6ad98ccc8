"""
Keep Strava credentials usable: proactive refresh before expiry, and one reactive refresh
when the API still answers 401.
"""
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from runsync.config import Settings
from runsync.core.exceptions import StravaUnauthorized, TokenRefreshFailed
from runsync.core.metrics import TOKEN_REFRESHES
from runsync.db.types import utcnow
from runsync.models.strava_credentials import StravaCredentials
from runsync.services.crypto import TokenCipher
from runsync.services.strava_client import StravaClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Reactive refresh-and-retry after a 401 happens at most this many times per call
MAX_REACTIVE_REFRESHES = 1


class TokenRefresher:
    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        client: StravaClient,
        cipher: TokenCipher | None = None,
    ):
        self.session = session
        self.client = client
        self.cipher = cipher or TokenCipher(settings)
        self.margin = timedelta(seconds=settings.token_refresh_margin_seconds)

    def needs_refresh(self, creds: StravaCredentials, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return creds.expires_at - now <= self.margin

    async def ensure_valid(self, creds: StravaCredentials) -> StravaCredentials:
        """Return credentials whose access token is valid for more than the safety margin."""
        if not self.needs_refresh(creds):
            return creds
        return await self._refresh(creds)

    async def force_refresh(self, creds: StravaCredentials) -> StravaCredentials:
        return await self._refresh(creds, force=True)

    async def call_with_refresh(
        self,
        creds: StravaCredentials,
        call: Callable[[str], Awaitable[T]],
    ) -> T:
        """
        Run `call(access_token)` with a valid token. On StravaUnauthorized refresh once and retry;
        a second 401 propagates.
        """
        creds = await self.ensure_valid(creds)
        refreshes = 0
        while True:
            try:
                return await call(creds.access_token)
            except StravaUnauthorized:
                if refreshes >= MAX_REACTIVE_REFRESHES:
                    logger.warning("Strava 401 after reactive refresh for athlete %s; giving up", creds.strava_athlete_id)
                    raise
                refreshes += 1
                logger.info("Strava 401 for athlete %s; refreshing token and retrying", creds.strava_athlete_id)
                creds = await self._refresh(creds, rejected_access_token=creds.access_token)

    async def _refresh(
        self,
        creds: StravaCredentials,
        force: bool = False,
        rejected_access_token: str | None = None,
    ) -> StravaCredentials:
        # Lock the row; a concurrent request may already have rotated the refresh token
        r = await self.session.execute(
            select(StravaCredentials)
            .where(StravaCredentials.id == creds.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        locked = r.scalar_one()
        if rejected_access_token is not None:
            if locked.access_token != rejected_access_token and not self.needs_refresh(locked):
                return locked
        elif not force and not self.needs_refresh(locked):
            return locked

        athlete_id = locked.strava_athlete_id
        refresh_token = self.cipher.decrypt(locked.encrypted_refresh_token)
        if not refresh_token:
            TOKEN_REFRESHES.labels(result="failed").inc()
            await self.session.rollback()
            raise TokenRefreshFailed("Strava refresh token decryption failed")
        try:
            tokens = await self.client.refresh_token(refresh_token)
        except TokenRefreshFailed:
            TOKEN_REFRESHES.labels(result="failed").inc()
            await self.session.rollback()  # release the row lock
            logger.warning("Strava token refresh failed for athlete %s", athlete_id)
            raise
        locked.access_token = tokens.access_token
        locked.encrypted_refresh_token = self.cipher.encrypt(tokens.refresh_token)
        locked.expires_at = datetime.fromtimestamp(tokens.expires_at, tz=timezone.utc)
        await self.session.commit()
        TOKEN_REFRESHES.labels(result="ok").inc()
        logger.info("Refreshed Strava tokens for athlete %s", locked.strava_athlete_id)
        return locked
