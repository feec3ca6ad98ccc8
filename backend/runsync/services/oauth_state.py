"""CSRF state ledger for the Strava OAuth redirect: one-time states with a fixed validity window."""

import logging
import uuid
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from runsync.config import Settings
from runsync.core.exceptions import ExpiredState, InvalidState
from runsync.db.types import utcnow
from runsync.models.oauth_state import OAuthState

logger = logging.getLogger(__name__)


class OAuthStateLedger:
    def __init__(self, session: AsyncSession, settings: Settings):
        self.session = session
        self.ttl = timedelta(seconds=settings.oauth_state_ttl_seconds)

    async def issue(self) -> str:
        state = str(uuid.uuid4())
        self.session.add(OAuthState(state=state, created_at=utcnow()))
        await self.session.commit()
        return state

    async def consume(self, state: str) -> None:
        """
        Validate and delete a state. Raises InvalidState / ExpiredState.
        The conditional delete decides ownership: of two concurrent consumers only one deletes the row.
        The delete is committed right away so a state never outlives its callback.
        """
        r = await self.session.execute(select(OAuthState.created_at).where(OAuthState.state == state))
        created_at = r.scalar_one_or_none()
        if created_at is None:
            raise InvalidState("Invalid or already used state")
        deleted = await self.session.execute(delete(OAuthState).where(OAuthState.state == state))
        await self.session.commit()
        if deleted.rowcount != 1:
            raise InvalidState("Invalid or already used state")
        if utcnow() - created_at > self.ttl:
            logger.warning("Expired OAuth state consumed (age > %ss)", int(self.ttl.total_seconds()))
            raise ExpiredState("State expired")

    async def purge_expired(self) -> int:
        """Delete states abandoned past the validity window. Returns number deleted."""
        cutoff = utcnow() - self.ttl
        r = await self.session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        await self.session.commit()
        if r.rowcount:
            logger.info("Purged %s expired OAuth states", r.rowcount)
        return r.rowcount or 0
