"""
Strava OAuth handshake: authorize redirect with a CSRF state, then callback → code exchange → credential upsert.

Flow states: IDLE → AWAITING_CALLBACK → COMPLETED, or DENIED / FAILED (terminal).
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from runsync.config import Settings
from runsync.core.exceptions import MissingParameters
from runsync.models.strava_credentials import StravaCredentials
from runsync.models.user import User
from runsync.schemas.strava import TokenResponse
from runsync.services.crypto import TokenCipher
from runsync.services.oauth_state import OAuthStateLedger
from runsync.services.strava_client import StravaClient

logger = logging.getLogger(__name__)


class AuthorizationState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_CALLBACK = "awaiting_callback"
    COMPLETED = "completed"
    DENIED = "denied"
    FAILED = "failed"


@dataclass
class AuthorizationResult:
    status: AuthorizationState
    athlete_id: int | None = None
    user_id: int | None = None
    created: bool = False
    error: str | None = None


class StravaAuthorizationFlow:
    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        client: StravaClient,
        ledger: OAuthStateLedger | None = None,
        cipher: TokenCipher | None = None,
    ):
        self.session = session
        self.settings = settings
        self.client = client
        self.ledger = ledger or OAuthStateLedger(session, settings)
        self.cipher = cipher or TokenCipher(settings)
        self.state = AuthorizationState.IDLE

    async def begin_authorization(self) -> str:
        """Return the Strava authorize URL. Config is checked before any state is issued."""
        self.settings.require_strava_oauth()
        state = await self.ledger.issue()
        self.state = AuthorizationState.AWAITING_CALLBACK
        logger.info("Strava OAuth initiated")
        return self.client.authorization_url(state)

    async def complete_authorization(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
    ) -> AuthorizationResult:
        """
        Handle the callback. Raises MissingParameters, InvalidState, ExpiredState or TokenExchangeFailed;
        user denial is a result, not an error, and leaves the state unconsumed.
        """
        if error:
            logger.warning("Strava authorization denied: %s", error)
            self.state = AuthorizationState.DENIED
            return AuthorizationResult(status=self.state, error=error)
        try:
            if not code or not state:
                raise MissingParameters("Missing code or state parameter")
            await self.ledger.consume(state)
            tokens = await self.client.exchange_code(code)
            user_id, created = await self._upsert_credentials(tokens)
        except Exception:
            self.state = AuthorizationState.FAILED
            raise
        self.state = AuthorizationState.COMPLETED
        athlete_id = tokens.athlete.id
        logger.info("%s Strava credentials for athlete %s", "Created" if created else "Updated", athlete_id)
        return AuthorizationResult(status=self.state, athlete_id=athlete_id, user_id=user_id, created=created)

    async def _find_credentials(self, athlete_id: int) -> StravaCredentials | None:
        r = await self.session.execute(
            select(StravaCredentials).where(StravaCredentials.strava_athlete_id == athlete_id).with_for_update()
        )
        return r.scalar_one_or_none()

    async def _upsert_credentials(self, tokens: TokenResponse) -> tuple[int, bool]:
        """Insert credentials (and a local account) or overwrite tokens and expiry only."""
        athlete = tokens.athlete
        expires_at = datetime.fromtimestamp(tokens.expires_at, tz=timezone.utc)
        encrypted = self.cipher.encrypt(tokens.refresh_token)
        creds = await self._find_credentials(athlete.id)
        if creds is None:
            user = User(display_name=athlete.display_name)
            self.session.add(user)
            try:
                await self.session.flush()
                self.session.add(
                    StravaCredentials(
                        user_id=user.id,
                        strava_athlete_id=athlete.id,
                        access_token=tokens.access_token,
                        encrypted_refresh_token=encrypted,
                        expires_at=expires_at,
                    )
                )
                await self.session.commit()
                return user.id, True
            except IntegrityError:
                # A concurrent first callback for the same athlete inserted first
                await self.session.rollback()
                logger.info("Strava credentials for athlete %s created concurrently; updating", athlete.id)
                creds = await self._find_credentials(athlete.id)
                if creds is None:
                    raise
        creds.access_token = tokens.access_token
        creds.encrypted_refresh_token = encrypted
        creds.expires_at = expires_at
        await self.session.commit()
        return creds.user_id, False
