"""
Strava push subscription: verification handshake and event ingestion.

Events are always acknowledged to Strava (it redelivers on non-2xx). Processing failures are
logged, counted and recorded in strava_webhook_failures so they can be inspected or replayed.
"""
import hmac
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from runsync.config import Settings
from runsync.core.exceptions import WebhookVerificationFailed
from runsync.core.metrics import WEBHOOK_EVENTS
from runsync.db.types import utcnow
from runsync.models.strava_credentials import StravaCredentials
from runsync.models.strava_webhook_failure import StravaWebhookFailure
from runsync.schemas.strava import WebhookEvent
from runsync.services.activity_store import is_run, upsert_activity
from runsync.services.strava_client import StravaClient
from runsync.services.token_refresher import TokenRefresher

logger = logging.getLogger(__name__)

HANDLED_ASPECTS = {"create", "update"}


class StravaWebhookGateway:
    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        client: StravaClient,
        refresher: TokenRefresher | None = None,
    ):
        self.session = session
        self.settings = settings
        self.client = client
        self.refresher = refresher or TokenRefresher(session, settings, client)

    def verify_subscription(self, mode: str | None, challenge: str | None, verify_token: str | None) -> str:
        """Echo the challenge if Strava presented our verify token."""
        expected = self.settings.strava_verify_token
        if (
            mode != "subscribe"
            or not expected
            or challenge is None
            or not hmac.compare_digest((verify_token or "").encode(), expected.encode())
        ):
            logger.warning("Strava webhook verification failed")
            raise WebhookVerificationFailed("Verification failed")
        logger.info("Strava webhook verification successful")
        return challenge

    async def handle_event(self, event: WebhookEvent) -> str:
        """Process one event. Never raises; returns the outcome."""
        try:
            outcome = await self._process(event)
        except Exception as e:
            logger.exception(
                "Strava webhook processing failed for activity %s (athlete %s): %s",
                event.object_id,
                event.owner_id,
                e,
            )
            outcome = "failed"
            await self._record_failure(event, e)
        WEBHOOK_EVENTS.labels(outcome=outcome).inc()
        return outcome

    async def _process(self, event: WebhookEvent) -> str:
        if event.object_type != "activity":
            logger.info("Ignoring non-activity event: %s", event.object_type)
            return "ignored"
        if event.aspect_type not in HANDLED_ASPECTS:
            logger.info("Ignoring event type: %s", event.aspect_type)
            return "ignored"
        r = await self.session.execute(
            select(StravaCredentials).where(StravaCredentials.strava_athlete_id == event.owner_id)
        )
        creds = r.scalar_one_or_none()
        if not creds:
            logger.info("No connected account for athlete %s, skipping", event.owner_id)
            return "unknown_athlete"
        user_id = creds.user_id
        detail = await self.refresher.call_with_refresh(
            creds, lambda token: self.client.get_activity(token, event.object_id)
        )
        if not is_run(detail.type):
            logger.info("Ignoring non-run activity %s: %s", detail.id, detail.type)
            return "not_run"
        await upsert_activity(self.session, user_id, detail)
        await self.session.commit()
        logger.info("Synced activity %s for athlete %s", detail.id, event.owner_id)
        return "synced"

    async def _record_failure(self, event: WebhookEvent, error: Exception) -> None:
        await self.session.rollback()
        self.session.add(
            StravaWebhookFailure(
                owner_id=event.owner_id,
                object_id=event.object_id,
                aspect_type=event.aspect_type,
                status="pending",
                attempts=1,
                error_message=str(error)[:500],
                last_attempt_at=utcnow(),
            )
        )
        try:
            await self.session.commit()
        except Exception as e:
            # Storage is down too: the log line above is all that is left of this event
            await self.session.rollback()
            logger.error("Could not record Strava webhook failure for activity %s: %s", event.object_id, e)

    async def replay_failures(self, limit: int = 20) -> int:
        """
        Re-run pending failed events, oldest first. Returns how many were attempted.
        Rows become 'replayed' on success, or 'failed' after webhook_replay_max_attempts.
        """
        r = await self.session.execute(
            select(StravaWebhookFailure)
            .where(StravaWebhookFailure.status == "pending")
            .order_by(StravaWebhookFailure.received_at, StravaWebhookFailure.id)
            .limit(limit)
        )
        # Plain values: a failed replay rolls back and expires every loaded row
        pending = [(row.id, row.aspect_type, row.owner_id, row.object_id) for row in r.scalars().all()]
        for row_id, aspect_type, owner_id, object_id in pending:
            event = WebhookEvent(
                object_type="activity",
                aspect_type=aspect_type,
                owner_id=owner_id,
                object_id=object_id,
            )
            try:
                await self._process(event)
                status, message = "replayed", None
            except Exception as e:
                logger.warning("Replay of Strava webhook failure %s failed: %s", row_id, e)
                status, message = "pending", str(e)[:500]
                await self.session.rollback()
            row = await self.session.get(StravaWebhookFailure, row_id, populate_existing=True)
            if status == "replayed":
                row.status = "replayed"
            else:
                row.attempts += 1
                row.error_message = message
                if row.attempts >= self.settings.webhook_replay_max_attempts:
                    row.status = "failed"
            row.last_attempt_at = utcnow()
            await self.session.commit()
        return len(pending)
