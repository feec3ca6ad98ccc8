"""
Pull sync of Strava activities: list a time window page by page, keep runs, fetch each in full and upsert.
Sequential and throttled to stay under Strava's rate limit; per-item failures are counted, not raised.
"""
import asyncio
import logging
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from runsync.config import Settings
from runsync.core.exceptions import AccountNotFound, RemoteFetchFailed
from runsync.core.metrics import SYNC_ITEMS
from runsync.db.types import utcnow
from runsync.models.strava_credentials import StravaCredentials
from runsync.schemas.strava import ActivitySummary, SyncSummary
from runsync.services.activity_store import is_run, upsert_activity
from runsync.services.strava_client import StravaClient
from runsync.services.token_refresher import TokenRefresher

logger = logging.getLogger(__name__)


class StravaBulkSync:
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

    async def _get_credentials(self, athlete_id: int) -> StravaCredentials:
        r = await self.session.execute(
            select(StravaCredentials).where(StravaCredentials.strava_athlete_id == athlete_id)
        )
        creds = r.scalar_one_or_none()
        if not creds:
            raise AccountNotFound(athlete_id)
        return creds

    async def _list_window(self, creds: StravaCredentials, after_epoch: int) -> list[ActivitySummary]:
        """All listed activities after `after_epoch`, up to sync_max_pages pages."""
        per_page = self.settings.sync_page_size
        max_pages = self.settings.sync_max_pages
        activities: list[ActivitySummary] = []
        for page in range(1, max_pages + 1):
            try:
                batch = await self.refresher.call_with_refresh(
                    creds,
                    lambda token, page=page: self.client.list_activities(token, after_epoch, page=page, per_page=per_page),
                )
            except RemoteFetchFailed as e:
                logger.error("Strava listing failed on page %s for athlete %s: %s", page, creds.strava_athlete_id, e)
                break
            if not batch:
                return activities
            activities.extend(batch)
        else:
            logger.warning(
                "Reached pagination limit (%s pages) for athlete %s", max_pages, creds.strava_athlete_id
            )
        return activities

    async def sync(self, athlete_id: int, weeks: int | None = None) -> SyncSummary:
        """
        Sync the last `weeks` weeks of runs for a connected athlete. Raises AccountNotFound, TokenRefreshFailed.
        Safe to re-run: activities are upserted by strava_id.
        """
        weeks = weeks or self.settings.sync_default_weeks
        creds = await self._get_credentials(athlete_id)
        user_id = creds.user_id
        creds = await self.refresher.ensure_valid(creds)
        after_epoch = int((utcnow() - timedelta(weeks=weeks)).timestamp())

        activities = await self._list_window(creds, after_epoch)
        runs = [a for a in activities if is_run(a.type)]
        logger.info(
            "Strava sync: athlete %s listed %s activities, %s runs", athlete_id, len(activities), len(runs)
        )
        summary = SyncSummary(total_fetched=len(activities), runs_found=len(runs))

        for i, item in enumerate(runs):
            if i:
                await asyncio.sleep(self.settings.sync_item_delay_seconds)
            try:
                detail = await self.refresher.call_with_refresh(
                    creds, lambda token, activity_id=item.id: self.client.get_activity(token, activity_id)
                )
                await upsert_activity(self.session, user_id, detail)
                await self.session.commit()
            except Exception as e:
                logger.error("Failed to sync activity %s for athlete %s: %s", item.id, athlete_id, e)
                await self.session.rollback()
                await self.session.refresh(creds)
                summary.failed += 1
                SYNC_ITEMS.labels(result="failed").inc()
                continue
            summary.synced += 1
            SYNC_ITEMS.labels(result="synced").inc()

        logger.info("Sync complete: %s synced, %s failed", summary.synced, summary.failed)
        return summary

    async def sync_all(self, weeks: int | None = None) -> dict[int, SyncSummary]:
        """Sync every connected athlete (scheduler entry point). One athlete's failure does not stop the rest."""
        r = await self.session.execute(select(StravaCredentials.strava_athlete_id))
        athlete_ids = [row[0] for row in r.all()]
        results: dict[int, SyncSummary] = {}
        for athlete_id in athlete_ids:
            try:
                results[athlete_id] = await self.sync(athlete_id, weeks)
            except Exception as e:
                logger.exception("Scheduled Strava sync failed for athlete %s: %s", athlete_id, e)
                await self.session.rollback()
        return results
