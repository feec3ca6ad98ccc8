"""Idempotent write of Strava activities into strava_activities, keyed by strava_id (last write wins)."""

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from runsync.db.types import utcnow
from runsync.models.strava_activity import StravaActivity
from runsync.schemas.strava import ActivityDetail

RUN_TYPE = "Run"


def is_run(activity_type: str | None) -> bool:
    return activity_type == RUN_TYPE


def activity_to_row(user_id: int, detail: ActivityDetail) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "strava_id": detail.id,
        "name": detail.name,
        "type": detail.type,
        "start_date": detail.start_date,
        "distance_m": detail.distance,
        "moving_time_sec": detail.moving_time,
        "elapsed_time_sec": detail.elapsed_time,
        "average_speed": detail.average_speed,
        "max_speed": detail.max_speed,
        "average_heartrate": detail.average_heartrate,
        "max_heartrate": detail.max_heartrate,
        "suffer_score": detail.suffer_score,
        "raw": detail.raw or None,
        "synced_at": utcnow(),
    }


async def upsert_activity(session: AsyncSession, user_id: int, detail: ActivityDetail) -> None:
    """Insert or overwrite every derived field of the activity. Caller commits."""
    row = activity_to_row(user_id, detail)
    insert = sqlite_insert if session.bind.dialect.name == "sqlite" else pg_insert
    stmt = insert(StravaActivity).values(row)
    stmt = stmt.on_conflict_do_update(
        index_elements=["strava_id"],
        set_={k: stmt.excluded[k] for k in row if k != "strava_id"},
    )
    await session.execute(stmt)
