"""Pydantic schemas for Strava API payloads and the sync/webhook endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class AthleteSummary(BaseModel):
    """`athlete` object embedded in the token exchange response."""

    id: int
    firstname: str | None = None
    lastname: str | None = None

    @property
    def display_name(self) -> str | None:
        name = " ".join(p for p in (self.firstname, self.lastname) if p)
        return name or None


class TokenResponse(BaseModel):
    """Response of POST /oauth/token for both authorization_code and refresh_token grants."""

    access_token: str
    refresh_token: str
    expires_at: int  # epoch seconds
    athlete: AthleteSummary | None = None  # only on authorization_code


class ActivitySummary(BaseModel):
    """Item of GET /athlete/activities. Only what the reconciler needs to filter."""

    id: int
    type: str | None = None
    sport_type: str | None = None


class ActivityDetail(BaseModel):
    """GET /activities/{id}. `raw` keeps the full untransformed payload."""

    id: int
    type: str
    name: str | None = None
    sport_type: str | None = None
    start_date: datetime | None = None
    distance: float | None = None  # meters
    moving_time: int | None = None  # seconds
    elapsed_time: int | None = None
    average_speed: float | None = None  # m/s
    max_speed: float | None = None
    average_heartrate: float | None = None
    max_heartrate: float | None = None
    suffer_score: float | None = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ActivityDetail":
        detail = cls.model_validate(payload)
        detail.raw = payload
        return detail


class WebhookEvent(BaseModel):
    """Strava push notification body."""

    object_type: str
    aspect_type: str
    owner_id: int
    object_id: int
    subscription_id: int | None = None
    event_time: int | None = None
    updates: dict[str, Any] | None = None


class SyncRequest(BaseModel):
    athlete_id: int
    weeks: int | None = Field(default=None, ge=1, le=520)  # None = settings.sync_default_weeks


class RefreshRequest(BaseModel):
    athlete_id: int


class SyncSummary(BaseModel):
    total_fetched: int = 0
    runs_found: int = 0
    synced: int = 0
    failed: int = 0
