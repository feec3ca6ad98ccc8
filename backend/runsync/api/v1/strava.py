"""Strava: OAuth connect (login/callback), manual token refresh, bulk sync, stored activities."""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from runsync.api.deps import get_authorization_flow, get_bulk_sync, get_settings, get_token_refresher
from runsync.config import Settings
from runsync.core.exceptions import (
    AccountNotFound,
    ConfigurationError,
    ExpiredState,
    InvalidState,
    MissingParameters,
    TokenExchangeFailed,
    TokenRefreshFailed,
)
from runsync.db.session import get_db
from runsync.models.strava_activity import StravaActivity
from runsync.models.strava_credentials import StravaCredentials
from runsync.schemas.strava import RefreshRequest, SyncRequest
from runsync.services.strava_auth import AuthorizationState, StravaAuthorizationFlow
from runsync.services.strava_sync import StravaBulkSync
from runsync.services.token_refresher import TokenRefresher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/strava", tags=["strava"])


async def _authorize_url(flow: StravaAuthorizationFlow) -> str:
    try:
        return await flow.begin_authorization()
    except ConfigurationError as e:
        logger.error("Strava OAuth misconfigured: %s", e)
        raise HTTPException(status_code=503, detail="Strava app not configured.")


@router.get("/login")
async def strava_login(
    flow: Annotated[StravaAuthorizationFlow, Depends(get_authorization_flow)],
) -> RedirectResponse:
    """Start OAuth: redirect the browser to Strava's authorization page."""
    return RedirectResponse(await _authorize_url(flow), status_code=302)


@router.get("/authorize-url")
async def get_authorize_url(
    flow: Annotated[StravaAuthorizationFlow, Depends(get_authorization_flow)],
) -> dict:
    """Same as /login for clients that open the URL themselves."""
    return {"url": await _authorize_url(flow)}


@router.get("/callback")
async def strava_callback(
    flow: Annotated[StravaAuthorizationFlow, Depends(get_authorization_flow)],
    app_settings: Annotated[Settings, Depends(get_settings)],
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
):
    """Validate state, exchange code for tokens, store credentials, redirect back to the app."""
    app_url = app_settings.app_url.rstrip("/")
    try:
        result = await flow.complete_authorization(code, state, error)
    except MissingParameters:
        raise HTTPException(status_code=400, detail="Missing code or state parameter.")
    except ExpiredState:
        raise HTTPException(status_code=403, detail="State expired.")
    except InvalidState:
        logger.warning("Invalid OAuth state presented to callback")
        raise HTTPException(status_code=403, detail="Invalid or expired state.")
    except TokenExchangeFailed as e:
        logger.error("Strava token exchange failed: %s", e)
        raise HTTPException(status_code=502, detail="Failed to exchange code for tokens.")
    if result.status == AuthorizationState.DENIED:
        return RedirectResponse(f"{app_url}?error=access_denied", status_code=302)
    return RedirectResponse(f"{app_url}/dashboard?connected=true", status_code=302)


async def _credentials_or_404(session: AsyncSession, athlete_id: int) -> StravaCredentials:
    r = await session.execute(select(StravaCredentials).where(StravaCredentials.strava_athlete_id == athlete_id))
    creds = r.scalar_one_or_none()
    if not creds:
        raise HTTPException(status_code=404, detail="Profile not found.")
    return creds


@router.post("/refresh")
async def refresh_tokens(
    body: RefreshRequest,
    session: Annotated[AsyncSession, Depends(get_db)],
    refresher: Annotated[TokenRefresher, Depends(get_token_refresher)],
) -> dict:
    """Force a token refresh for an athlete."""
    creds = await _credentials_or_404(session, body.athlete_id)
    try:
        creds = await refresher.force_refresh(creds)
    except TokenRefreshFailed:
        raise HTTPException(status_code=502, detail="Token refresh failed.")
    return {"success": True, "expires_at": int(creds.expires_at.timestamp())}


@router.post("/sync")
async def trigger_sync(
    body: SyncRequest,
    bulk_sync: Annotated[StravaBulkSync, Depends(get_bulk_sync)],
) -> dict:
    """Pull runs from the last N weeks. Partial failures are reported in the counts."""
    try:
        summary = await bulk_sync.sync(body.athlete_id, body.weeks)
    except AccountNotFound:
        raise HTTPException(status_code=404, detail="Profile not found.")
    except TokenRefreshFailed:
        raise HTTPException(status_code=502, detail="Token refresh failed; reconnect Strava.")
    return {"success": True, **summary.model_dump()}


@router.get("/activities")
async def get_activities(
    session: Annotated[AsyncSession, Depends(get_db)],
    athlete_id: int,
    from_date: date | None = None,
    to_date: date | None = None,
) -> list[dict]:
    """Stored activities for an athlete (default last 14 days)."""
    creds = await _credentials_or_404(session, athlete_id)
    to_date = to_date or date.today()
    from_date = from_date or (to_date - timedelta(days=14))
    r = await session.execute(
        select(StravaActivity)
        .where(
            StravaActivity.user_id == creds.user_id,
            StravaActivity.start_date >= datetime.combine(from_date, datetime.min.time()).replace(tzinfo=timezone.utc),
            StravaActivity.start_date < datetime.combine(to_date + timedelta(days=1), datetime.min.time()).replace(tzinfo=timezone.utc),
        )
        .order_by(StravaActivity.start_date.desc())
    )
    out = []
    for a in r.scalars().all():
        out.append({
            "id": str(a.strava_id),
            "name": a.name,
            "type": a.type,
            "start_date": a.start_date.isoformat() if a.start_date else None,
            "distance_km": round(a.distance_m / 1000, 2) if a.distance_m is not None else None,
            "moving_time_sec": a.moving_time_sec,
            "elapsed_time_sec": a.elapsed_time_sec,
            "average_heartrate": a.average_heartrate,
        })
    return out
