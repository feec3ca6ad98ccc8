"""FastAPI dependencies: settings, Strava client and the per-request core services."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from runsync.config import Settings, settings
from runsync.db.session import get_db
from runsync.services.http_client import get_http_client
from runsync.services.strava_auth import StravaAuthorizationFlow
from runsync.services.strava_client import StravaClient
from runsync.services.strava_sync import StravaBulkSync
from runsync.services.strava_webhook import StravaWebhookGateway
from runsync.services.token_refresher import TokenRefresher


def get_settings() -> Settings:
    return settings


def get_strava_client(
    app_settings: Annotated[Settings, Depends(get_settings)],
) -> StravaClient:
    return StravaClient(app_settings, get_http_client())


def get_authorization_flow(
    session: Annotated[AsyncSession, Depends(get_db)],
    app_settings: Annotated[Settings, Depends(get_settings)],
    client: Annotated[StravaClient, Depends(get_strava_client)],
) -> StravaAuthorizationFlow:
    return StravaAuthorizationFlow(session, app_settings, client)


def get_token_refresher(
    session: Annotated[AsyncSession, Depends(get_db)],
    app_settings: Annotated[Settings, Depends(get_settings)],
    client: Annotated[StravaClient, Depends(get_strava_client)],
) -> TokenRefresher:
    return TokenRefresher(session, app_settings, client)


def get_bulk_sync(
    session: Annotated[AsyncSession, Depends(get_db)],
    app_settings: Annotated[Settings, Depends(get_settings)],
    client: Annotated[StravaClient, Depends(get_strava_client)],
    refresher: Annotated[TokenRefresher, Depends(get_token_refresher)],
) -> StravaBulkSync:
    return StravaBulkSync(session, app_settings, client, refresher)


def get_webhook_gateway(
    session: Annotated[AsyncSession, Depends(get_db)],
    app_settings: Annotated[Settings, Depends(get_settings)],
    client: Annotated[StravaClient, Depends(get_strava_client)],
    refresher: Annotated[TokenRefresher, Depends(get_token_refresher)],
) -> StravaWebhookGateway:
    return StravaWebhookGateway(session, app_settings, client, refresher)
