"""
Strava API client: authorize URL, OAuth token exchange/refresh, single activity and activity listing.
Payloads are validated into schemas here; anything unexpected becomes a core error, never raw dicts.
"""
import logging
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from runsync.config import Settings
from runsync.core.exceptions import (
    RemoteFetchFailed,
    StravaUnauthorized,
    TokenExchangeFailed,
    TokenRefreshFailed,
)
from runsync.schemas.strava import ActivityDetail, ActivitySummary, TokenResponse

logger = logging.getLogger(__name__)


def _log_response_error(method: str, url: str, response: httpx.Response) -> None:
    """Log HTTP error without sensitive data."""
    body = (response.text or "")[:500]
    logger.warning("Strava %s %s -> %s body=%s", method, url, response.status_code, body)


def _log_rate_usage(response: httpx.Response) -> None:
    usage = response.headers.get("X-RateLimit-Usage")
    if usage:
        logger.debug("Strava rate usage %s (limit %s)", usage, response.headers.get("X-RateLimit-Limit"))


class StravaClient:
    def __init__(self, settings: Settings, http: httpx.AsyncClient):
        self.settings = settings
        self.http = http
        self.oauth_base = settings.strava_oauth_base.rstrip("/")
        self.api_base = settings.strava_api_base.rstrip("/")

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.settings.strava_client_id,
            "redirect_uri": self.settings.strava_redirect_uri,
            "response_type": "code",
            "approval_prompt": "auto",
            "scope": self.settings.strava_scope,
            "state": state,
        }
        return f"{self.oauth_base}/authorize?{urlencode(params)}"

    async def _post_token(self, data: dict[str, str]) -> TokenResponse:
        url = f"{self.oauth_base}/token"
        payload = {
            "client_id": self.settings.strava_client_id,
            "client_secret": self.settings.strava_client_secret,
            **data,
        }
        r = await self.http.post(url, data=payload)
        if r.status_code != 200:
            _log_response_error("POST", url, r)
            r.raise_for_status()
        return TokenResponse.model_validate(r.json())

    async def exchange_code(self, code: str) -> TokenResponse:
        """Exchange authorization code for tokens and the athlete summary."""
        try:
            tokens = await self._post_token({"code": code, "grant_type": "authorization_code"})
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            raise TokenExchangeFailed(f"Token exchange failed: {e}") from e
        if tokens.athlete is None:
            raise TokenExchangeFailed("Token exchange response has no athlete")
        return tokens

    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        """Trade the current refresh token for a new pair. The old refresh token is invalid afterwards."""
        try:
            return await self._post_token({"refresh_token": refresh_token, "grant_type": "refresh_token"})
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            raise TokenRefreshFailed(f"Token refresh failed: {e}") from e

    async def _get(self, path: str, access_token: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.api_base}{path}"
        try:
            r = await self.http.get(url, params=params, headers={"Authorization": f"Bearer {access_token}"})
        except httpx.HTTPError as e:
            raise RemoteFetchFailed(f"GET {path} failed: {e}") from e
        _log_rate_usage(r)
        if r.status_code == 401:
            raise StravaUnauthorized(f"GET {path} unauthorized")
        if r.status_code >= 400:
            _log_response_error("GET", url, r)
            if r.status_code == 429:
                raise RemoteFetchFailed(f"GET {path} rate limited")
            raise RemoteFetchFailed(f"GET {path} -> {r.status_code}")
        try:
            return r.json()
        except ValueError as e:
            raise RemoteFetchFailed(f"GET {path} returned invalid JSON") from e

    async def get_activity(self, access_token: str, activity_id: int) -> ActivityDetail:
        data = await self._get(f"/activities/{activity_id}", access_token)
        if not isinstance(data, dict):
            raise RemoteFetchFailed(f"Activity {activity_id}: unexpected payload")
        try:
            return ActivityDetail.from_payload(data)
        except ValidationError as e:
            raise RemoteFetchFailed(f"Activity {activity_id}: invalid payload ({e.error_count()} errors)") from e

    async def list_activities(
        self,
        access_token: str,
        after_epoch: int,
        page: int = 1,
        per_page: int = 100,
    ) -> list[ActivitySummary]:
        """One page of the athlete's activities started after `after_epoch`."""
        data = await self._get(
            "/athlete/activities",
            access_token,
            params={"after": after_epoch, "page": page, "per_page": per_page},
        )
        if not isinstance(data, list):
            raise RemoteFetchFailed("Activity listing: expected a list")
        try:
            return [ActivitySummary.model_validate(item) for item in data]
        except ValidationError as e:
            raise RemoteFetchFailed(f"Activity listing page {page}: invalid item") from e
