"""Errors raised by the Strava OAuth and sync core. Routers map them to HTTP status codes."""


class StravaSyncError(Exception):
    """Base error for the Strava core."""


class ConfigurationError(StravaSyncError):
    """Missing or invalid Strava/app configuration. Not recoverable at runtime."""


class MissingParameters(StravaSyncError):
    """OAuth callback without code or state."""


class InvalidState(StravaSyncError):
    """Unknown or already consumed OAuth state."""


class ExpiredState(StravaSyncError):
    """OAuth state older than the validity window."""


class TokenExchangeFailed(StravaSyncError):
    """Authorization code could not be exchanged for tokens."""


class TokenRefreshFailed(StravaSyncError):
    """Refresh token was rejected or the token endpoint failed."""


class RemoteFetchFailed(StravaSyncError):
    """Strava API call failed or returned an unexpected payload."""


class StravaUnauthorized(RemoteFetchFailed):
    """Strava answered 401 for an authenticated call."""


class AccountNotFound(StravaSyncError):
    """No local account is connected for the given Strava athlete id."""

    def __init__(self, athlete_id: int):
        super().__init__(f"No connected account for athlete {athlete_id}")
        self.athlete_id = athlete_id


class WebhookVerificationFailed(StravaSyncError):
    """Push subscription verification presented a wrong mode or token."""
