from runsync.models.user import User
from runsync.models.strava_credentials import StravaCredentials
from runsync.models.strava_activity import StravaActivity
from runsync.models.oauth_state import OAuthState
from runsync.models.strava_webhook_failure import StravaWebhookFailure

__all__ = [
    "User",
    "StravaCredentials",
    "StravaActivity",
    "OAuthState",
    "StravaWebhookFailure",
]
