"""Prometheus counters for the Strava core. Exposed at /metrics (see main.py)."""

from prometheus_client import Counter

WEBHOOK_EVENTS = Counter(
    "runsync_strava_webhook_events_total",
    "Strava webhook deliveries by processing outcome",
    ["outcome"],
)
SYNC_ITEMS = Counter(
    "runsync_strava_sync_items_total",
    "Activities handled by bulk sync",
    ["result"],
)
TOKEN_REFRESHES = Counter(
    "runsync_strava_token_refreshes_total",
    "Strava access token refreshes",
    ["result"],
)
