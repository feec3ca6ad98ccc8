"""
Inbound rate limiting (slowapi, per client IP). Strava webhook and health checks are exempt:
Strava pushes from a small set of IPs and must never see a 429.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from runsync.config import settings

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.api_rate_limit])
