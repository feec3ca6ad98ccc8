import logging
import sys
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from prometheus_client import make_asgi_app
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from runsync.api.v1 import strava, webhooks

# App loggers (OAuth, webhook, sync) print to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("runsync").setLevel(logging.DEBUG)
from runsync.config import settings
from runsync.core.rate_limit import limiter
from runsync.db.session import init_db
from runsync.services.http_client import close_http_client, init_http_client

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def scheduled_purge_oauth_states():
    """Drop CSRF states from abandoned authorizations."""
    from runsync.db.session import async_session_maker
    from runsync.services.oauth_state import OAuthStateLedger

    async with async_session_maker() as session:
        await OAuthStateLedger(session, settings).purge_expired()


async def scheduled_webhook_replay():
    """Retry webhook events whose processing failed (only when WEBHOOK_REPLAY_ENABLED)."""
    from runsync.db.session import async_session_maker
    from runsync.services.http_client import get_http_client
    from runsync.services.strava_client import StravaClient
    from runsync.services.strava_webhook import StravaWebhookGateway

    async with async_session_maker() as session:
        gateway = StravaWebhookGateway(session, settings, StravaClient(settings, get_http_client()))
        attempted = await gateway.replay_failures()
        if attempted:
            logger.info("Replayed %s failed Strava webhook events", attempted)


async def scheduled_strava_sync():
    """Pull sync for every connected athlete at SYNC_CRON_HOURS."""
    from runsync.db.session import async_session_maker
    from runsync.services.http_client import get_http_client
    from runsync.services.strava_client import StravaClient
    from runsync.services.strava_sync import StravaBulkSync

    async with async_session_maker() as session:
        bulk_sync = StravaBulkSync(session, settings, StravaClient(settings, get_http_client()))
        results = await bulk_sync.sync_all()
        logger.info("Scheduled Strava sync finished for %s athletes", len(results))


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_production()
    await init_db()
    init_http_client(settings)

    scheduler.add_job(
        scheduled_purge_oauth_states, "interval", minutes=settings.oauth_state_purge_interval_minutes
    )
    if settings.webhook_replay_enabled:
        scheduler.add_job(
            scheduled_webhook_replay, "interval", minutes=settings.webhook_replay_interval_minutes
        )
    for hour in settings.cron_hours():
        scheduler.add_job(scheduled_strava_sync, "cron", hour=hour, minute=0)

    scheduler.start()
    yield
    scheduler.shutdown()
    await close_http_client()


app = FastAPI(
    title="runsync API",
    description="Strava OAuth connection, webhook ingestion and activity sync",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.enable_hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] if settings.cors_origins else ["*"]
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(strava.router, prefix="/api/v1")
app.include_router(webhooks.router, prefix="/api/v1")

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}
