from datetime import datetime
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from runsync.db.base import Base
from runsync.db.types import UTCDateTime, utcnow


class OAuthState(Base):
    """One in-flight Strava authorization attempt (CSRF nonce). Deleted when the callback consumes it."""

    __tablename__ = "oauth_states"

    state: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False, index=True)
