from __future__ import annotations

from datetime import datetime
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from runsync.db.base import Base
from runsync.db.types import UTCDateTime, utcnow


class User(Base):
    """Local account. Created on an athlete's first Strava authorization; owned by this app."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    strava_credentials: Mapped["StravaCredentials | None"] = relationship(
        "StravaCredentials", back_populates="user", uselist=False
    )
    strava_activities: Mapped[list["StravaActivity"]] = relationship(
        "StravaActivity", back_populates="user", cascade="all, delete-orphan"
    )
