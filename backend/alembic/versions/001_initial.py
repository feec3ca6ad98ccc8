"""Initial schema: users, strava_credentials, strava_activities, oauth_states, strava_webhook_failures

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "strava_credentials",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("strava_athlete_id", sa.BigInteger(), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("encrypted_refresh_token", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_strava_credentials_user_id", "strava_credentials", ["user_id"], unique=True)
    op.create_index(
        "ix_strava_credentials_strava_athlete_id", "strava_credentials", ["strava_athlete_id"], unique=True
    )

    op.create_table(
        "strava_activities",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("strava_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(512), nullable=True),
        sa.Column("type", sa.String(64), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("distance_m", sa.Float(), nullable=True),
        sa.Column("moving_time_sec", sa.Integer(), nullable=True),
        sa.Column("elapsed_time_sec", sa.Integer(), nullable=True),
        sa.Column("average_speed", sa.Float(), nullable=True),
        sa.Column("max_speed", sa.Float(), nullable=True),
        sa.Column("average_heartrate", sa.Float(), nullable=True),
        sa.Column("max_heartrate", sa.Float(), nullable=True),
        sa.Column("suffer_score", sa.Float(), nullable=True),
        sa.Column("raw", sa.JSON(), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_strava_activities_user_id", "strava_activities", ["user_id"], unique=False)
    op.create_index("ix_strava_activities_strava_id", "strava_activities", ["strava_id"], unique=True)
    op.create_index("ix_strava_activities_start_date", "strava_activities", ["start_date"], unique=False)

    op.create_table(
        "oauth_states",
        sa.Column("state", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("state"),
    )
    op.create_index("ix_oauth_states_created_at", "oauth_states", ["created_at"], unique=False)

    op.create_table(
        "strava_webhook_failures",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_id", sa.BigInteger(), nullable=False),
        sa.Column("object_id", sa.BigInteger(), nullable=False),
        sa.Column("aspect_type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_strava_webhook_failures_owner_id", "strava_webhook_failures", ["owner_id"], unique=False)
    op.create_index("ix_strava_webhook_failures_status", "strava_webhook_failures", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_strava_webhook_failures_status", table_name="strava_webhook_failures")
    op.drop_index("ix_strava_webhook_failures_owner_id", table_name="strava_webhook_failures")
    op.drop_table("strava_webhook_failures")
    op.drop_index("ix_oauth_states_created_at", table_name="oauth_states")
    op.drop_table("oauth_states")
    op.drop_index("ix_strava_activities_start_date", table_name="strava_activities")
    op.drop_index("ix_strava_activities_strava_id", table_name="strava_activities")
    op.drop_index("ix_strava_activities_user_id", table_name="strava_activities")
    op.drop_table("strava_activities")
    op.drop_index("ix_strava_credentials_strava_athlete_id", table_name="strava_credentials")
    op.drop_index("ix_strava_credentials_user_id", table_name="strava_credentials")
    op.drop_table("strava_credentials")
    op.drop_table("users")
