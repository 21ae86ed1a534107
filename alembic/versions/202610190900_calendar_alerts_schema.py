"""Create calendar events, subscriptions, digest schedules and alert queue."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _has_table(inspector: sa.Inspector, table_name: str) -> bool:
    """Check if a table exists."""

    return table_name in inspector.get_table_names()


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def _jsonb_list(name: str) -> sa.Column:
    return sa.Column(
        name,
        postgresql.JSONB(astext_type=sa.Text()),
        nullable=False,
        server_default=sa.text("'[]'::jsonb"),
    )


def upgrade() -> None:
    """Create the calendar alert tables when missing."""

    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _has_table(inspector, "calendar_events"):
        op.create_table(
            "calendar_events",
            sa.Column("event_id", sa.BigInteger(), primary_key=True, autoincrement=True),
            sa.Column("title", sa.Text(), nullable=False),
            sa.Column("currency", sa.String(length=8), nullable=False),
            # Naive exchange-local wall clock, never UTC.
            sa.Column("timestamp", sa.DateTime(timezone=False), nullable=False),
            sa.Column("impact", sa.String(length=16), nullable=False),
            sa.Column("forecast", sa.Text(), nullable=False, server_default=sa.text("''")),
            sa.Column("previous", sa.Text(), nullable=False, server_default=sa.text("''")),
            sa.Column("actual", sa.Text(), nullable=True),
            sa.Column(
                "processed",
                sa.Boolean(),
                nullable=False,
                server_default=sa.text("false"),
            ),
            sa.Column("source", sa.String(length=64), nullable=False),
            sa.Column("fingerprint", sa.String(length=64), nullable=False),
            *_timestamps(),
            sa.UniqueConstraint(
                "title",
                "timestamp",
                "impact",
                "currency",
                name="calendar_events_identity_key",
            ),
        )
        op.create_index(
            "idx_calendar_events_timestamp", "calendar_events", ["timestamp"]
        )
        op.create_index(
            "idx_calendar_events_unprocessed",
            "calendar_events",
            ["timestamp"],
            postgresql_where=sa.text("processed = false"),
        )

    if not _has_table(inspector, "alert_subscriptions"):
        op.create_table(
            "alert_subscriptions",
            sa.Column(
                "subscription_id", sa.BigInteger(), primary_key=True, autoincrement=True
            ),
            sa.Column("server_id", sa.String(length=64), nullable=False),
            sa.Column("channel_id", sa.String(length=64), nullable=False),
            _jsonb_list("currencies"),
            _jsonb_list("impacts"),
            sa.Column(
                "alert_classes",
                postgresql.JSONB(astext_type=sa.Text()),
                nullable=False,
            ),
            *_timestamps(),
            sa.UniqueConstraint(
                "server_id", "channel_id", name="alert_subscriptions_channel_key"
            ),
            sa.CheckConstraint(
                "jsonb_array_length(alert_classes) > 0",
                name="alert_subscriptions_alert_classes_check",
            ),
        )

    if not _has_table(inspector, "digest_schedules"):
        op.create_table(
            "digest_schedules",
            sa.Column(
                "schedule_id", sa.BigInteger(), primary_key=True, autoincrement=True
            ),
            sa.Column("server_id", sa.String(length=64), nullable=False),
            sa.Column("channel_id", sa.String(length=64), nullable=False),
            sa.Column("hour", sa.SmallInteger(), nullable=False),
            sa.Column("minute", sa.SmallInteger(), nullable=False),
            sa.Column("news_scope", sa.String(length=16), nullable=False),
            _jsonb_list("currencies"),
            _jsonb_list("impacts"),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.text("now()"),
            ),
            sa.UniqueConstraint(
                "server_id",
                "channel_id",
                "hour",
                "minute",
                "news_scope",
                name="digest_schedules_identity_key",
            ),
            sa.CheckConstraint("hour BETWEEN 0 AND 23", name="digest_schedules_hour_check"),
            sa.CheckConstraint(
                "minute BETWEEN 0 AND 59", name="digest_schedules_minute_check"
            ),
        )
        op.create_index(
            "idx_digest_schedules_time", "digest_schedules", ["hour", "minute"]
        )

    if not _has_table(inspector, "alert_queue"):
        op.execute(sa.text("CREATE EXTENSION IF NOT EXISTS pgcrypto"))
        op.create_table(
            "alert_queue",
            sa.Column(
                "message_id",
                postgresql.UUID(as_uuid=True),
                primary_key=True,
                server_default=sa.text("gen_random_uuid()"),
            ),
            sa.Column("queue_name", sa.String(length=100), nullable=False),
            sa.Column(
                "payload",
                postgresql.JSONB(astext_type=sa.Text()),
                nullable=False,
                server_default=sa.text("'{}'::jsonb"),
            ),
            sa.Column(
                "run_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.text("now()"),
            ),
            sa.Column(
                "status",
                sa.String(length=20),
                nullable=False,
                server_default=sa.text("'queued'"),
            ),
            sa.Column(
                "attempts", sa.Integer(), nullable=False, server_default=sa.text("0")
            ),
            sa.Column(
                "max_attempts",
                sa.Integer(),
                nullable=False,
                server_default=sa.text("5"),
            ),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("attempts >= 0", name="alert_queue_attempts_check"),
            sa.CheckConstraint(
                "max_attempts > 0", name="alert_queue_max_attempts_check"
            ),
            sa.CheckConstraint(
                "status IN ('queued', 'in_progress', 'done', 'failed')",
                name="alert_queue_status_check",
            ),
        )
        op.create_index(
            "idx_alert_queue_status_run_at",
            "alert_queue",
            ["queue_name", "status", "run_at"],
        )


def downgrade() -> None:
    """Drop the calendar alert tables."""

    op.drop_index("idx_alert_queue_status_run_at", table_name="alert_queue")
    op.drop_table("alert_queue")
    op.drop_index("idx_digest_schedules_time", table_name="digest_schedules")
    op.drop_table("digest_schedules")
    op.drop_table("alert_subscriptions")
    op.drop_index("idx_calendar_events_unprocessed", table_name="calendar_events")
    op.drop_index("idx_calendar_events_timestamp", table_name="calendar_events")
    op.drop_table("calendar_events")
