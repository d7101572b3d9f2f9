"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00.000000

emotion_events    scored messages, keyed by the platform event id, with
                  the (user_id, timestamp) and (date, timestamp) orderings
queue_messages    ordered per-group event queue
job_runs          one row per scheduled run window
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_EMOTIONS = ("joy", "sad", "anger", "fear", "disgust", "contempt", "surprise")


def upgrade() -> None:
    # --- emotion_events ---
    op.create_table(
        "emotion_events",
        sa.Column("event_id", sa.String(128), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("channel_id", sa.String(64), nullable=False),
        sa.Column("channel_type", sa.String(32), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("month", sa.String(7), nullable=False),
        *[sa.Column(name, sa.Float(), nullable=False) for name in _EMOTIONS],
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_emotion_events_user_ts", "emotion_events", ["user_id", "timestamp"])
    op.create_index("ix_emotion_events_date_ts", "emotion_events", ["date", "timestamp"])

    # --- queue_messages ---
    op.create_table(
        "queue_messages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("group_id", sa.String(160), nullable=False),
        sa.Column("dedup_id", sa.String(128), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("visible_at", sa.Float(), nullable=False),
        sa.Column("receipt_handle", sa.String(64), nullable=True),
        sa.Column("receive_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dedup_id"),
    )
    op.create_index(
        "ix_queue_messages_status_group", "queue_messages", ["status", "group_id", "id"]
    )

    # --- job_runs ---
    op.create_table(
        "job_runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_name", sa.String(64), nullable=False),
        sa.Column("run_key", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_name", "run_key", name="uq_job_runs_name_key"),
    )
    op.create_index("ix_job_runs_id", "job_runs", ["id"])


def downgrade() -> None:
    op.drop_index("ix_job_runs_id", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_index("ix_queue_messages_status_group", table_name="queue_messages")
    op.drop_table("queue_messages")
    op.drop_index("ix_emotion_events_date_ts", table_name="emotion_events")
    op.drop_index("ix_emotion_events_user_ts", table_name="emotion_events")
    op.drop_table("emotion_events")
