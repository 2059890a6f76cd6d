"""Create the relay job queue table.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JOB_TYPES = ("process-transaction", "void-transaction", "historical-sync")
JOB_STATES = ("waiting", "active", "completed", "failed", "delayed")


def upgrade() -> None:
    op.create_table(
        "relay_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("job_type", sa.Enum(*JOB_TYPES, name="relay_job_type_enum"), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column(
            "state",
            sa.Enum(*JOB_STATES, name="relay_job_state_enum"),
            nullable=False,
            server_default="waiting",
        ),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("timeout_seconds", sa.Integer(), nullable=False, server_default=sa.text("120")),
        sa.Column("dedupe_key", sa.String(length=255), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("locked_by", sa.String(length=64), nullable=True),
        sa.Column("lock_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("dedupe_key", name="uq_relay_jobs_dedupe_key"),
    )
    op.create_index("ix_relay_jobs_dispatch", "relay_jobs", ["state", "priority", "id"])
    op.create_index("ix_relay_jobs_available_at", "relay_jobs", ["state", "available_at"])


def downgrade() -> None:
    op.drop_index("ix_relay_jobs_available_at", table_name="relay_jobs")
    op.drop_index("ix_relay_jobs_dispatch", table_name="relay_jobs")
    op.drop_table("relay_jobs")
    sa.Enum(name="relay_job_state_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="relay_job_type_enum").drop(op.get_bind(), checkfirst=True)
