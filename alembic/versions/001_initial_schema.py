"""Initial schema with jobs, dead_letters and config tables

Revision ID: 001
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

job_state = sa.Enum("pending", "processing", "completed", name="job_state", create_constraint=True)


def upgrade() -> None:
    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("command", sa.Text, nullable=False),
        sa.Column("state", job_state, nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("locked_by", sa.String(255), nullable=True),
        sa.Column("locked_at", sa.DateTime, nullable=True),
        sa.Column("run_after", sa.DateTime, nullable=True),
        sa.Column("output", sa.Text, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_jobs_state", "jobs", ["state"])
    op.create_index("ix_jobs_claim_poll", "jobs", ["state", "run_after", "created_at"])
    op.create_index("ix_jobs_locked_at", "jobs", ["locked_at"])

    # Create dead letter table
    op.create_table(
        "dead_letters",
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("command", sa.Text, nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False),
        sa.Column("max_retries", sa.Integer, nullable=False),
        sa.Column("failed_at", sa.DateTime, nullable=False),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_dead_letters_failed_at", "dead_letters", ["failed_at"])

    # Create config table with retry defaults
    config = op.create_table(
        "config",
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("value", sa.Text, nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    op.bulk_insert(
        config,
        [
            {"key": "backoff_base", "value": "2"},
            {"key": "base_delay_seconds", "value": "1"},
            {"key": "max_retries", "value": "3"},
        ],
    )


def downgrade() -> None:
    op.drop_table("config")

    op.drop_index("ix_dead_letters_failed_at", table_name="dead_letters")
    op.drop_table("dead_letters")

    op.drop_index("ix_jobs_locked_at", table_name="jobs")
    op.drop_index("ix_jobs_claim_poll", table_name="jobs")
    op.drop_index("ix_jobs_state", table_name="jobs")
    op.drop_table("jobs")

    # Drop enum (no-op on backends without named types)
    job_state.drop(op.get_bind(), checkfirst=True)
