"""Initial schema: claims, verdicts, notifications and jobs

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "claims" in existing_tables:
        print("Tables already exist, skipping migration")
        return

    # Create claims table
    op.create_table(
        "claims",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.Text, nullable=False),
        sa.Column("title", sa.Text),
        sa.Column("text", sa.Text, nullable=False),
        sa.Column("category", sa.Text),
        sa.Column("source_url", sa.Text),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("ai_verdict_id", sa.Uuid),
        sa.Column("human_verdict_id", sa.Uuid),
        sa.Column("assigned_reviewer_id", sa.Text),
        sa.Column("rejection_reason", sa.Text),
        sa.Column("last_error", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_claims_status", "claims", ["status"])
    op.create_index("idx_claims_user_id", "claims", ["user_id"])

    # Create ai_verdicts table
    op.create_table(
        "ai_verdicts",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("claim_id", sa.Uuid, sa.ForeignKey("claims.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("verdict", sa.Text, nullable=False),
        sa.Column("confidence_score", sa.Float),
        sa.Column("explanation", sa.Text),
        sa.Column("evidence_sources", JSON_TYPE),
        sa.Column("ai_model_version", sa.Text),
        sa.Column("disclaimer", sa.Text),
        sa.Column("is_edited_by_human", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("edited_by_reviewer_id", sa.Text),
        sa.Column("edited_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )

    # Create verdicts table
    op.create_table(
        "verdicts",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("claim_id", sa.Uuid, sa.ForeignKey("claims.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reviewer_id", sa.Text, nullable=False),
        sa.Column("verdict", sa.Text, nullable=False),
        sa.Column("explanation", sa.Text),
        sa.Column("evidence_sources", JSON_TYPE),
        sa.Column("responsibility", sa.Text, nullable=False, server_default="organization"),
        sa.Column("is_final", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_verdicts_claim_id", "verdicts", ["claim_id"])

    # Create notifications table
    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.Text, nullable=False),
        sa.Column("type", sa.Text, nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("related_id", sa.Text),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_notifications_user_id", "notifications", ["user_id"])

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("job_id", sa.Uuid, primary_key=True),
        sa.Column("job_type", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("payload", JSON_TYPE),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False),
        sa.Column("backoff_type", sa.Text, nullable=False, server_default="exponential"),
        sa.Column("backoff_delay", sa.Float, nullable=False),
        sa.Column("timeout", sa.Float, nullable=False),
        sa.Column("ready_at", sa.DateTime, nullable=False),
        sa.Column("locked_by", sa.Text),
        sa.Column("heartbeat_at", sa.DateTime),
        sa.Column("stalled_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text),
        sa.Column("result", JSON_TYPE),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("finished_at", sa.DateTime),
    )
    op.create_index("idx_jobs_status_ready_at", "jobs", ["status", "ready_at"])
    op.create_index("idx_jobs_job_type", "jobs", ["job_type"])


def downgrade() -> None:
    op.drop_table("jobs")
    op.drop_table("notifications")
    op.drop_table("verdicts")
    op.drop_table("ai_verdicts")
    op.drop_table("claims")
