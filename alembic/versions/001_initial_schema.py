"""Initial schema - event queue, webhooks, webhook audit log, remote handlers.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Durable event/job queue
    op.create_table(
        "system_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_type", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("user_id", postgresql.UUID(as_uuid=True)),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("processing_started_at", sa.DateTime(timezone=True)),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("error_message", sa.Text),
        sa.Column("progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("result", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_system_events_progress"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="ck_system_events_status",
        ),
    )
    op.create_index("ix_system_events_processing", "system_events", ["status", "scheduled_at", "priority"])
    op.create_index("ix_system_events_event_type", "system_events", ["event_type"])
    op.create_index("ix_system_events_user_id", "system_events", ["user_id"])
    op.create_index("ix_system_events_created_at", "system_events", ["created_at"])
    # Claim query only ever scans due pending rows
    op.create_index(
        "ix_system_events_pending_claim",
        "system_events",
        [sa.text("priority DESC"), "created_at"],
        postgresql_where=sa.text("status = 'pending'"),
    )

    # Webhook endpoint configuration
    op.create_table(
        "webhooks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("secret_key", sa.Text, nullable=False),
        sa.Column("signature_header", sa.String(100), nullable=False, server_default="X-Webhook-Signature"),
        sa.Column("signature_algorithm", sa.String(30), nullable=False, server_default="sha256"),
        sa.Column("handler_name", sa.String(100), nullable=False),
        sa.Column("event_type_prefix", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("received_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_received_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "provider IN ('github', 'stripe', 'slack', 'custom', 'generic')",
            name="ck_webhooks_provider",
        ),
    )
    op.create_index("ix_webhooks_is_active", "webhooks", ["is_active"])

    # Webhook audit trail
    op.create_table(
        "webhook_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "webhook_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=True,
        ),
        sa.Column("webhook_name", sa.String(100), nullable=False),
        sa.Column("request_method", sa.String(10), nullable=False, server_default="POST"),
        sa.Column("request_headers", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("request_body", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("source_ip", sa.String(64)),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error_message", sa.Text),
        sa.Column("processing_time_ms", sa.Integer),
        sa.Column(
            "system_event_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("system_events.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('success', 'not_found', 'signature_failed', 'handler_failed')",
            name="ck_webhook_logs_status",
        ),
    )
    op.create_index("ix_webhook_logs_webhook_id", "webhook_logs", ["webhook_id"])
    op.create_index("ix_webhook_logs_webhook_name", "webhook_logs", ["webhook_name"])
    op.create_index("ix_webhook_logs_status", "webhook_logs", ["status"])
    op.create_index("ix_webhook_logs_system_event_id", "webhook_logs", ["system_event_id"])
    op.create_index("ix_webhook_logs_received_at", "webhook_logs", ["received_at"])

    # Remote event handlers
    op.create_table(
        "event_handlers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_type", sa.String(255), nullable=False, unique=True),
        sa.Column("handler_function", sa.Text, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("timeout_seconds", sa.Integer, nullable=False, server_default="300"),
        sa.Column("description", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_event_handlers_is_active", "event_handlers", ["is_active"])


def downgrade() -> None:
    op.drop_table("event_handlers")
    op.drop_table("webhook_logs")
    op.drop_table("webhooks")
    op.drop_table("system_events")
