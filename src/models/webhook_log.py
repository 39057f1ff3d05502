"""
Webhook audit trail - every named webhook attempt is recorded, including
unknown names and rejected signatures.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, JSONB
from src.database import Base

LOG_STATUSES = ("success", "not_found", "signature_failed", "handler_failed")


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    webhook_id = Column(
        UUID(as_uuid=True), ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=True, index=True
    )
    webhook_name = Column(String(100), nullable=False, index=True)  # snapshot of webhooks.name
    request_method = Column(String(10), nullable=False, default="POST")
    request_headers = Column(JSONB, nullable=False, default=dict)
    request_body = Column(JSONB, nullable=False, default=dict)
    source_ip = Column(String(64), nullable=True)
    status = Column(String(20), nullable=False, index=True)
    error_message = Column(Text, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    system_event_id = Column(
        UUID(as_uuid=True), ForeignKey("system_events.id", ondelete="SET NULL"), nullable=True, index=True
    )
    received_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True
    )
