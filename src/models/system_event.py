"""
SystemEvent model - the durable event/job queue.

One row per unit of work. Rows are never deleted; the table doubles as an
audit log. Event types prefixed with "job:" are in-process Jobs and also
track progress and a result.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Text, DateTime, Index, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base

JOB_PREFIX = "job:"

EVENT_STATUSES = ("pending", "processing", "completed", "failed", "cancelled")


class SystemEvent(Base):
    __tablename__ = "system_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    event_type: Mapped[str] = mapped_column(
        String(255), nullable=False
    )  # webhook:github:push, image.generated, job:generate-report

    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        String(20), default="pending", nullable=False
    )  # pending, processing, completed, failed, cancelled

    priority: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )  # higher = claimed first

    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    # Not claimable before this instant (delayed execution + retry backoff)
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    processing_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    # Jobs only
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    result: Mapped[Optional[dict]] = mapped_column(JSONB)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_system_events_processing", "status", "scheduled_at", "priority"),
        Index("ix_system_events_event_type", "event_type"),
        Index("ix_system_events_user_id", "user_id"),
        Index("ix_system_events_created_at", "created_at"),
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_system_events_progress"),
    )

    @property
    def is_job(self) -> bool:
        return self.event_type.startswith(JOB_PREFIX)

    @property
    def job_type(self) -> Optional[str]:
        """Job type without the "job:" prefix, or None for plain events."""
        if not self.is_job:
            return None
        return self.event_type[len(JOB_PREFIX):]

    def __repr__(self) -> str:
        return f"<SystemEvent {self.event_type} ({self.status})>"
