"""
Webhook endpoint configuration - one row per named inbound webhook.
Secret, signature scheme and handler are resolved from here on every request.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Text, Boolean, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class WebhookConfig(Base):
    __tablename__ = "webhooks"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    # Identification
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)  # github-push
    provider: Mapped[str] = mapped_column(String(30), nullable=False)  # github, stripe, slack, custom
    description: Mapped[Optional[str]] = mapped_column(Text)

    # Authentication
    secret_key: Mapped[str] = mapped_column(Text, nullable=False)
    signature_header: Mapped[str] = mapped_column(
        String(100), nullable=False, default="X-Webhook-Signature"
    )
    signature_algorithm: Mapped[str] = mapped_column(
        String(30), nullable=False, default="sha256"
    )  # sha1, sha256, sha512, hmac-sha256

    # Handler
    handler_name: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type_prefix: Mapped[str] = mapped_column(String(100), nullable=False)  # webhook:github

    # Status + counters
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    received_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<WebhookConfig {self.name} provider={self.provider}>"
