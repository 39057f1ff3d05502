"""
Event queue service - the only code path that writes system_events rows.

Producers call enqueue_event()/enqueue_job(). The dispatcher drives the
lifecycle through claim_batch() -> update_progress()* -> complete() | fail().
Every mutation is a conditional UPDATE (or a row-locked read-modify-write),
so overlapping dispatcher runs never double-claim or clobber a row.

Also pushes a notification to Redis so an in-process dispatcher can wake
immediately via BRPOP instead of waiting for its next interval.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from sqlalchemy import select, update, case
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.system_event import SystemEvent, JOB_PREFIX

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid(value: Union[str, uuid.UUID]) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


class EventQueue:
    """Durable priority queue backed by the system_events table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retry_backoff_seconds: float = 1.0,
        notify: bool = True,
    ):
        self._session_factory = session_factory
        self.retry_backoff_seconds = retry_backoff_seconds
        self.notify = notify

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def build_event(
        self,
        event_type: str,
        payload: Optional[Any] = None,
        priority: int = 0,
        delay_seconds: int = 0,
        scheduled_at: Optional[datetime] = None,
        max_retries: int = 3,
        user_id: Optional[Union[str, uuid.UUID]] = None,
    ) -> SystemEvent:
        """Build a pending SystemEvent without persisting it (caller owns the session)."""
        if scheduled_at is None:
            scheduled_at = _utcnow()
            if delay_seconds > 0:
                scheduled_at = scheduled_at + timedelta(seconds=delay_seconds)

        return SystemEvent(
            id=uuid.uuid4(),
            event_type=event_type,
            payload=payload if payload is not None else {},
            status="pending",
            priority=priority,
            max_retries=max_retries,
            retry_count=0,
            progress=0,
            scheduled_at=scheduled_at,
            user_id=_as_uuid(user_id) if user_id else None,
        )

    async def enqueue_event(
        self,
        event_type: str,
        payload: Optional[Any] = None,
        priority: int = 0,
        delay_seconds: int = 0,
        scheduled_at: Optional[datetime] = None,
        max_retries: int = 3,
        user_id: Optional[Union[str, uuid.UUID]] = None,
    ) -> SystemEvent:
        """
        Insert a pending event.

        Args:
            event_type: Routing key ("job:<type>" for in-process jobs)
            payload: JSON-serializable data handed to the handler
            priority: Higher values are claimed first
            delay_seconds: Delay before the event becomes claimable
            scheduled_at: Absolute claimable-from time (overrides delay_seconds)
            max_retries: Attempts before the event fails terminally
            user_id: Optional owner

        Returns:
            The persisted SystemEvent
        """
        event = self.build_event(
            event_type,
            payload=payload,
            priority=priority,
            delay_seconds=delay_seconds,
            scheduled_at=scheduled_at,
            max_retries=max_retries,
            user_id=user_id,
        )

        async with self._session_factory() as db:
            db.add(event)
            await db.commit()

        logger.info(
            "Event enqueued: type=%s priority=%d id=%s",
            event_type, priority, str(event.id)[:8],
            extra={"event_id": str(event.id), "event_type": event_type},
        )

        if self.notify and scheduled_at is None and delay_seconds == 0:
            await self.notify_dispatcher(str(event.id))

        return event

    async def enqueue_job(
        self,
        job_type: str,
        params: Optional[Any] = None,
        **kwargs,
    ) -> SystemEvent:
        """Insert a trackable Job (event_type "job:<job_type>")."""
        return await self.enqueue_event(f"{JOB_PREFIX}{job_type}", payload=params, **kwargs)

    async def notify_dispatcher(self, event_id: str) -> None:
        """Wake an in-process dispatcher (non-blocking, best-effort)."""
        try:
            from src.utils.redis_client import get_redis, DISPATCH_NOTIFY_KEY
            redis = await get_redis()
            await redis.lpush(DISPATCH_NOTIFY_KEY, event_id)
        except Exception as e:
            logger.debug("Failed to notify dispatcher: %s", str(e))

    # ------------------------------------------------------------------
    # Claim protocol
    # ------------------------------------------------------------------

    async def claim_batch(self, limit: int) -> list[SystemEvent]:
        """
        Atomically claim up to `limit` due pending events.

        Selection and the pending -> processing transition happen in one
        UPDATE ... WHERE id IN (SELECT ... FOR UPDATE SKIP LOCKED) RETURNING
        statement. The outer status guard keeps the update conditional on
        backends without SKIP LOCKED.
        """
        if limit <= 0:
            return []

        now = _utcnow()
        due_ids = (
            select(SystemEvent.id)
            .where(
                SystemEvent.status == "pending",
                SystemEvent.scheduled_at <= now,
            )
            .order_by(SystemEvent.priority.desc(), SystemEvent.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(SystemEvent)
            .where(SystemEvent.id.in_(due_ids), SystemEvent.status == "pending")
            .values(status="processing", processing_started_at=now, updated_at=now)
            .returning(SystemEvent)
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory() as db:
            result = await db.execute(stmt)
            events = list(result.scalars().all())
            await db.commit()

        # RETURNING order is unspecified
        events.sort(key=lambda e: (-e.priority, e.created_at))

        if events:
            logger.info("Claimed %d events", len(events))
        return events

    async def update_progress(self, event_id: Union[str, uuid.UUID], progress: float) -> bool:
        """
        Record job progress. Clamped to [0, 100]; ignored unless the row is
        processing, and never lowers the stored value.
        """
        pct = max(0, min(100, int(round(progress))))
        stmt = (
            update(SystemEvent)
            .where(
                SystemEvent.id == _as_uuid(event_id),
                SystemEvent.status == "processing",
                SystemEvent.progress <= pct,
            )
            .values(progress=pct, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
        return result.rowcount > 0

    async def complete(self, event_id: Union[str, uuid.UUID], result: Optional[Any] = None) -> bool:
        """
        Mark a processing event completed. Jobs jump to progress=100.
        Returns False (and changes nothing) if the event is not processing,
        which makes repeated calls idempotent.
        """
        now = _utcnow()
        values = {
            "status": "completed",
            "processed_at": now,
            "updated_at": now,
            "progress": case(
                (SystemEvent.event_type.like(f"{JOB_PREFIX}%"), 100),
                else_=SystemEvent.progress,
            ),
        }
        if result is not None:
            values["result"] = result

        stmt = (
            update(SystemEvent)
            .where(SystemEvent.id == _as_uuid(event_id), SystemEvent.status == "processing")
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as db:
            res = await db.execute(stmt)
            await db.commit()

        completed = res.rowcount > 0
        if not completed:
            logger.debug("complete() ignored for event %s (not processing)", str(event_id)[:8])
        return completed

    def backoff_seconds(self, retry_count: int) -> float:
        """Exponential backoff: base * 2^retry_count, capped at one hour."""
        return min(self.retry_backoff_seconds * (2 ** retry_count), MAX_BACKOFF_SECONDS)

    async def fail(
        self,
        event_id: Union[str, uuid.UUID],
        message: str,
        max_retries: Optional[int] = None,
    ) -> Optional[str]:
        """
        Record a failed attempt.

        Increments retry_count; while retry_count < max_retries the event goes
        back to pending with a backoff-delayed scheduled_at, otherwise it fails
        terminally. A max_retries argument (the remote handler's retry policy)
        replaces the row's value before the check. Returns the new status, or
        None if the event was not processing.
        """
        now = _utcnow()
        async with self._session_factory() as db:
            row = await db.execute(
                select(SystemEvent)
                .where(SystemEvent.id == _as_uuid(event_id), SystemEvent.status == "processing")
                .with_for_update()
            )
            event = row.scalar_one_or_none()
            if event is None:
                logger.debug("fail() ignored for event %s (not processing)", str(event_id)[:8])
                return None

            if max_retries is not None:
                event.max_retries = max_retries
            event.retry_count = event.retry_count + 1
            event.error_message = message
            event.updated_at = now

            if event.retry_count < event.max_retries:
                delay = self.backoff_seconds(event.retry_count)
                event.status = "pending"
                event.scheduled_at = now + timedelta(seconds=delay)
                logger.warning(
                    "Event retry %d/%d: id=%s type=%s backoff=%ss",
                    event.retry_count, event.max_retries,
                    str(event.id)[:8], event.event_type, delay,
                    extra={"event_id": str(event.id), "event_type": event.event_type},
                )
            else:
                event.status = "failed"
                event.processed_at = now
                logger.error(
                    "Event failed (max retries): id=%s type=%s error=%s",
                    str(event.id)[:8], event.event_type, message,
                    extra={"event_id": str(event.id), "event_type": event.event_type},
                )

            status = event.status
            await db.commit()

        return status

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_event(self, event_id: Union[str, uuid.UUID]) -> Optional[SystemEvent]:
        async with self._session_factory() as db:
            return await db.get(SystemEvent, _as_uuid(event_id))
