"""
Event dispatcher - claims due events and routes them to their handlers.

One run = one claimed batch:
- "job:<type>" events run in-process via the job handler registry
- everything else is POSTed to the remote handler configured for its type
- events with no handler are completed immediately (nothing to do)

Items in a batch run concurrently and are isolated from each other: one
failing item never affects the outcome recorded for another.

The background loop (run_event_dispatcher) waits on a Redis notification
between runs, falling back to a plain sleep when Redis is unavailable.
POST /process-events triggers a single run on demand.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from src.models.event_handler import RemoteHandlerConfig
from src.models.system_event import JOB_PREFIX, SystemEvent
from src.services.event_queue import EventQueue
from src.services.job_handlers import JobContext, JobHandlerRegistry
from src.services.remote_handlers import RemoteHandlerRegistry
from src.utils.logging import generate_correlation_id, get_correlation_id, set_correlation_id

logger = logging.getLogger(__name__)

NO_HANDLER_MESSAGE = "No handler registered"
HEARTBEAT_TTL_SECONDS = 120


@dataclass
class DispatchSummary:
    total: int = 0
    completed: int = 0
    failed: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "details": self.details,
        }


class EventDispatcher:
    def __init__(
        self,
        queue: EventQueue,
        job_handlers: JobHandlerRegistry,
        remote_handlers: RemoteHandlerRegistry,
        batch_size: int = 10,
    ):
        self.queue = queue
        self.job_handlers = job_handlers
        self.remote_handlers = remote_handlers
        self.batch_size = batch_size

    async def run(self) -> DispatchSummary:
        """
        Claim one batch and process every item.

        Raises only if the claim itself fails; per-item errors are recorded
        on the item and reported in the summary.
        """
        if get_correlation_id() is None:
            set_correlation_id(generate_correlation_id())

        events = await self.queue.claim_batch(self.batch_size)
        if not events:
            logger.debug("No pending events")
            return DispatchSummary()

        logger.info("Dispatching %d events", len(events))

        remote_configs: dict[str, RemoteHandlerConfig] = {}
        load_error: Optional[str] = None
        if any(not event.is_job for event in events):
            try:
                remote_configs = await self.remote_handlers.load_active()
            except Exception as e:
                load_error = f"Failed to load event handlers: {e}"
                logger.error(load_error)

        results = await asyncio.gather(
            *(self._process(event, remote_configs, load_error) for event in events),
            return_exceptions=True,
        )

        summary = DispatchSummary(total=len(events))
        for event, result in zip(events, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Event %s could not be recorded and may be stuck in processing: %r",
                    str(event.id), result,
                    extra={"event_id": str(event.id), "event_type": event.event_type},
                )
                result = _detail(event, "error", error=str(result) or type(result).__name__)
            summary.details.append(result)
            if result["status"] == "completed":
                summary.completed += 1
            else:
                summary.failed += 1

        logger.info(
            "Dispatch run finished: total=%d completed=%d failed=%d",
            summary.total, summary.completed, summary.failed,
        )
        return summary

    async def _process(
        self,
        event: SystemEvent,
        remote_configs: dict[str, RemoteHandlerConfig],
        load_error: Optional[str],
    ) -> dict:
        if event.is_job:
            return await self._run_job(event)
        if load_error is not None:
            return await self._record_failure(event, load_error)
        return await self._run_remote(event, remote_configs.get(event.event_type))

    async def _run_job(self, event: SystemEvent) -> dict:
        job_type = event.event_type[len(JOB_PREFIX):]
        handler = self.job_handlers.get(job_type)
        if handler is None:
            logger.warning("No job handler for %s", event.event_type, extra={"event_type": event.event_type})
            await self.queue.complete(event.id)
            return _detail(event, "completed", message=NO_HANDLER_MESSAGE)

        job_id = str(event.id)

        async def _update_progress(pct: float) -> None:
            await self.queue.update_progress(job_id, pct)

        try:
            async with self.queue.session_factory() as db:
                result = await handler(event.payload, JobContext(db=db, job_id=job_id, update_progress=_update_progress))
                await db.commit()
        except Exception as e:
            logger.error(
                "Job %s failed: %s", event.event_type, str(e),
                extra={"event_id": job_id, "event_type": event.event_type, "handler": job_type},
            )
            return await self._record_failure(event, str(e) or type(e).__name__, handler=job_type)

        await self.queue.complete(event.id, result)
        logger.info(
            "Job completed: id=%s type=%s", job_id[:8], event.event_type,
            extra={"event_id": job_id, "event_type": event.event_type, "handler": job_type},
        )
        return _detail(event, "completed", handler=job_type)

    async def _run_remote(self, event: SystemEvent, config: Optional[RemoteHandlerConfig]) -> dict:
        if config is None:
            logger.info("No remote handler for %s", event.event_type, extra={"event_type": event.event_type})
            await self.queue.complete(event.id)
            return _detail(event, "completed", message=NO_HANDLER_MESSAGE)

        try:
            await self.remote_handlers.invoke(config, event)
        except Exception as e:
            logger.error(
                "Remote handler %s failed for %s: %s", config.handler_function, event.event_type, str(e),
                extra={"event_id": str(event.id), "event_type": event.event_type, "handler": config.handler_function},
            )
            return await self._record_failure(
                event, str(e), handler=config.handler_function, max_retries=config.max_retries
            )

        await self.queue.complete(event.id)
        return _detail(event, "completed", handler=config.handler_function)

    async def _record_failure(
        self,
        event: SystemEvent,
        message: str,
        handler: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> dict:
        status = await self.queue.fail(event.id, message, max_retries=max_retries)
        if status is None:
            logger.warning(
                "Failure not recorded, event %s is no longer processing", str(event.id)[:8],
                extra={"event_id": str(event.id), "event_type": event.event_type, "handler": handler},
            )
            return _detail(
                event, "error", handler=handler,
                error=f"{message} (not recorded: event no longer processing)",
            )

        detail = _detail(event, "failed", handler=handler, error=message)
        detail["retry_count"] = event.retry_count + 1
        detail["will_retry"] = status == "pending"
        return detail


def _detail(event: SystemEvent, status: str, **fields) -> dict:
    detail = {"event_id": str(event.id), "event_type": event.event_type, "status": status}
    detail.update({key: value for key, value in fields.items() if value is not None})
    return detail


async def _heartbeat() -> None:
    """Store heartbeat timestamp in Redis."""
    try:
        from src.utils.redis_client import get_redis, HEARTBEAT_KEY_PREFIX
        redis = await get_redis()
        await redis.set(
            f"{HEARTBEAT_KEY_PREFIX}event_dispatcher",
            datetime.now(timezone.utc).isoformat(),
            ex=HEARTBEAT_TTL_SECONDS,
        )
    except Exception as e:
        logger.debug("Heartbeat write failed: %s", str(e))


async def _wait_for_work(interval_seconds: int) -> None:
    """Block until an enqueue notification arrives or the interval passes."""
    try:
        from src.utils.redis_client import get_redis, DISPATCH_NOTIFY_KEY
        redis = await get_redis()
        result = await redis.brpop(DISPATCH_NOTIFY_KEY, timeout=interval_seconds)
        if result:
            # Drain so a burst of enqueues triggers one run, not many
            while await redis.rpop(DISPATCH_NOTIFY_KEY):
                pass
    except Exception as e:
        logger.debug("Redis BRPOP unavailable, falling back to sleep: %s", str(e))
        await asyncio.sleep(interval_seconds)


async def run_event_dispatcher(dispatcher: EventDispatcher, interval_seconds: int = 60) -> None:
    """Main loop - dispatch, heartbeat, then wait for a notification or the interval."""
    logger.info(
        "Event dispatcher started (batch=%d, interval=%ds)",
        dispatcher.batch_size, interval_seconds,
    )

    while True:
        set_correlation_id(generate_correlation_id())
        claimed = 0
        try:
            summary = await dispatcher.run()
            claimed = summary.total
        except Exception as e:
            logger.error("Event dispatcher cycle error: %s", str(e))

        await _heartbeat()

        # A full batch means more work is probably waiting
        if claimed >= dispatcher.batch_size:
            continue
        await _wait_for_work(interval_seconds)
