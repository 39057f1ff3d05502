"""
In-process job handlers - executed by the dispatcher for "job:<type>" events.

A handler is ``async def handler(payload, context) -> result``. The context
carries a database session scoped to the job run, the job id, and an async
``update_progress(pct)`` callback that may be awaited any number of times.

Retries re-run the handler from scratch. Handlers with external side effects
(charging, sending mail) must guard against duplicates themselves, e.g. with
an idempotency key stored alongside their own data.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.system_event import SystemEvent
from src.services.handler_registry import HandlerRegistry

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    db: AsyncSession
    job_id: str
    update_progress: Callable[[float], Awaitable[None]]


JobHandler = Callable[[Any, JobContext], Awaitable[Any]]


class JobHandlerRegistry(HandlerRegistry[JobHandler]):
    """Job type (without the "job:" prefix) -> async handler."""

    kind = "job handler"


def _parse_date(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def generate_report(payload: dict, context: JobContext) -> dict:
    """
    Summarise queue activity for a date range.

    Payload: {"reportType": str, "startDate": ISO date, "endDate": ISO date}
    """
    payload = payload or {}
    report_type = payload.get("reportType", "events")
    start_date = payload.get("startDate")
    end_date = payload.get("endDate")

    await context.update_progress(20)
    logger.info("Generating %s report from %s to %s", report_type, start_date, end_date)

    query = select(SystemEvent.status, func.count()).group_by(SystemEvent.status)
    if start_date:
        query = query.where(SystemEvent.created_at >= _parse_date(start_date))
    if end_date:
        query = query.where(SystemEvent.created_at <= _parse_date(end_date))

    rows = (await context.db.execute(query)).all()
    await context.update_progress(60)

    by_status = {status: count for status, count in rows}
    await context.update_progress(90)

    return {
        "reportType": report_type,
        "records": sum(by_status.values()),
        "byStatus": by_status,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "summary": {
            "totalRecords": sum(by_status.values()),
            "dateRange": {"startDate": start_date, "endDate": end_date},
        },
    }


def build_default_job_registry() -> JobHandlerRegistry:
    registry = JobHandlerRegistry()
    registry.register("generate-report", generate_report)
    return registry
