"""
Service wiring - builds the queue, registries, gateway and dispatcher once at
startup. The result lives on app.state.services; tests build their own with
a test session factory and custom registries.
"""
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings
from src.services.event_queue import EventQueue
from src.services.job_handlers import JobHandlerRegistry, build_default_job_registry
from src.services.remote_handlers import RemoteHandlerRegistry
from src.services.webhook_gateway import WebhookGateway
from src.services.webhook_handlers import WebhookHandlerRegistry, build_default_webhook_registry
from src.workers.event_dispatcher import EventDispatcher


@dataclass
class Services:
    queue: EventQueue
    webhook_handlers: WebhookHandlerRegistry
    job_handlers: JobHandlerRegistry
    remote_handlers: RemoteHandlerRegistry
    gateway: WebhookGateway
    dispatcher: EventDispatcher


def build_services(
    settings: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    webhook_handlers: Optional[WebhookHandlerRegistry] = None,
    job_handlers: Optional[JobHandlerRegistry] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    notify: bool = True,
) -> Services:
    if session_factory is None:
        from src.database import get_session_factory
        session_factory = get_session_factory()

    queue = EventQueue(
        session_factory,
        retry_backoff_seconds=settings.retry_backoff_seconds,
        notify=notify,
    )
    if webhook_handlers is None:
        webhook_handlers = build_default_webhook_registry()
    if job_handlers is None:
        job_handlers = build_default_job_registry()
    remote_handlers = RemoteHandlerRegistry(
        session_factory,
        base_url=settings.remote_handler_base_url,
        auth_token=settings.remote_handler_auth_token,
        transport=http_transport,
    )

    return Services(
        queue=queue,
        webhook_handlers=webhook_handlers,
        job_handlers=job_handlers,
        remote_handlers=remote_handlers,
        gateway=WebhookGateway(
            session_factory,
            webhook_handlers,
            queue,
            stripe_tolerance_seconds=settings.stripe_signature_tolerance_seconds,
        ),
        dispatcher=EventDispatcher(
            queue,
            job_handlers,
            remote_handlers,
            batch_size=settings.dispatcher_batch_size,
        ),
    )
