"""
Remote event handlers - HTTP endpoints that process non-job events.

The dispatcher loads the active event_handlers rows once per run and POSTs
{event_id, event_type, payload, user_id} to the matching endpoint. Anything
other than a 2xx answer within timeout_seconds is a RemoteHandlerError,
which the dispatcher turns into a failed attempt. Delivery is at-least-once:
a retried event may reach the same endpoint more than once.
"""
import asyncio
import logging
from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.event_handler import RemoteHandlerConfig
from src.models.system_event import SystemEvent

logger = logging.getLogger(__name__)

ERROR_BODY_MAX_CHARS = 500


class RemoteHandlerError(Exception):
    """Remote handler answered non-2xx, timed out, or could not be reached."""


class RemoteHandlerRegistry:
    """Event type -> remote endpoint, backed by the event_handlers table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        base_url: str = "",
        auth_token: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._session_factory = session_factory
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self._transport = transport

    async def load_active(self) -> dict[str, RemoteHandlerConfig]:
        """Active handler configs keyed by event_type."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(RemoteHandlerConfig).where(RemoteHandlerConfig.is_active.is_(True))
            )
            configs = result.scalars().all()
        return {config.event_type: config for config in configs}

    def resolve_url(self, handler_function: str) -> str:
        if handler_function.startswith(("http://", "https://")):
            return handler_function
        if not self.base_url:
            raise RemoteHandlerError(
                f"Handler '{handler_function}' is not a URL and REMOTE_HANDLER_BASE_URL is not set"
            )
        return f"{self.base_url}/{handler_function.lstrip('/')}"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    async def invoke(self, config: RemoteHandlerConfig, event: SystemEvent) -> int:
        """
        Deliver one event to its remote handler.

        Returns:
            The 2xx status code

        Raises:
            RemoteHandlerError on non-2xx, timeout, or transport failure
        """
        url = self.resolve_url(config.handler_function)
        timeout = float(config.timeout_seconds)
        body = {
            "event_id": str(event.id),
            "event_type": event.event_type,
            "payload": event.payload,
            "user_id": str(event.user_id) if event.user_id else None,
        }

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                # httpx timeouts are per phase; wait_for bounds the whole call
                response = await asyncio.wait_for(
                    client.post(url, json=body, headers=self._headers()),
                    timeout=timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise RemoteHandlerError(f"Handler timed out after {config.timeout_seconds}s")
        except httpx.HTTPError as e:
            raise RemoteHandlerError(f"Handler request failed: {e}") from e

        if not response.is_success:
            raise RemoteHandlerError(
                f"Handler failed: {response.status_code} - {response.text[:ERROR_BODY_MAX_CHARS]}"
            )

        logger.info(
            "Remote handler ok: %s -> %s (%d)",
            event.event_type, config.handler_function, response.status_code,
            extra={"event_id": str(event.id), "event_type": event.event_type, "handler": config.handler_function},
        )
        return response.status_code
