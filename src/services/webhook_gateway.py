"""
Webhook gateway - authenticate, audit and route inbound webhooks.

Every request that names a webhook leaves exactly one webhook_logs row.
Flow (in order):
1. Resolve the active webhook configuration by name
2. Verify the provider signature
3. Parse the body and run the configured handler
4. Emit a system event (unless the handler declines)

A successful request commits its event, log row, counter update and any
handler writes in a single transaction. On failure the handler's writes are
rolled back before the failure is recorded.
"""
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.webhook import WebhookConfig
from src.models.webhook_log import WebhookLog
from src.services.event_queue import EventQueue
from src.services.webhook_handlers import (
    EmitDecision,
    RawRequest,
    WebhookContext,
    WebhookHandlerRegistry,
)
from src.utils.webhook_signatures import verify_signature

logger = logging.getLogger(__name__)

REDACTED_HEADERS = ("authorization", "cookie", "proxy-authorization")


class WebhookGatewayError(Exception):
    """Base class. Carries the HTTP status and the webhook_logs status."""

    status_code = 500
    log_status = "handler_failed"
    count_failure = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(WebhookGatewayError):
    """Server-side misconfiguration, such as an unregistered handler."""

    count_failure = False


class WebhookNotFoundError(ConfigurationError):
    status_code = 404
    log_status = "not_found"


class AuthenticationError(WebhookGatewayError):
    status_code = 401
    log_status = "signature_failed"


class InvalidPayloadError(WebhookGatewayError):
    status_code = 400


class HandlerExecutionError(WebhookGatewayError):
    status_code = 500


@dataclass
class GatewayResponse:
    status_code: int
    body: dict = field(default_factory=dict)


@dataclass(frozen=True)
class _WebhookSnapshot:
    """Plain copy of the config columns; safe to read after a rollback."""

    id: uuid.UUID
    name: str
    provider: str
    secret_key: str
    signature_header: str
    signature_algorithm: str
    handler_name: str
    event_type_prefix: str

    @classmethod
    def of(cls, config: WebhookConfig) -> "_WebhookSnapshot":
        return cls(
            id=config.id,
            name=config.name,
            provider=config.provider,
            secret_key=config.secret_key,
            signature_header=config.signature_header,
            signature_algorithm=config.signature_algorithm,
            handler_name=config.handler_name,
            event_type_prefix=config.event_type_prefix,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def parse_body(raw_body: bytes) -> Any:
    """Empty body -> {}; anything else must be JSON."""
    if not raw_body or not raw_body.strip():
        return {}
    try:
        return json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidPayloadError("Invalid JSON payload") from e


def body_for_log(raw_body: bytes) -> Any:
    """Best-effort JSON for the audit row. Never raises."""
    try:
        return parse_body(raw_body)
    except InvalidPayloadError:
        return {"raw": raw_body.decode("utf-8", errors="replace")}


def headers_for_log(headers: dict[str, str]) -> dict[str, str]:
    return {
        key: ("[redacted]" if key in REDACTED_HEADERS else value)
        for key, value in headers.items()
    }


class WebhookGateway:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        handlers: WebhookHandlerRegistry,
        queue: EventQueue,
        stripe_tolerance_seconds: int = 0,
    ):
        self._session_factory = session_factory
        self._handlers = handlers
        self._queue = queue
        self.stripe_tolerance_seconds = stripe_tolerance_seconds

    async def handle(
        self,
        method: str,
        name: Optional[str],
        raw_body: bytes,
        headers: dict[str, str],
        source_ip: Optional[str] = None,
    ) -> GatewayResponse:
        """
        Process one inbound webhook request.

        Args:
            method: HTTP method as received
            name: Webhook name from the ?name= query parameter
            raw_body: Exact request bytes (signatures are computed over these)
            headers: Request headers, any casing
            source_ip: Client address for the audit row

        Returns:
            GatewayResponse with status 200/400/401/404/500 and a JSON body
        """
        if not name:
            return GatewayResponse(
                400,
                {"success": False, "error": "Missing webhook name in query parameter (?name=xxx)"},
            )

        request = RawRequest(
            method=method,
            headers={key.lower(): value for key, value in headers.items()},
            body=raw_body,
            source_ip=source_ip,
        )
        started = time.monotonic()

        logger.info(
            "Webhook received: name=%s method=%s bytes=%d",
            name, method, len(raw_body),
            extra={"webhook_name": name},
        )

        try:
            return await self._process(name, request, started)
        except Exception:
            logger.exception("Unexpected webhook gateway error: name=%s", name)
            return GatewayResponse(500, {"success": False, "error": "Internal server error"})

    async def _process(self, name: str, request: RawRequest, started: float) -> GatewayResponse:
        async with self._session_factory() as db:
            snapshot: Optional[_WebhookSnapshot] = None
            try:
                config = await self._load_config(db, name)
                snapshot = _WebhookSnapshot.of(config)

                self._verify(snapshot, request)
                payload = parse_body(request.body)

                handler = self._handlers.get(snapshot.handler_name)
                if handler is None:
                    raise ConfigurationError(
                        f"Handler '{snapshot.handler_name}' not found", status_code=500
                    )

                try:
                    result = await handler(payload, WebhookContext(config=config, db=db, request=request))
                    decision = EmitDecision.coerce(result)
                except Exception as e:
                    raise HandlerExecutionError(str(e) or type(e).__name__) from e

                return await self._commit_success(db, snapshot, request, payload, decision, started)

            except WebhookGatewayError as e:
                await db.rollback()
                log_id = await self._record_failure(db, name, snapshot, request, e, started)
                return GatewayResponse(
                    e.status_code,
                    {
                        "success": False,
                        "webhook_log_id": str(log_id),
                        "system_event_id": None,
                        "error": str(e),
                    },
                )

    async def _load_config(self, db: AsyncSession, name: str) -> WebhookConfig:
        result = await db.execute(
            select(WebhookConfig).where(
                WebhookConfig.name == name,
                WebhookConfig.is_active.is_(True),
            )
        )
        config = result.scalar_one_or_none()
        if config is None:
            raise WebhookNotFoundError(f"Webhook '{name}' not found or inactive")
        return config

    def _verify(self, snapshot: _WebhookSnapshot, request: RawRequest) -> None:
        signature = request.headers.get(snapshot.signature_header.lower())
        valid = verify_signature(
            request.body,
            signature,
            snapshot.secret_key,
            snapshot.signature_algorithm,
            snapshot.provider,
            tolerance_seconds=self.stripe_tolerance_seconds or None,
        )
        if not valid:
            raise AuthenticationError("Signature verification failed")

    def _build_log(
        self,
        name: str,
        snapshot: Optional[_WebhookSnapshot],
        request: RawRequest,
        status: str,
        started: float,
        error_message: Optional[str] = None,
        system_event_id: Optional[uuid.UUID] = None,
    ) -> WebhookLog:
        return WebhookLog(
            id=uuid.uuid4(),
            webhook_id=snapshot.id if snapshot else None,
            webhook_name=name,
            request_method=request.method,
            request_headers=headers_for_log(request.headers),
            request_body=body_for_log(request.body),
            source_ip=request.source_ip,
            status=status,
            error_message=error_message,
            processing_time_ms=_elapsed_ms(started),
            system_event_id=system_event_id,
        )

    async def _commit_success(
        self,
        db: AsyncSession,
        snapshot: _WebhookSnapshot,
        request: RawRequest,
        payload: Any,
        decision: EmitDecision,
        started: float,
    ) -> GatewayResponse:
        event = None
        try:
            if decision.emit_event:
                event_type = f"{snapshot.event_type_prefix}:{decision.event_name or snapshot.handler_name}"
                event = self._queue.build_event(
                    event_type,
                    payload=decision.payload if decision.payload is not None else payload,
                    priority=decision.priority or 0,
                )
                db.add(event)
                await db.flush()

            log = self._build_log(
                snapshot.name, snapshot, request, "success", started,
                system_event_id=event.id if event is not None else None,
            )
            db.add(log)

            await db.execute(
                update(WebhookConfig)
                .where(WebhookConfig.id == snapshot.id)
                .values(
                    received_count=WebhookConfig.received_count + 1,
                    last_received_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except Exception as e:
            # Driver messages include SQL and bound values
            cause = getattr(e, "orig", None) or e
            logger.exception(
                "Failed to store webhook result: name=%s", snapshot.name,
                extra={"webhook_name": snapshot.name, "provider": snapshot.provider},
            )
            raise HandlerExecutionError(
                f"Failed to store webhook result ({type(cause).__name__})"
            ) from e

        logger.info(
            "Webhook processed: name=%s event=%s",
            snapshot.name, event.event_type if event is not None else "-",
            extra={
                "webhook_name": snapshot.name,
                "provider": snapshot.provider,
                "event_id": str(event.id) if event is not None else None,
            },
        )

        if event is not None and self._queue.notify:
            await self._queue.notify_dispatcher(str(event.id))

        return GatewayResponse(
            200,
            {
                "success": True,
                "webhook_log_id": str(log.id),
                "system_event_id": str(event.id) if event is not None else None,
            },
        )

    async def _record_failure(
        self,
        db: AsyncSession,
        name: str,
        snapshot: Optional[_WebhookSnapshot],
        request: RawRequest,
        error: WebhookGatewayError,
        started: float,
    ) -> uuid.UUID:
        log = self._build_log(name, snapshot, request, error.log_status, started, error_message=str(error))
        db.add(log)

        if snapshot is not None and error.count_failure:
            await db.execute(
                update(WebhookConfig)
                .where(WebhookConfig.id == snapshot.id)
                .values(
                    failed_count=WebhookConfig.failed_count + 1,
                    last_received_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
        await db.commit()

        log_level = logging.ERROR if error.status_code >= 500 else logging.WARNING
        logger.log(
            log_level,
            "Webhook rejected: name=%s status=%s error=%s",
            name, error.log_status, str(error),
            extra={
                "webhook_name": name,
                "provider": snapshot.provider if snapshot else None,
                "status_code": error.status_code,
            },
        )
        return log.id
