"""
Webhook handlers - turn a verified webhook payload into an emit decision.

A handler is ``async def handler(payload, context) -> EmitDecision``. It may
perform its own side effects through ``context.db`` before returning; those
writes commit together with the emitted event, or roll back if the handler
raises. Add new handlers to build_default_webhook_registry().
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.webhook import WebhookConfig
from src.services.handler_registry import HandlerRegistry

logger = logging.getLogger(__name__)


@dataclass
class RawRequest:
    method: str
    headers: dict[str, str]
    body: bytes
    source_ip: Optional[str] = None


@dataclass
class WebhookContext:
    config: WebhookConfig
    db: AsyncSession
    request: RawRequest


# Dict-form decisions accept snake_case or camelCase keys
DECISION_KEYS = {
    "emit_event": "emit_event",
    "emitEvent": "emit_event",
    "event_name": "event_name",
    "eventName": "event_name",
    "payload": "payload",
    "priority": "priority",
}


@dataclass
class EmitDecision:
    """
    What the gateway should do with a handled webhook.

    emit_event: insert a SystemEvent (default True)
    event_name: suffix after "<event_type_prefix>:" (default: handler name)
    payload: event payload (default: the original webhook payload)
    priority: event priority (default 0)
    """
    emit_event: bool = True
    event_name: Optional[str] = None
    payload: Any = None
    priority: Optional[int] = None

    @classmethod
    def coerce(cls, value: Any) -> "EmitDecision":
        """Accept an EmitDecision, a plain dict, or None (emit with defaults)."""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            unknown = sorted(set(value) - set(DECISION_KEYS))
            if unknown:
                raise TypeError(f"Unknown emit decision keys: {', '.join(unknown)}")
            fields = {DECISION_KEYS[key]: item for key, item in value.items()}
            return cls(
                emit_event=fields.pop("emit_event", True) is not False,
                **fields,
            )
        raise TypeError(f"Webhook handler returned {type(value).__name__}, expected EmitDecision")


WebhookHandler = Callable[[Any, WebhookContext], Awaitable[Optional[EmitDecision]]]


class WebhookHandlerRegistry(HandlerRegistry[WebhookHandler]):
    """Handler name (webhooks.handler_name) -> async handler."""

    kind = "webhook handler"


async def github_push(payload: dict, context: WebhookContext) -> EmitDecision:
    """Emit main-branch pushes only, at high priority."""
    repository = payload.get("repository") or {}
    logger.info(
        "GitHub push: repo=%s ref=%s commits=%d",
        repository.get("full_name"), payload.get("ref"), len(payload.get("commits") or []),
        extra={"webhook_name": context.config.name, "provider": "github"},
    )

    if payload.get("ref") != "refs/heads/main":
        logger.info("Skipping non-main branch push: %s", payload.get("ref"))
        return EmitDecision(emit_event=False)

    return EmitDecision(
        event_name="push",
        payload={
            "repository": repository.get("full_name"),
            "commits": payload.get("commits") or [],
            "pusher": payload.get("pusher"),
            "ref": payload.get("ref"),
        },
        priority=10,
    )


async def stripe_payment_succeeded(payload: dict, context: WebhookContext) -> EmitDecision:
    payment_intent = payload["data"]["object"]
    logger.info(
        "Stripe payment succeeded: amount=%s currency=%s",
        payment_intent.get("amount"), payment_intent.get("currency"),
        extra={"webhook_name": context.config.name, "provider": "stripe"},
    )
    return EmitDecision(
        event_name="payment-succeeded",
        payload={
            "amount": payment_intent.get("amount"),
            "currency": payment_intent.get("currency"),
            "customer": payment_intent.get("customer"),
            "paymentIntentId": payment_intent.get("id"),
        },
    )


async def slack_interactive(payload: dict, context: WebhookContext) -> EmitDecision:
    user = payload.get("user") or {}
    logger.info(
        "Slack interactive: type=%s user=%s",
        payload.get("type"), user.get("id"),
        extra={"webhook_name": context.config.name, "provider": "slack"},
    )
    return EmitDecision(
        event_name="interactive",
        payload={
            "type": payload.get("type"),
            "user": payload.get("user"),
            "actions": payload.get("actions"),
            "responseUrl": payload.get("response_url"),
        },
    )


async def custom_webhook(payload: Any, context: WebhookContext) -> EmitDecision:
    """Pass-through: emit the payload as-is under the handler name."""
    return EmitDecision(payload=payload)


def build_default_webhook_registry() -> WebhookHandlerRegistry:
    registry = WebhookHandlerRegistry()
    registry.register("github-push", github_push)
    registry.register("stripe-payment-succeeded", stripe_payment_succeeded)
    registry.register("slack-interactive", slack_interactive)
    registry.register("custom-webhook", custom_webhook)
    return registry
