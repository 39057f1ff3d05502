"""
Register (or update) a webhook endpoint or a remote event handler.

Rows are upserted by natural key: webhooks by name, event handlers by
event_type. Nothing is written without --commit.

Usage:
    python -m scripts.register_handlers webhook github-push --provider github \
        --handler github-push --prefix webhook:github \
        --header X-Hub-Signature-256 --secret <secret> --commit
    python -m scripts.register_handlers handler image.generated \
        --function https://functions.example.com/on-image --timeout 30 --commit
"""
import argparse
import asyncio
import logging
import secrets
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.event_handler import RemoteHandlerConfig
from src.models.webhook import WebhookConfig

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

PROVIDER_HEADERS = {
    "github": "X-Hub-Signature-256",
    "stripe": "Stripe-Signature",
    "slack": "X-Slack-Signature",
}


async def upsert_webhook(
    session_factory: async_sessionmaker[AsyncSession],
    name: str,
    provider: str,
    handler_name: str,
    event_type_prefix: str,
    secret_key: Optional[str] = None,
    signature_header: Optional[str] = None,
    signature_algorithm: str = "sha256",
    is_active: bool = True,
    commit: bool = False,
) -> WebhookConfig:
    async with session_factory() as db:
        result = await db.execute(select(WebhookConfig).where(WebhookConfig.name == name))
        webhook = result.scalar_one_or_none()
        created = webhook is None
        if created:
            webhook = WebhookConfig(name=name, received_count=0, failed_count=0)
            db.add(webhook)

        webhook.provider = provider
        webhook.handler_name = handler_name
        webhook.event_type_prefix = event_type_prefix
        webhook.signature_header = signature_header or PROVIDER_HEADERS.get(provider, "X-Webhook-Signature")
        webhook.signature_algorithm = signature_algorithm
        webhook.is_active = is_active
        if secret_key:
            webhook.secret_key = secret_key
        elif created:
            webhook.secret_key = secrets.token_hex(32)
            logger.info("Generated secret for %s: %s", name, webhook.secret_key)

        if commit:
            await db.commit()
            logger.info("%s webhook %s", "Created" if created else "Updated", name)
        else:
            await db.rollback()
            logger.info("[dry-run] would %s webhook %s", "create" if created else "update", name)
    return webhook


async def upsert_remote_handler(
    session_factory: async_sessionmaker[AsyncSession],
    event_type: str,
    handler_function: str,
    timeout_seconds: int = 300,
    max_retries: int = 3,
    is_active: bool = True,
    commit: bool = False,
) -> RemoteHandlerConfig:
    async with session_factory() as db:
        result = await db.execute(
            select(RemoteHandlerConfig).where(RemoteHandlerConfig.event_type == event_type)
        )
        handler = result.scalar_one_or_none()
        created = handler is None
        if created:
            handler = RemoteHandlerConfig(event_type=event_type, priority=0)
            db.add(handler)

        handler.handler_function = handler_function
        handler.timeout_seconds = timeout_seconds
        handler.max_retries = max_retries
        handler.is_active = is_active

        if commit:
            await db.commit()
            logger.info("%s handler %s -> %s", "Created" if created else "Updated", event_type, handler_function)
        else:
            await db.rollback()
            logger.info("[dry-run] would register %s -> %s", event_type, handler_function)
    return handler


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    sub = parser.add_subparsers(dest="kind", required=True)

    wh = sub.add_parser("webhook", help="Register an inbound webhook")
    wh.add_argument("name")
    wh.add_argument("--provider", required=True, choices=["github", "stripe", "slack", "custom", "generic"])
    wh.add_argument("--handler", required=True, help="Webhook handler name")
    wh.add_argument("--prefix", required=True, help="Event type prefix, e.g. webhook:github")
    wh.add_argument("--secret", help="Shared secret (generated when creating if omitted)")
    wh.add_argument("--header", help="Signature header (defaults per provider)")
    wh.add_argument("--algorithm", default="sha256")
    wh.add_argument("--inactive", action="store_true")
    wh.add_argument("--commit", action="store_true")

    rh = sub.add_parser("handler", help="Register a remote event handler")
    rh.add_argument("event_type")
    rh.add_argument("--function", required=True, help="Full URL or name under REMOTE_HANDLER_BASE_URL")
    rh.add_argument("--timeout", type=int, default=300)
    rh.add_argument("--max-retries", type=int, default=3)
    rh.add_argument("--inactive", action="store_true")
    rh.add_argument("--commit", action="store_true")
    return parser


async def main(argv: Optional[list[str]] = None) -> None:
    from src.database import dispose_engine, get_session_factory

    args = _parser().parse_args(argv)
    session_factory = get_session_factory()
    try:
        if args.kind == "webhook":
            await upsert_webhook(
                session_factory,
                name=args.name,
                provider=args.provider,
                handler_name=args.handler,
                event_type_prefix=args.prefix,
                secret_key=args.secret,
                signature_header=args.header,
                signature_algorithm=args.algorithm,
                is_active=not args.inactive,
                commit=args.commit,
            )
        else:
            await upsert_remote_handler(
                session_factory,
                event_type=args.event_type,
                handler_function=args.function,
                timeout_seconds=args.timeout,
                max_retries=args.max_retries,
                is_active=not args.inactive,
                commit=args.commit,
            )
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
