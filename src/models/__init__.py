"""
Database models - import all models here so Alembic can discover them.
"""
from src.models.system_event import SystemEvent
from src.models.webhook import WebhookConfig
from src.models.webhook_log import WebhookLog
from src.models.event_handler import RemoteHandlerConfig

__all__ = [
    "SystemEvent",
    "WebhookConfig",
    "WebhookLog",
    "RemoteHandlerConfig",
]
