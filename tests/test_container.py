"""
Tests for src/services/container.py - service wiring and registry overrides.
"""
import httpx

from src.config import Settings
from src.services.container import build_services
from src.services.job_handlers import JobHandlerRegistry
from src.services.webhook_handlers import WebhookHandlerRegistry


def _settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite+aiosqlite:///:memory:",
        "app_env": "test",
        "dispatcher_batch_size": 7,
        "stripe_signature_tolerance_seconds": 300,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestBuildServices:
    def test_defaults(self, session_factory):
        services = build_services(_settings(), session_factory=session_factory, notify=False)

        assert "github-push" in services.webhook_handlers
        assert "generate-report" in services.job_handlers
        assert services.dispatcher.batch_size == 7
        assert services.gateway.stripe_tolerance_seconds == 300
        assert services.queue.notify is False

    def test_empty_registries_are_kept(self, session_factory):
        jobs = JobHandlerRegistry()
        webhooks = WebhookHandlerRegistry()

        services = build_services(
            _settings(),
            session_factory=session_factory,
            webhook_handlers=webhooks,
            job_handlers=jobs,
        )

        assert services.job_handlers is jobs
        assert services.webhook_handlers is webhooks
        assert services.dispatcher.job_handlers is jobs
        assert len(services.job_handlers) == 0

    async def test_empty_job_registry_completes_jobs_as_unhandled(self, session_factory):
        services = build_services(
            _settings(retry_backoff_seconds=0),
            session_factory=session_factory,
            job_handlers=JobHandlerRegistry(),
            http_transport=httpx.MockTransport(lambda request: httpx.Response(200)),
            notify=False,
        )
        job = await services.queue.enqueue_job("generate-report", {})

        summary = await services.dispatcher.run()

        assert summary.details[0]["message"] == "No handler registered"
        assert (await services.queue.get_event(job.id)).status == "completed"
