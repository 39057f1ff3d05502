"""
Tests for src/main.py - FastAPI app creation, middleware, lifespan, and Sentry.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.config import Settings
from src.main import create_app, lifespan


def _settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite+aiosqlite:///:memory:",
        "app_env": "test",
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _app_with(settings: Settings, services=None) -> FastAPI:
    app = FastAPI()
    app.state.settings = settings
    app.state.services = services
    return app


# ---------------------------------------------------------------------------
# create_app - application factory
# ---------------------------------------------------------------------------


class TestCreateApp:
    def test_returns_fastapi_instance(self):
        with patch("src.main.configure_structured_logging"):
            app = create_app(settings=_settings())

        assert isinstance(app, FastAPI)
        assert app.title == "EventRelay"

    def test_configures_structured_logging(self):
        with patch("src.main.configure_structured_logging") as mock_log:
            create_app(settings=_settings(log_level="DEBUG"))

        mock_log.assert_called_once_with("DEBUG")

    def test_includes_routes(self):
        with patch("src.main.configure_structured_logging"):
            app = create_app(settings=_settings())

        route_paths = {route.path for route in app.routes}
        assert {"/webhook-receiver", "/process-events", "/jobs", "/jobs/{job_id}", "/health"} <= route_paths

    def test_stores_settings_and_services(self):
        services = MagicMock()
        settings = _settings()
        with patch("src.main.configure_structured_logging"):
            app = create_app(settings=settings, services=services)

        assert app.state.settings is settings
        assert app.state.services is services


# ---------------------------------------------------------------------------
# CorrelationIdMiddleware
# ---------------------------------------------------------------------------


class TestCorrelationIdMiddleware:
    def test_generates_correlation_id_when_missing(self):
        with patch("src.main.configure_structured_logging"):
            app = create_app(settings=_settings())

        response = TestClient(app).get("/health")

        assert len(response.headers["x-correlation-id"]) == 32

    def test_uses_existing_correlation_id(self):
        with patch("src.main.configure_structured_logging"):
            app = create_app(settings=_settings())

        custom_cid = "abc123def456789012345678abcdef00"
        response = TestClient(app).get("/health", headers={"X-Correlation-ID": custom_cid})

        assert response.headers["x-correlation-id"] == custom_cid

    def test_cors_preflight(self):
        with patch("src.main.configure_structured_logging"):
            app = create_app(settings=_settings())

        response = TestClient(app).options(
            "/health",
            headers={"Origin": "https://example.com", "Access-Control-Request-Method": "GET"},
        )

        assert "access-control-allow-origin" in response.headers


# ---------------------------------------------------------------------------
# lifespan - startup and shutdown
# ---------------------------------------------------------------------------


class TestLifespan:
    async def test_builds_services_when_missing(self):
        settings = _settings()
        app = _app_with(settings)
        services = MagicMock()

        with patch("src.main.build_services", return_value=services) as mock_build, \
             patch("src.database.dispose_engine", new_callable=AsyncMock) as mock_dispose:
            async with lifespan(app):
                assert app.state.services is services

        mock_build.assert_called_once_with(settings)
        mock_dispose.assert_awaited_once()

    async def test_keeps_injected_services(self):
        services = MagicMock()
        app = _app_with(_settings(), services=services)

        with patch("src.main.build_services") as mock_build, \
             patch("src.database.dispose_engine", new_callable=AsyncMock):
            async with lifespan(app):
                pass

        mock_build.assert_not_called()

    async def test_starts_dispatcher_when_enabled(self):
        services = MagicMock()
        app = _app_with(_settings(dispatcher_enabled=True, dispatcher_interval_seconds=5), services=services)

        with patch("src.workers.event_dispatcher.run_event_dispatcher", new_callable=AsyncMock) as mock_run, \
             patch("src.database.dispose_engine", new_callable=AsyncMock):
            async with lifespan(app):
                pass

        mock_run.assert_called_once_with(services.dispatcher, 5)

    async def test_dispatcher_not_started_by_default(self):
        app = _app_with(_settings(), services=MagicMock())

        with patch("src.workers.event_dispatcher.run_event_dispatcher", new_callable=AsyncMock) as mock_run, \
             patch("src.database.dispose_engine", new_callable=AsyncMock):
            async with lifespan(app):
                pass

        mock_run.assert_not_called()

    async def test_warns_when_service_token_missing(self):
        app = _app_with(_settings(service_token=""), services=MagicMock())

        with patch("src.main.logger") as mock_logger, \
             patch("src.database.dispose_engine", new_callable=AsyncMock):
            async with lifespan(app):
                pass

        assert any("SERVICE_TOKEN" in str(c) for c in mock_logger.warning.call_args_list)

    async def test_initializes_sentry_when_configured(self):
        app = _app_with(_settings(sentry_dsn="https://key@sentry.example/1"), services=MagicMock())

        with patch("sentry_sdk.init") as mock_sentry_init, \
             patch("src.database.dispose_engine", new_callable=AsyncMock):
            async with lifespan(app):
                pass

        mock_sentry_init.assert_called_once()
        assert mock_sentry_init.call_args.kwargs["environment"] == "test"

    async def test_skips_sentry_when_not_configured(self):
        app = _app_with(_settings(sentry_dsn=""), services=MagicMock())

        with patch("sentry_sdk.init") as mock_sentry_init, \
             patch("src.database.dispose_engine", new_callable=AsyncMock):
            async with lifespan(app):
                pass

        mock_sentry_init.assert_not_called()
