"""
Shared API dependencies - service container access and internal auth.
"""
import hmac

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from src.config import Settings, get_settings
from src.services.container import Services

bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


async def require_service_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Guard internal endpoints. No-op when SERVICE_TOKEN is unset."""
    if not settings.service_token:
        return
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    if not hmac.compare_digest(credentials.credentials, settings.service_token):
        raise HTTPException(status_code=401, detail="Invalid token")
