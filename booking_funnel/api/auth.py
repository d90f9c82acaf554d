import hmac
import logging

from fastapi import HTTPException, Request, status

from booking_funnel.settings import settings

logger = logging.getLogger(__name__)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization")
    if not header or not header.lower().startswith("bearer "):
        return None
    token = header.split(" ", 1)[1].strip()
    return token or None


async def require_service_role(request: Request) -> None:
    """Guard server-to-server endpoints with the shared service role key."""
    app_settings = getattr(request.app.state, "app_settings", None) or settings
    expected = app_settings.service_role_key
    if not expected:
        if app_settings.app_env == "dev":
            return
        logger.error("service_role_key_missing")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service role not configured")

    provided = _bearer_token(request)
    if provided is None or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("service_role_unauthorized", extra={"extra": {"path": request.url.path}})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_metrics_token(request: Request) -> None:
    """Scrapers may send the token as a bearer header or a ``token`` query parameter."""
    app_settings = getattr(request.app.state, "app_settings", None) or settings
    expected = app_settings.metrics_token
    if not expected:
        return
    provided = _bearer_token(request) or request.query_params.get("token")
    if provided is None or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("metrics_unauthorized")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
