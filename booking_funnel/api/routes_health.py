import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text

from booking_funnel.infra.db import get_session_factory

router = APIRouter()
logger = logging.getLogger(__name__)

_DB_CHECK_TIMEOUT_SECONDS = 2.0


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.head("/healthz")
async def healthz_head() -> Response:
    return Response(status_code=200)


async def _check_database(request: Request) -> dict[str, Any]:
    session_factory = getattr(request.app.state, "db_session_factory", None) or get_session_factory()
    try:
        async with session_factory() as session:
            await asyncio.wait_for(session.execute(text("SELECT 1")), timeout=_DB_CHECK_TIMEOUT_SECONDS)
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "readyz_database_unavailable",
            extra={"extra": {"error_type": type(exc).__name__}},
        )
        return {"ok": False, "error": type(exc).__name__}
    return {"ok": True}


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    database = await _check_database(request)
    ready = database["ok"]
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ok" if ready else "unavailable", "checks": {"database": database}},
    )
