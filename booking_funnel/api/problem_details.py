import logging
import uuid
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from booking_funnel.domain.errors import DomainError, NotFoundError, PaymentProviderError
from booking_funnel.infra.logging import update_log_context

logger = logging.getLogger(__name__)

PROBLEM_TYPE_VALIDATION = "https://example.com/problems/validation-error"
PROBLEM_TYPE_DOMAIN = "https://example.com/problems/domain-error"
PROBLEM_TYPE_PAYMENT = "https://example.com/problems/payment-error"
PROBLEM_TYPE_SERVER = "https://example.com/problems/server-error"

# Payment failures keep the customer-safe message; the title says whose side failed.
PAYMENT_TITLES = {
    "configuration": "Payments Unavailable",
    "invalid_request": "Payment Rejected",
    "unavailable": "Payment Provider Unavailable",
}
_LOCATION_PREFIXES = {"body", "query", "path"}


def problem_details(
    request: Request,
    *,
    status: int,
    title: str | None,
    detail: str,
    errors: list[dict[str, Any]] | None = None,
    type_: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    if not title:
        try:
            title = HTTPStatus(status).phrase
        except ValueError:
            title = "Error"
    response = JSONResponse(
        status_code=status,
        content={
            "type": type_ or (PROBLEM_TYPE_SERVER if status >= 500 else PROBLEM_TYPE_DOMAIN),
            "title": title,
            "status": status,
            "detail": detail,
            "request_id": request_id,
            "errors": errors or [],
        },
        headers=headers,
        media_type="application/problem+json",
    )
    response.headers.setdefault("X-Request-ID", request_id)
    return response


def _field_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    errors = []
    for error in exc.errors():
        parts = [str(part) for part in error.get("loc", []) if part not in _LOCATION_PREFIXES]
        errors.append({"field": ".".join(parts) or "body", "message": error.get("msg", "Invalid value")})
    return errors


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return problem_details(
        request,
        status=422,
        title="Validation Error",
        detail="Request validation failed",
        errors=_field_errors(exc),
        type_=PROBLEM_TYPE_VALIDATION,
    )


async def _domain_error(request: Request, exc: DomainError) -> JSONResponse:
    return problem_details(
        request,
        status=404 if isinstance(exc, NotFoundError) else 400,
        title=exc.title,
        detail=exc.detail,
        errors=exc.errors,
        type_=exc.type,
    )


async def _payment_error(request: Request, exc: PaymentProviderError) -> JSONResponse:
    return problem_details(
        request,
        status=exc.status_code,
        title=PAYMENT_TITLES.get(exc.kind, "Payment Error"),
        detail=exc.message,
        type_=PROBLEM_TYPE_PAYMENT,
    )


async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else None
    return problem_details(
        request,
        status=exc.status_code,
        title=message or "HTTP Error",
        detail=message or "Request failed",
        headers=exc.headers,
    )


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    error_type = type(exc).__name__
    update_log_context(
        request_id=getattr(request.state, "request_id", None),
        method=request.method,
        path=request.url.path,
        status_code=500,
        error_type=error_type,
    )
    logger.exception("unhandled_exception", extra={"extra": {"error_type": error_type}})
    return problem_details(
        request,
        status=500,
        title="Internal Server Error",
        detail="Unexpected error",
        type_=PROBLEM_TYPE_SERVER,
    )


def install_problem_handlers(app: FastAPI) -> None:
    """Render every error the API raises as application/problem+json."""
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(DomainError, _domain_error)
    app.add_exception_handler(PaymentProviderError, _payment_error)
    app.add_exception_handler(HTTPException, _http_error)
    app.add_exception_handler(Exception, _unhandled_error)
