import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Iterable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from booking_funnel.api.problem_details import install_problem_handlers
from booking_funnel.api.routes_checkout import router as checkout_router
from booking_funnel.api.routes_estimate import router as estimate_router
from booking_funnel.api.routes_feedback import router as feedback_router
from booking_funnel.api.routes_health import router as health_router
from booking_funnel.api.routes_jobs import router as jobs_router
from booking_funnel.api.routes_notifications import router as notifications_router
from booking_funnel.api.routes_payments import router as payments_router
from booking_funnel.api.routes_pricing import router as pricing_router
from booking_funnel.api.routes_sms import router as sms_router
from booking_funnel.api.routes_subscriptions import router as subscriptions_router
from booking_funnel.api.services import build_app_services
from booking_funnel.infra.db import dispose_engine, get_session_factory
from booking_funnel.infra.logging import clear_log_context, configure_logging, update_log_context
from booking_funnel.infra.metrics import configure_metrics
from booking_funnel.settings import settings

logger = logging.getLogger("booking_funnel.request")


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        start = time.time()
        request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
        if not request_id:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        update_log_context(request_id=request_id, method=request.method, path=request.url.path)

        response = None
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            latency_ms = int((time.time() - start) * 1000)
            update_log_context(status_code=status_code, latency_ms=latency_ms)
            logger.info("request", extra={"latency_ms": latency_ms})
            if response is not None:
                response.headers.setdefault("X-Request-ID", request_id)
            clear_log_context()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, metrics_client) -> None:
        super().__init__(app)
        self.metrics = metrics_client

    async def dispatch(self, request: Request, call_next: Callable):
        route_label = "unmatched"
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            route = request.scope.get("route")
            route_label = getattr(route, "path", route_label)
            self.metrics.record_http_5xx(request.method, route_label)
            raise
        finally:
            route = request.scope.get("route")
            route_label = getattr(route, "path", route_label)
            duration = time.perf_counter() - start
            self.metrics.record_http_latency(request.method, route_label, status_code, duration)
            self.metrics.record_http_request(request.method, route_label, status_code)
        if status_code >= 500:
            self.metrics.record_http_5xx(request.method, route_label)
        return response


def _resolve_cors_origins(app_settings) -> Iterable[str]:
    if app_settings.cors_origins:
        return app_settings.cors_origins
    if app_settings.app_env == "dev":
        return ["http://localhost:3000"]
    return []


def create_app(app_settings) -> FastAPI:
    configure_logging()
    metrics_client = configure_metrics(app_settings.metrics_enabled)

    services = build_app_services(app_settings, metrics=metrics_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state_services = getattr(app.state, "services", None) or services
        app.state.services = state_services

        app.state.metrics = getattr(app.state, "metrics", None) or state_services.metrics
        app.state.app_settings = getattr(app.state, "app_settings", app_settings)
        app.state.db_session_factory = getattr(app.state, "db_session_factory", None) or get_session_factory()
        app.state.email_adapter = getattr(app.state, "email_adapter", None) or state_services.email_adapter
        app.state.communication_adapter = (
            getattr(app.state, "communication_adapter", None) or state_services.communication_adapter
        )
        app.state.stripe_client = getattr(app.state, "stripe_client", None) or state_services.stripe_client
        yield
        await dispose_engine()

    app = FastAPI(title="Booking Funnel", version="1.0.0", lifespan=lifespan)
    app.state.services = services
    app.state.app_settings = app_settings
    app.state.metrics = metrics_client

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware, metrics_client=metrics_client)
    app.add_middleware(RequestIdMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(_resolve_cors_origins(app_settings)),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_problem_handlers(app)

    app.include_router(health_router)
    app.include_router(estimate_router)
    app.include_router(pricing_router)
    app.include_router(checkout_router)
    app.include_router(payments_router)
    app.include_router(jobs_router)
    app.include_router(notifications_router)
    app.include_router(subscriptions_router)
    app.include_router(sms_router)
    app.include_router(feedback_router)
    if app_settings.metrics_enabled:
        from booking_funnel.api.routes_metrics import router as metrics_router

        app.include_router(metrics_router)
    return app


app = create_app(settings)
