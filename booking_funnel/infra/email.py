import logging
import random
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any

import anyio
import httpx

from booking_funnel.infra.communication import CommunicationResult
from booking_funnel.settings import settings
from booking_funnel.shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailNotConfiguredError(RuntimeError):
    pass


class EmailProviderError(RuntimeError):
    pass


class NoopEmailAdapter:
    async def send_email(
        self, recipient: str, subject: str, html: str, *, headers: dict[str, str] | None = None
    ) -> CommunicationResult:  # noqa: D401
        logger.info("email_send_skipped", extra={"extra": {"mode": "noop"}})
        return CommunicationResult(status="failed", error_code="email_disabled")


class EmailAdapter:
    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self.http_client = http_client
        self._breaker = CircuitBreaker(
            name="email",
            failure_threshold=settings.email_circuit_failure_threshold,
            recovery_seconds=settings.email_circuit_recovery_seconds,
            ignored_exceptions=(EmailNotConfiguredError,),
        )

    async def send_email(
        self, recipient: str, subject: str, html: str, *, headers: dict[str, str] | None = None
    ) -> CommunicationResult:
        if settings.email_mode == "off":
            logger.info("email_send_skipped", extra={"extra": {"mode": "off"}})
            return CommunicationResult(status="failed", error_code="email_disabled")
        if not recipient:
            return CommunicationResult(status="failed", error_code="missing_recipient")
        try:
            message_id = await self._breaker.call(
                self._send_email, to_email=recipient, subject=subject, html=html, headers=headers
            )
        except CircuitBreakerOpenError:
            logger.warning("email_circuit_open")
            return CommunicationResult(status="failed", error_code="email_circuit_open")
        except EmailNotConfiguredError as exc:
            logger.warning("email_send_not_configured", extra={"extra": {"mode": settings.email_mode}})
            return CommunicationResult(status="failed", error_code=str(exc))
        except EmailProviderError as exc:
            logger.warning("email_provider_error", extra={"extra": {"reason": str(exc)}})
            return CommunicationResult(status="failed", error_code=str(exc))
        except (httpx.HTTPError, smtplib.SMTPException, OSError) as exc:
            logger.warning("email_request_failed", extra={"extra": {"reason": type(exc).__name__}})
            return CommunicationResult(status="failed", error_code="email_request_failed")
        return CommunicationResult(status="sent", provider_msg_id=message_id)

    async def _send_email(
        self, to_email: str, subject: str, html: str, headers: dict[str, str] | None = None
    ) -> str | None:
        if settings.email_mode == "resend":
            return await self._send_via_resend(to_email=to_email, subject=subject, html=html, headers=headers)
        if settings.email_mode == "sendgrid":
            return await self._send_via_sendgrid(to_email=to_email, subject=subject, html=html, headers=headers)
        if settings.email_mode == "smtp":
            await self._send_via_smtp(to_email=to_email, subject=subject, html=html, headers=headers)
            return None
        raise EmailNotConfiguredError("unsupported_email_mode")

    def _formatted_sender(self) -> str:
        from_email = settings.email_sender or ""
        if settings.email_from_name:
            return formataddr((settings.email_from_name, from_email))
        return from_email

    async def _send_via_resend(
        self,
        to_email: str,
        subject: str,
        html: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> str | None:
        api_key = settings.resend_api_key
        if not api_key or not settings.email_sender:
            raise EmailNotConfiguredError("resend_not_configured")
        payload: dict[str, Any] = {
            "from": self._formatted_sender(),
            "to": [to_email],
            "subject": subject,
            "html": html,
        }
        if headers:
            payload["headers"] = headers
        response = await self._post(RESEND_URL, api_key=api_key, payload=payload)
        if response.status_code >= 400:
            raise EmailProviderError(f"resend_status_{response.status_code}")
        try:
            return response.json().get("id")
        except ValueError:
            return None

    async def _send_via_sendgrid(
        self,
        to_email: str,
        subject: str,
        html: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> str | None:
        api_key = settings.sendgrid_api_key
        from_email = settings.email_sender
        if not api_key or not from_email:
            raise EmailNotConfiguredError("sendgrid_not_configured")
        payload: dict[str, Any] = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": from_email},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }
        if settings.email_from_name:
            payload["from"]["name"] = settings.email_from_name
        if headers:
            payload["headers"] = headers
        response = await self._post(SENDGRID_URL, api_key=api_key, payload=payload)
        if response.status_code >= 400:
            raise EmailProviderError(f"sendgrid_status_{response.status_code}")
        return response.headers.get("X-Message-Id")

    async def _post(self, url: str, *, api_key: str, payload: dict[str, Any]) -> httpx.Response:
        client = self.http_client or httpx.AsyncClient()
        close_client = self.http_client is None
        try:
            return await _post_with_retry(
                client,
                url,
                headers={"Authorization": f"Bearer {api_key}"},
                json=payload,
            )
        finally:
            if close_client:
                await client.aclose()

    async def _send_via_smtp(
        self, to_email: str, subject: str, html: str, *, headers: dict[str, str] | None = None
    ) -> None:
        host = settings.smtp_host
        port = settings.smtp_port or 587
        username = settings.smtp_username
        password = settings.smtp_password
        if not host or not settings.email_sender:
            raise EmailNotConfiguredError("smtp_not_configured")

        message = EmailMessage()
        message["From"] = self._formatted_sender()
        message["To"] = to_email
        message["Subject"] = subject
        if headers:
            for header_name, header_value in headers.items():
                message[header_name] = header_value
        message.set_content("This message requires an HTML-capable email client.")
        message.add_alternative(html, subtype="html")

        def _send_blocking() -> None:
            if settings.smtp_use_tls:
                with smtplib.SMTP(host, port, timeout=settings.smtp_timeout_seconds) as smtp:
                    smtp.starttls()
                    if username and password:
                        smtp.login(username, password)
                    smtp.send_message(message)
            else:
                with smtplib.SMTP_SSL(host, port, timeout=settings.smtp_timeout_seconds) as smtp:
                    if username and password:
                        smtp.login(username, password)
                    smtp.send_message(message)

        await anyio.to_thread.run_sync(_send_blocking)


def resolve_email_adapter(app_settings) -> EmailAdapter | NoopEmailAdapter:
    if app_settings.email_mode == "off" or getattr(app_settings, "testing", False):
        return NoopEmailAdapter()
    return EmailAdapter()


def resolve_app_email_adapter(app_like) -> EmailAdapter | NoopEmailAdapter | None:
    state = getattr(app_like, "state", None)
    if state is None:
        return None
    app_state = getattr(getattr(app_like, "app", None), "state", None) or state
    adapter = getattr(app_state, "email_adapter", None)
    if adapter is not None:
        return adapter
    services = getattr(app_state, "services", None)
    if services is not None:
        return getattr(services, "email_adapter", None)
    return None


def _retry_delay(attempt: int) -> float:
    delay = min(
        settings.email_http_backoff_seconds * (2 ** (attempt - 1)),
        settings.email_http_backoff_max_seconds,
    )
    return delay + delay * random.uniform(0.0, 0.3)


async def _post_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: dict[str, str],
    json: dict[str, Any],
) -> httpx.Response:
    max_attempts = max(1, settings.email_http_max_attempts)

    for attempt in range(1, max_attempts + 1):
        try:
            response = await client.post(
                url,
                headers=headers,
                json=json,
                timeout=settings.email_timeout_seconds,
            )
        except (httpx.TimeoutException, httpx.ConnectError):
            if attempt < max_attempts:
                await anyio.sleep(_retry_delay(attempt))
                continue
            raise
        # Retry on 429 or 5xx
        if (response.status_code == 429 or response.status_code >= 500) and attempt < max_attempts:
            await anyio.sleep(_retry_delay(attempt))
            continue
        return response

    raise RuntimeError("email_http_retry_exhausted")  # pragma: no cover
