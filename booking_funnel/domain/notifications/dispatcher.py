import logging

from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.domain.customers.db_models import Customer
from booking_funnel.domain.notifications.db_models import CommunicationLogEntry
from booking_funnel.domain.notifications.phone import normalize_e164
from booking_funnel.domain.notifications.schemas import ChannelResult, NotificationRequest
from booking_funnel.infra.communication import CommunicationResult, resolve_app_communication_adapter
from booking_funnel.infra.email import resolve_app_email_adapter
from booking_funnel.infra.metrics import metrics

logger = logging.getLogger(__name__)

CONTENT_LIMIT = 500


class NotificationDispatcher:
    """Sends SMS and email through the configured adapters and records every attempt.

    Provider problems come back as failed ``ChannelResult`` values; ``dispatch``
    does not raise for them.
    """

    def __init__(self, *, communication_adapter=None, email_adapter=None) -> None:
        self.communication_adapter = communication_adapter
        self.email_adapter = email_adapter

    async def dispatch(self, session: AsyncSession, request: NotificationRequest) -> list[ChannelResult]:
        results: list[ChannelResult] = []
        for channel in request.channels:
            if channel == "sms":
                contact = normalize_e164(request.phone)
                content = request.sms_body
                outcome = await self._send_sms(session, request, contact)
            else:
                contact = str(request.email) if request.email else None
                content = f"{request.email_subject}\n\n{request.email_html}"
                outcome = await self._send_email(request, contact)
            self._record(session, request, channel, contact, content, outcome)
            results.append(
                ChannelResult(
                    channel=channel,
                    status="sent" if outcome.sent else "failed",
                    external_id=outcome.provider_msg_id,
                    error=outcome.error_code,
                )
            )
        await session.flush()
        return results

    async def _send_sms(
        self, session: AsyncSession, request: NotificationRequest, to_number: str | None
    ) -> CommunicationResult:
        if not to_number:
            return CommunicationResult(status="failed", error_code="missing_recipient")
        if await self._opted_out(session, request):
            logger.info("sms_opted_out_skip", extra={"extra": {"template": request.template}})
            return CommunicationResult(status="failed", error_code="sms_opted_out")
        if self.communication_adapter is None:
            return CommunicationResult(status="failed", error_code="sms_disabled")
        try:
            return await self.communication_adapter.send_sms(to_number=to_number, body=request.sms_body or "")
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "sms_send_failed",
                extra={"extra": {"template": request.template, "reason": type(exc).__name__}},
            )
            return CommunicationResult(status="failed", error_code="sms_send_error")

    async def _send_email(self, request: NotificationRequest, recipient: str | None) -> CommunicationResult:
        if not recipient:
            return CommunicationResult(status="failed", error_code="missing_recipient")
        if self.email_adapter is None:
            return CommunicationResult(status="failed", error_code="email_disabled")
        try:
            return await self.email_adapter.send_email(
                recipient, request.email_subject or "", request.email_html or ""
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "email_send_failed",
                extra={"extra": {"template": request.template, "reason": type(exc).__name__}},
            )
            return CommunicationResult(status="failed", error_code="email_send_error")

    async def _opted_out(self, session: AsyncSession, request: NotificationRequest) -> bool:
        if not request.check_opt_out or request.recipient_type != "customer" or not request.recipient_id:
            return False
        customer = await session.get(Customer, request.recipient_id)
        return bool(customer and customer.sms_opted_out)

    def _record(
        self,
        session: AsyncSession,
        request: NotificationRequest,
        channel: str,
        contact: str | None,
        content: str | None,
        outcome: CommunicationResult,
    ) -> None:
        status = "sent" if outcome.sent else "failed"
        session.add(
            CommunicationLogEntry(
                channel=channel,
                template=request.template,
                recipient_type=request.recipient_type,
                recipient_id=request.recipient_id,
                recipient_contact=contact,
                content=(content or "")[:CONTENT_LIMIT],
                status=status,
                external_id=outcome.provider_msg_id,
                error_message=outcome.error_code,
                related_entity_type=request.related_entity_type,
                related_entity_id=request.related_entity_id,
            )
        )
        metrics.record_notification(channel, request.template, status)
        if not outcome.sent:
            logger.info(
                "notification_not_sent",
                extra={"extra": {"channel": channel, "template": request.template, "error": outcome.error_code}},
            )


def log_inbound_sms(session: AsyncSession, *, customer_id: str, from_number: str, body: str) -> None:
    session.add(
        CommunicationLogEntry(
            channel="sms",
            template="inbound",
            recipient_type="customer",
            recipient_id=customer_id,
            recipient_contact=from_number,
            content=body[:CONTENT_LIMIT],
            status="sent",
            related_entity_type="customer",
            related_entity_id=customer_id,
        )
    )


def resolve_dispatcher(app_like) -> NotificationDispatcher:
    return NotificationDispatcher(
        communication_adapter=resolve_app_communication_adapter(app_like),
        email_adapter=resolve_app_email_adapter(app_like),
    )
