import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.domain.notifications.dispatcher import resolve_dispatcher
from booking_funnel.domain.outbox.service import deliver_outbox_events
from booking_funnel.domain.sms_inbound.service import handle_inbound_sms
from booking_funnel.domain.sms_inbound.twiml import TWIML_MEDIA_TYPE, twiml_message
from booking_funnel.infra.communication import verify_twilio_signature
from booking_funnel.infra.db import get_db_session
from booking_funnel.settings import settings

router = APIRouter(tags=["sms"])
logger = logging.getLogger(__name__)


@router.post("/v1/sms/inbound")
async def inbound_sms(
    http_request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    form = await http_request.form()
    params = {key: str(value) for key, value in form.items()}
    if settings.twilio_validate_signature:
        signature = http_request.headers.get("X-Twilio-Signature")
        if not verify_twilio_signature(str(http_request.url), params, signature):
            logger.warning("twilio_signature_invalid")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid Twilio signature")

    from_number = params.get("From", "")
    try:
        result = await handle_inbound_sms(session, from_number, params.get("Body"))
    except Exception as exc:  # noqa: BLE001
        await session.rollback()
        logger.exception("sms_inbound_failed", extra={"extra": {"reason": type(exc).__name__}})
        return Response(content=twiml_message(None), media_type=TWIML_MEDIA_TYPE)

    if result.events:
        await deliver_outbox_events(
            session, [event.event_id for event in result.events], resolve_dispatcher(http_request)
        )
    return Response(content=twiml_message(result.reply), media_type=TWIML_MEDIA_TYPE)
