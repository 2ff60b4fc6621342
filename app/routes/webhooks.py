"""
webhooks.py
-----------
Purpose:
    Inbound provider callbacks.

    POST /webhooks/twilio/call-status   Twilio call progress. An `in-progress`
    call has been picked up, which is what ends a running call sequence.
"""

from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.config import settings
from app.dependencies import get_sos_repository
from app.infrastructure.observability.logging import get_logger
from app.models.domain.sos_domain import CallAttemptStatus
from app.repositories.sos_repository import SOSEventRepository
from app.security.twilio_signature import validate_signature

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)

TWILIO_STATUS_MAP = {
    "queued": CallAttemptStatus.QUEUED,
    "initiated": CallAttemptStatus.QUEUED,
    "ringing": CallAttemptStatus.RINGING,
    "in-progress": CallAttemptStatus.ANSWERED,
    "completed": CallAttemptStatus.COMPLETED,
    "busy": CallAttemptStatus.BUSY,
    "no-answer": CallAttemptStatus.NO_ANSWER,
    "failed": CallAttemptStatus.FAILED,
    "canceled": CallAttemptStatus.CANCELED,
}


@router.post("/twilio/call-status")
async def twilio_call_status(
    request: Request,
    repository: SOSEventRepository = Depends(get_sos_repository),
):
    raw = (await request.body()).decode("utf-8")
    params = parse_qsl(raw, keep_blank_values=True)

    if not settings.TWILIO_AUTH_TOKEN:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Telephony not configured")

    signature = request.headers.get("x-twilio-signature")
    if not validate_signature(settings.TWILIO_AUTH_TOKEN, settings.call_status_callback_url(), params, signature):
        logger.warning("Rejected Twilio callback with bad signature")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    form = dict(params)
    call_sid = form.get("CallSid")
    call_status = (form.get("CallStatus") or "").lower()
    mapped = TWILIO_STATUS_MAP.get(call_status)
    if not call_sid or mapped is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing CallSid or unknown CallStatus")

    updated = await repository.update_call_status_by_sid(
        call_sid, mapped.value, answered=mapped == CallAttemptStatus.ANSWERED
    )
    logger.info("Call status updated", call_sid=call_sid, call_status=call_status, matched=updated)

    return {"ok": True, "matched": updated}
