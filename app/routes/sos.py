"""
sos.py
------
Purpose:
    SOS endpoints for the mobile app.

    - POST /sos/trigger                     raise an SOS and fan it out
    - GET  /sos/events/{event_id}           poll an event (owner or family member)
    - POST /sos/events/{event_id}/acknowledge   family member is on it
    - POST /sos/events/{event_id}/resolve       owner stands the SOS down

All routes need `Authorization: Bearer <supabase access token>`.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.db.helpers import DatabaseError
from app.dependencies import get_current_user_id, get_sos_event_service, get_sos_trigger_service
from app.infrastructure.observability.logging import get_logger
from app.models.api.sos_request import AcknowledgeRequest, SOSTriggerRequest
from app.models.api.sos_response import (
    AcknowledgeResponse,
    ResolveResponse,
    SOSErrorResponse,
    SOSEventDetailResponse,
    SOSTriggerResponse,
)
from app.services.sos.event_service import SOSEventService
from app.services.sos.exceptions import AcknowledgementError, SOSEventCreationError
from app.services.sos.orchestrator import SOSTriggerService

router = APIRouter(prefix="/sos", tags=["sos"])
logger = get_logger(__name__)


@router.post(
    "/trigger",
    response_model=SOSTriggerResponse,
    responses={500: {"model": SOSErrorResponse}},
)
async def trigger_sos(
    body: SOSTriggerRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    service: SOSTriggerService = Depends(get_sos_trigger_service),
):
    try:
        return await service.trigger(
            user_id,
            body,
            request_id=getattr(request.state, "request_id", None),
            ip_address=getattr(request.state, "ip_address", None),
        )
    except SOSEventCreationError as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=SOSErrorResponse(error=str(e)).model_dump(),
        )


@router.get("/events/{event_id}", response_model=SOSEventDetailResponse)
async def get_sos_event(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SOSEventService = Depends(get_sos_event_service),
):
    try:
        return await service.get_event_detail(event_id, user_id)
    except AcknowledgementError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e
    except DatabaseError as e:
        logger.error("Failed to load SOS event", event_id=event_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Event store unavailable") from e


@router.post("/events/{event_id}/acknowledge", response_model=AcknowledgeResponse)
async def acknowledge_sos(
    event_id: str,
    body: AcknowledgeRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    service: SOSEventService = Depends(get_sos_event_service),
):
    try:
        return await service.acknowledge(event_id, user_id, body.message if body else None)
    except AcknowledgementError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e
    except DatabaseError as e:
        logger.error("Failed to acknowledge SOS event", event_id=event_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Event store unavailable") from e


@router.post("/events/{event_id}/resolve", response_model=ResolveResponse)
async def resolve_sos(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SOSEventService = Depends(get_sos_event_service),
):
    try:
        return await service.resolve(event_id, user_id)
    except AcknowledgementError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e
    except DatabaseError as e:
        logger.error("Failed to resolve SOS event", event_id=event_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Event store unavailable") from e
