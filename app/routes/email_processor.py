"""
email_processor.py
------------------
Purpose:
    On-demand driver for the email queue, called by a scheduler or an
    operator with the service-role key.

    POST /email-processor        {"action": "process_queue" | "send_single" | "retry_failed",
                                  "email_id"?: str, "max_emails"?: int}
    GET  /email-processor/failed rows that exhausted their retries
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from app.auth.verify import service_role_dependency
from app.db.helpers import DatabaseError
from app.dependencies import get_email_queue_processor
from app.infrastructure.observability.logging import get_logger
from app.models.api.email_queue_request import EmailProcessorRequest
from app.models.api.email_queue_response import (
    ExhaustedEmailsResponse,
    ProcessQueueResponse,
    RetryFailedResponse,
    SendSingleResponse,
)
from app.services.email_queue_processor import EmailQueueError, EmailQueueProcessor, QueueDeliveryError

router = APIRouter(
    prefix="/email-processor",
    tags=["email-processor"],
    dependencies=[Depends(service_role_dependency)],
)
logger = get_logger(__name__)


@router.post(
    "",
    response_model=ProcessQueueResponse | SendSingleResponse | RetryFailedResponse,
)
async def run_email_processor(
    body: EmailProcessorRequest,
    processor: EmailQueueProcessor = Depends(get_email_queue_processor),
):
    logger.info("Email processor action", action=body.action, max_emails=body.max_emails)

    try:
        if body.action == "process_queue":
            counts = await processor.process_queue(body.max_emails)
            return ProcessQueueResponse(success=True, **counts)

        if body.action == "send_single":
            result = await processor.send_single(body.email_id)
            return SendSingleResponse(**result)

        counts = await processor.retry_failed(body.max_emails)
        return RetryFailedResponse(success=True, **counts)

    except EmailQueueError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e
    except QueueDeliveryError as e:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"success": False, "email_id": e.email_id, "error": str(e)},
        )
    except DatabaseError as e:
        logger.error("Email processor database error", action=body.action, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": str(e)},
        )


@router.get("/failed", response_model=ExhaustedEmailsResponse)
async def list_exhausted_emails(
    limit: int = Query(default=50, ge=1, le=500),
    processor: EmailQueueProcessor = Depends(get_email_queue_processor),
):
    emails = await processor.list_exhausted(limit)
    return ExhaustedEmailsResponse(count=len(emails), emails=emails)
