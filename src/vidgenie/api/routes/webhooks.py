"""Video provider webhook endpoint.

Every delivery is stored before it is processed. Once stored, the provider gets
a 200 whether or not the event verified or matched a job, so it stops retrying
an event this service already holds. Only unexpected failures after storage
return 500, which makes the provider redeliver; reprocessing is a no-op for
jobs that already finished.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from vidgenie.api.dependencies import get_orchestrator, get_webhook_receiver
from vidgenie.services.exceptions import NotFoundError, SignatureError, ValidationError
from vidgenie.services.webhooks.receiver import WebhookReceiver
from vidgenie.services.workflow.orchestrator import WorkflowOrchestrator

logger = structlog.get_logger()
router = APIRouter()


@router.post("/video")
async def receive_video_webhook(
    request: Request,
    receiver: WebhookReceiver = Depends(get_webhook_receiver),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Receive a video provider callback.

    HTTP Status Codes:
        200: Event stored (processed, ignored as duplicate, unverified, or unmatched)
        500: Event stored but processing failed unexpectedly (provider retries)
    """
    raw_body = await request.body()
    record = await receiver.ingest(
        orchestrator.video_provider.name, raw_body, dict(request.headers)
    )

    try:
        processed = await orchestrator.handle_webhook(record)
    except SignatureError:
        return {"status": "recorded", "processed": False, "record_id": str(record.id)}
    except NotFoundError as e:
        logger.warning("webhook.not_processed", record_id=str(record.id), reason=str(e))
        return {"status": "recorded", "processed": False, "record_id": str(record.id)}
    except ValidationError as e:
        logger.warning("webhook.malformed", record_id=str(record.id), error=str(e))
        return {"status": "recorded", "processed": False, "record_id": str(record.id)}
    except Exception as e:
        logger.error(
            "webhook.processing_failed",
            record_id=str(record.id),
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook stored but processing failed",
        )

    return {"status": "processed", "processed": processed, "record_id": str(record.id)}
