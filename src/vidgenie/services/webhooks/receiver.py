"""Webhook intake: verify, correlate, and persist every provider callback.

The record is committed before anything acts on it, so a crash during
processing never loses the event; processing can be replayed from the record.
"""

import structlog
from pydantic import ValidationError as PydanticValidationError

from vidgenie.models.generation_job import GenerationJob
from vidgenie.models.webhook_record import SignatureVerification, WebhookRecord
from vidgenie.services.exceptions import NotFoundError
from vidgenie.services.webhooks.payload import VideoWebhookPayload
from vidgenie.services.webhooks.signature import classify_signature
from vidgenie.uow import UnitOfWork

logger = structlog.get_logger()

# Never persisted with the record
_REDACTED_HEADERS = {"authorization", "cookie", "x-api-key"}


def parse_payload(raw_payload: bytes | str) -> VideoWebhookPayload | None:
    """Best-effort parse; None for malformed bodies (still recorded)."""
    try:
        return VideoWebhookPayload.model_validate_json(raw_payload)
    except PydanticValidationError as e:
        logger.warning("webhook.payload_invalid", error_count=e.error_count())
        return None


class WebhookReceiver:
    """Provider-agnostic webhook intake."""

    def __init__(self, uow_factory, secret: str, signature_header: str):
        """Initialize receiver.

        Args:
            uow_factory: Factory producing UnitOfWork instances
            secret: Shared HMAC secret (empty disables verification)
            signature_header: Header carrying the signature
        """
        self.uow_factory = uow_factory
        self.secret = secret
        self.signature_header = signature_header

    async def correlate(self, uow: UnitOfWork, provider_job_id: str) -> GenerationJob:
        """Look up a job by its provider-assigned id.

        Raises:
            NotFoundError: If no job carries this id
        """
        job = await uow.jobs.get_by_provider_job_id(provider_job_id)
        if job is None:
            raise NotFoundError(f"No job for provider job id {provider_job_id}")
        return job

    async def ingest(
        self, provider: str, raw_payload: bytes, headers: dict[str, str]
    ) -> WebhookRecord:
        """Persist the raw event unconditionally and return the stored record.

        Verification failures, malformed bodies and unknown jobs are all recorded;
        none of them raise.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        signature = lowered.get(self.signature_header.lower())
        verification = classify_signature(raw_payload, signature, self.secret)

        if verification == SignatureVerification.INVALID:
            logger.warning(
                "webhook.signature_invalid",
                provider=provider,
                signature_present=signature is not None,
            )

        payload = parse_payload(raw_payload)
        provider_job_id = payload.provider_job_id if payload else None

        async with await self.uow_factory() as uow:
            job_id = None
            if provider_job_id:
                try:
                    job = await self.correlate(uow, provider_job_id)
                    job_id = job.id
                except NotFoundError:
                    logger.warning(
                        "webhook.unknown_job",
                        provider=provider,
                        provider_job_id=provider_job_id,
                    )

            record = await uow.webhook_records.add(
                WebhookRecord(
                    provider=provider,
                    provider_job_id=provider_job_id,
                    job_id=job_id,
                    event_status=payload.status.value if payload else None,
                    raw_payload=raw_payload.decode("utf-8", errors="replace"),
                    headers={k: v for k, v in lowered.items() if k not in _REDACTED_HEADERS},
                    signature=signature[:255] if signature else None,
                    verified=verification == SignatureVerification.VALID,
                    verification=verification,
                )
            )

        logger.info(
            "webhook.received",
            provider=provider,
            record_id=str(record.id),
            provider_job_id=provider_job_id,
            job_id=str(job_id) if job_id else None,
            event_status=record.event_status,
            verification=verification.value,
        )
        return record


def payload_from_record(record: WebhookRecord) -> VideoWebhookPayload | None:
    """Re-parse a stored record for processing or replay."""
    return parse_payload(record.raw_payload)
