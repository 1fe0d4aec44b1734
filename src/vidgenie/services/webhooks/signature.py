"""HMAC signature validation for video provider webhooks.

Uses HMAC-SHA256 over the raw request body with constant-time comparison.
An empty shared secret disables verification; that mode is logged as insecure
on every request so it cannot go unnoticed in a deployed environment.
"""

import hashlib
import hmac

import structlog

from vidgenie.models.webhook_record import SignatureVerification

logger = structlog.get_logger()

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of raw_body keyed by secret."""
    return hmac.new(key=secret.encode("utf-8"), msg=raw_body, digestmod=hashlib.sha256).hexdigest()


def validate_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """Validate a webhook signature using HMAC-SHA256.

    Args:
        raw_body: Raw request body bytes (NOT parsed JSON). Must be the exact
            bytes received from the request.
        signature: Header value, hex digest with or without a "sha256=" prefix
        secret: Shared webhook secret

    Returns:
        True if the signature matches, False otherwise (including when missing).
        Always True when no secret is configured.
    """
    if not secret:
        logger.warning(
            "webhook.signature_verification_skipped",
            reason="no_secret_configured",
            insecure=True,
        )
        return True

    if not signature:
        return False

    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX) :]

    expected = compute_signature(raw_body, secret)

    # Constant-time comparison; hexdigest() is lowercase so normalize the input
    return hmac.compare_digest(expected, provided.lower())


def classify_signature(
    raw_body: bytes, signature: str | None, secret: str
) -> SignatureVerification:
    """Verification outcome as stored on the webhook record."""
    if not secret:
        validate_signature(raw_body, signature, secret)
        return SignatureVerification.SKIPPED
    if validate_signature(raw_body, signature, secret):
        return SignatureVerification.VALID
    return SignatureVerification.INVALID
