"""Service error hierarchy for the generation workflow.

- ServiceError: Base for all service errors
- TransientError / PermanentError: retry classification for provider and storage failures
- The remaining classes name what went wrong from the workflow's point of view
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (503)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Configuration errors
    """

    pass


class ValidationError(PermanentError):
    """Bad user input. Raised before any side effect."""

    pass


class InsufficientCredits(ServiceError):
    """Balance does not cover the requested operation."""

    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits: balance {balance}, required {required}")


class ProviderError(ServiceError):
    """An external generation provider failed.

    Attributes:
        retryable: Whether the provider classified the failure as transient
        code: Stable error code stored on the failed job
    """

    def __init__(self, message: str, *, retryable: bool = False, code: str = "PROVIDER_ERROR"):
        self.retryable = retryable
        self.code = code
        super().__init__(message)


class ProviderTimeoutError(ProviderError):
    """Provider did not answer within the stage timeout."""

    def __init__(self, message: str):
        super().__init__(message, retryable=True, code="PROVIDER_TIMEOUT")


class ContentPolicyError(ProviderError):
    """Provider refused the prompt on content grounds."""

    def __init__(self, message: str):
        super().__init__(message, retryable=False, code="CONTENT_POLICY")


class StorageError(ServiceError):
    """Media could not be fetched from the provider or persisted durably."""

    pass


class SignatureError(ServiceError):
    """Webhook signature did not verify."""

    pass


class NotFoundError(ServiceError):
    """Job (or correlation target) does not exist for this caller."""

    pass


class ConcurrencyConflict(ServiceError):
    """A conditional update lost the race; the other writer's transition stands."""

    pass


class JobStateError(ServiceError):
    """User action not permitted in the job's current status."""

    pass


class AuthenticationError(ServiceError):
    """Bearer token missing or rejected by the auth collaborator."""

    pass
