"""fal.ai queue client for asynchronous image-to-video generation.

Submission returns immediately with a request id; completion arrives later as a
webhook to the URL passed in ``fal_webhook``.
"""

import httpx
import structlog

from vidgenie.services.exceptions import ProviderError, ProviderTimeoutError

logger = structlog.get_logger()

PROVIDER_NAME = "fal"


class FalVideoProvider:
    """Video provider using the fal.ai queue REST API."""

    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: str,
        model: str,
        queue_url: str = "https://queue.fal.run",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize fal client.

        Args:
            api_key: fal API key (from FAL_KEY env var)
            model: Model path, e.g. "fal-ai/veo3/image-to-video"
            queue_url: Queue API base URL
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.api_key = api_key
        self.model = model
        self.queue_url = queue_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.headers = {
            "Authorization": f"Key {api_key}",
            "Content-Type": "application/json",
        }

    @property
    def app_id(self) -> str:
        """Owner/app part of the model path; request status and cancel live under it."""
        return "/".join(self.model.split("/")[:2])

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def submit(self, prompt: str, image_url: str, webhook_url: str) -> str:
        """Queue a video generation request.

        Args:
            prompt: Video prompt
            image_url: Durable URL of the first-frame image
            webhook_url: Callback URL for completion events

        Returns:
            Provider request id used to correlate webhooks

        Raises:
            ProviderTimeoutError: Request timed out
            ProviderError: Any other submission failure
        """
        if not self.api_key:
            raise ProviderError("FAL_KEY not configured", code="PROVIDER_CONFIG")

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.queue_url}/{self.model}",
                    params={"fal_webhook": webhook_url},
                    headers=self.headers,
                    json={"prompt": prompt, "image_url": image_url},
                )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Video submission timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Network error: {e}", retryable=True) from e

        if response.status_code == 429:
            raise ProviderError(f"Rate limit exceeded: {response.text}", retryable=True)
        if response.status_code >= 500:
            raise ProviderError(
                f"Service unavailable ({response.status_code}): {response.text}", retryable=True
            )
        if response.status_code in (401, 403):
            raise ProviderError(
                "Unauthorized: check FAL_KEY configuration", code="PROVIDER_AUTH"
            )
        if response.status_code >= 400:
            raise ProviderError(f"Bad request ({response.status_code}): {response.text}")

        request_id = response.json().get("request_id")
        if not request_id:
            raise ProviderError("fal response did not include a request_id")

        logger.info("video_provider.submitted", model=self.model, request_id=request_id)
        return request_id

    async def cancel(self, request_id: str) -> bool:
        """Best-effort abort of a queued or running request.

        Returns:
            True if the provider acknowledged the cancel. Failures are logged, not raised.
        """
        try:
            async with self._client() as client:
                response = await client.put(
                    f"{self.queue_url}/{self.app_id}/requests/{request_id}/cancel",
                    headers=self.headers,
                )
        except httpx.HTTPError as e:
            logger.warning(
                "video_provider.cancel_failed",
                request_id=request_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if response.is_success:
            logger.info("video_provider.cancelled", request_id=request_id)
            return True

        # 400 means the request already completed; nothing left to abort
        logger.info(
            "video_provider.cancel_unsupported",
            request_id=request_id,
            status_code=response.status_code,
        )
        return False
