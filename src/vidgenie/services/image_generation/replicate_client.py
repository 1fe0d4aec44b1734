"""Replicate API client for image generation with error classification."""

import asyncio
from dataclasses import dataclass
from typing import Any, Literal

import replicate
import structlog
from pydantic import BaseModel
from replicate.exceptions import ReplicateError as ReplicateAPIError

from vidgenie.services.exceptions import (
    ContentPolicyError,
    ProviderError,
    ProviderTimeoutError,
)

logger = structlog.get_logger()

PROVIDER_NAME = "replicate"

SIZE_TO_ASPECT_RATIO = {
    "1024x1024": "1:1",
    "1792x1024": "16:9",
    "1024x1792": "9:16",
}

QUALITY_TO_OUTPUT_QUALITY = {
    "standard": 80,
    "hd": 100,
}

STYLE_HINTS = {
    "natural": "",
    "vivid": ", vivid colors, dramatic lighting",
}


class ImageConfig(BaseModel):
    """Image options accepted from the client."""

    style: Literal["natural", "vivid"] = "natural"
    quality: Literal["standard", "hd"] = "standard"
    size: Literal["1024x1024", "1792x1024", "1024x1792"] = "1024x1024"


@dataclass
class GeneratedImage:
    url: str
    model: str
    config: dict[str, Any]


def classify_error(exception: Exception) -> ProviderError:
    """Classify a Replicate or network failure into a ProviderError.

    Classification rules:
        - Timeout, 429, 503, connection errors -> retryable ProviderError
        - Content policy violations -> ContentPolicyError
        - 401/403 and anything else -> non-retryable ProviderError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if "timeout" in error_message_lower:
        return ProviderTimeoutError(f"Network timeout: {error_message}")

    if "429" in error_message or "rate limit" in error_message_lower:
        return ProviderError(f"Rate limit exceeded: {error_message}", retryable=True)

    if "503" in error_message or "service unavailable" in error_message_lower:
        return ProviderError(f"Service unavailable: {error_message}", retryable=True)

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return ProviderError(f"Authentication failed: {error_message}", code="PROVIDER_AUTH")

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
        or "inappropriate" in error_message_lower
    ):
        return ContentPolicyError(f"Content policy violation: {error_message}")

    if isinstance(exception, (ConnectionError, OSError)):
        return ProviderError(f"Connection error: {error_message}", retryable=True)

    return ProviderError(f"Permanent error: {error_message}")


def _extract_url(output: Any) -> str:
    """Pull a URL out of the model output (list, FileOutput, or plain string)."""
    if isinstance(output, list):
        if not output:
            raise ProviderError("Replicate returned an empty output list")
        output = output[0]
    url = getattr(output, "url", output)
    if not isinstance(url, str) or not url:
        raise ProviderError(f"Unexpected output format from Replicate: {type(output)}")
    return url


class ReplicateImageProvider:
    """Synchronous-contract image provider backed by the Replicate SDK."""

    name = PROVIDER_NAME

    def __init__(self, api_token: str, model_version: str, timeout_seconds: float = 60.0):
        """Initialize provider.

        Args:
            api_token: Replicate API token
            model_version: Model identifier (e.g., "black-forest-labs/flux-schnell")
            timeout_seconds: Upper bound on a single generation call
        """
        self.api_token = api_token
        self.model_version = model_version
        self.timeout_seconds = timeout_seconds

    def build_input(self, prompt: str, config: ImageConfig) -> dict[str, Any]:
        return {
            "prompt": prompt + STYLE_HINTS[config.style],
            "aspect_ratio": SIZE_TO_ASPECT_RATIO[config.size],
            "output_quality": QUALITY_TO_OUTPUT_QUALITY[config.quality],
            "output_format": "png",
        }

    async def generate(self, prompt: str, config: ImageConfig) -> GeneratedImage:
        """Generate one image and return its (expiring) provider URL.

        Raises:
            ProviderError: If no API token is configured, or any other classified failure
            ProviderTimeoutError: If the call exceeds timeout_seconds
        """
        if not self.api_token:
            raise ProviderError("REPLICATE_API_TOKEN not configured", code="PROVIDER_CONFIG")

        model_input = self.build_input(prompt, config)
        client = replicate.Client(api_token=self.api_token)

        try:
            # SDK is synchronous; run in the default thread pool
            output = await asyncio.wait_for(
                asyncio.to_thread(client.run, self.model_version, input=model_input),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"Image generation exceeded {self.timeout_seconds}s"
            ) from e
        except ReplicateAPIError as e:
            raise classify_error(e) from e
        except (ConnectionError, OSError) as e:
            raise classify_error(e) from e

        url = _extract_url(output)
        logger.info("image_provider.generated", model=self.model_version, size=config.size)
        return GeneratedImage(url=url, model=self.model_version, config=config.model_dump())
