"""Durable media storage on Pinata, plus download of provider-hosted media.

Provider URLs expire (Replicate after about an hour, fal after a few days), so
every output is copied to Pinata before it is recorded as an asset.
"""

import json
from dataclasses import dataclass

import httpx
import structlog

from vidgenie.services.exceptions import StorageError

logger = structlog.get_logger()


@dataclass
class FetchedMedia:
    data: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


class MediaFetcher:
    """Downloads media from provider URLs."""

    def __init__(self, timeout: float = 60.0, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, url: str, default_content_type: str) -> FetchedMedia:
        """Download url.

        Raises:
            StorageError: Timeout, network failure, or non-2xx response
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport, follow_redirects=True
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise StorageError(f"Media download timed out after {self.timeout}s: {e}") from e
        except httpx.HTTPStatusError as e:
            raise StorageError(
                f"Media download failed ({e.response.status_code}): {url}"
            ) from e
        except httpx.HTTPError as e:
            raise StorageError(f"Media download network error: {e}") from e

        content_type = response.headers.get("content-type", default_content_type)
        content_type = content_type.split(";")[0].strip() or default_content_type
        return FetchedMedia(data=response.content, content_type=content_type)


class PinataStorage:
    """Upload client using the Pinata pinning service."""

    def __init__(
        self,
        jwt_token: str,
        gateway_domain: str = "gateway.pinata.cloud",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Pinata client.

        Args:
            jwt_token: Pinata API JWT token (from PINATA_JWT env var)
            gateway_domain: Gateway domain for URL generation (default: public gateway)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.jwt_token = jwt_token
        self.gateway_domain = gateway_domain
        self.base_url = "https://api.pinata.cloud"
        self.headers = {"Authorization": f"Bearer {jwt_token}"}
        self._transport = transport

    async def upload(self, data: bytes, content_type: str, filename: str) -> str:
        """Pin bytes and return their public gateway URL.

        Raises:
            StorageError: Any upload failure (auth, rate limit, network, bad response)
        """
        if not self.jwt_token:
            raise StorageError("PINATA_JWT not configured")

        pinata_metadata = {"name": filename, "keyvalues": {"content_type": content_type}}

        try:
            async with httpx.AsyncClient(timeout=60.0, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/pinning/pinFileToIPFS",
                    headers=self.headers,
                    files={"file": (filename, data, content_type)},
                    data={
                        "pinataOptions": '{"cidVersion": 1}',
                        "pinataMetadata": json.dumps(pinata_metadata),
                    },
                )
        except httpx.TimeoutException as e:
            raise StorageError(f"Upload timed out after 60s: {e}") from e
        except httpx.HTTPError as e:
            raise StorageError(f"Upload network error: {e}") from e

        if response.status_code == 429:
            raise StorageError(f"Rate limit exceeded: {response.text}")
        if response.status_code in (401, 403):
            raise StorageError(
                "Unauthorized: check PINATA_JWT configuration and pinFileToIPFS access"
            )
        if response.status_code >= 400:
            raise StorageError(f"Upload failed ({response.status_code}): {response.text}")

        cid = response.json().get("IpfsHash")
        if not cid:
            raise StorageError("Pinata response did not include IpfsHash")

        url = self.get_gateway_url(cid)
        logger.info("storage.uploaded", filename=filename, size=len(data), cid=cid)
        return url

    def get_gateway_url(self, cid: str) -> str:
        """Convert CID to gateway URL for browser access."""
        return f"https://{self.gateway_domain}/ipfs/{cid}"
