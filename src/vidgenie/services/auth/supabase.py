"""Resolve bearer tokens to user ids via the Supabase auth API."""

import httpx
import structlog

from vidgenie.services.exceptions import AuthenticationError

logger = structlog.get_logger()


class SupabaseAuthResolver:
    """Looks up the user behind an access token with GET /auth/v1/user."""

    def __init__(
        self,
        supabase_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.supabase_url = supabase_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def resolve(self, access_token: str) -> str:
        """Return the user id for access_token.

        Raises:
            AuthenticationError: Token rejected, auth not configured, or auth service unreachable
        """
        if not self.supabase_url:
            raise AuthenticationError("Auth provider not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self.supabase_url}/auth/v1/user",
                    headers={
                        "apikey": self.api_key,
                        "Authorization": f"Bearer {access_token}",
                    },
                )
        except httpx.HTTPError as e:
            logger.warning("auth.provider_unreachable", error=str(e), error_type=type(e).__name__)
            raise AuthenticationError("Auth provider unreachable") from e

        if response.status_code != 200:
            logger.info("auth.token_rejected", status_code=response.status_code)
            raise AuthenticationError("Invalid or expired token")

        user_id = response.json().get("id")
        if not user_id:
            raise AuthenticationError("Auth provider returned no user id")
        return user_id
