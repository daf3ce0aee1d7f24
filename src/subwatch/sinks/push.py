"""Push bridge client.

One JSON POST per returned voyage to a fixed endpoint, authenticated
with a pre-shared bearer token. Retrying is the dispatcher's job; this
client makes exactly one attempt per call.
"""

import logging

import httpx

from subwatch.exceptions import RemoteError
from subwatch.voyages.models import VoyageRecord

from .base import RemoteNotifier, notification_text

logger = logging.getLogger(__name__)


class PushBridgeSink(RemoteNotifier):
    """Delivers notifications to the push bridge over HTTP."""

    DEFAULT_TIMEOUT: float = 10.0
    DEFAULT_HEADERS: dict[str, str] = {"Accept": "application/json"}

    def __init__(
        self,
        endpoint: str,
        token: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the push bridge client.

        Args:
            endpoint: Full URL notifications are POSTed to
            token: Pre-shared credential sent as a bearer token
            timeout: Per-request timeout in seconds
            transport: Optional transport override (used by tests)
        """
        if not endpoint:
            raise ValueError("Push bridge endpoint is required")
        self.endpoint = endpoint
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_headers(self) -> dict[str, str]:
        headers = self.DEFAULT_HEADERS.copy()
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _ensure_client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=self._get_headers(),
                transport=self._transport,
            )
        return self._client

    @staticmethod
    def build_payload(record: VoyageRecord) -> dict[str, object]:
        """Build the JSON body for a voyage notification."""
        title, body = notification_text(record)
        return {
            "voyage_id": record.voyage_id,
            "name": record.name,
            "character_name": record.character_name,
            "tag": record.tag,
            "return_instant": record.return_instant.isoformat(),
            "title": title,
            "message": body,
        }

    async def notify_remote(self, record: VoyageRecord) -> None:
        client = self._ensure_client()
        try:
            response = await client.post(self.endpoint, json=self.build_payload(record))
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteError(
                f"Push bridge rejected voyage {record.voyage_id}: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteError(f"Push bridge unreachable: {e}") from e
        logger.debug("Push notification delivered for voyage %s", record.voyage_id)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
