"""HTTP transport to a treemirror consumer.

Handles delivery with retry on server errors and optional delta compression.
"""

import asyncio
import logging
from typing import Any

import httpx

from ..exceptions import TransportError
from ..model import Delta
from .base import SendResult, Transport
from .codec import DeltaCodec
from .messages import DELTA

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/api/messages"
COMPRESSED_DELTA_PATH = "/api/delta/compressed"


class HTTPTransport(Transport):
    """Posts message envelopes to the consumer's HTTP API."""

    def __init__(
        self,
        server_url: str,
        timeout: float = 60.0,
        max_retries: int = 2,
        codec: DeltaCodec | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the transport.

        Args:
            server_url: Base URL of the consumer (e.g., "http://localhost:8080").
            timeout: Request timeout in seconds.
            max_retries: Attempts per message on connection or server errors.
            codec: Optional codec; when set, deltas are sent compressed.
            client: Optional preconfigured httpx client.
        """
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.codec = codec
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.server_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(self, message: dict[str, Any]) -> SendResult:
        if self.codec is not None and message.get("type") == DELTA:
            return await self._send_compressed(message)

        data, error = await self._post_with_retry(MESSAGES_PATH, json_data=message)
        return self._result(data, error)

    async def _send_compressed(self, message: dict[str, Any]) -> SendResult:
        data = message["data"]
        delta = Delta.from_dict(data)
        payload = self.codec.encode(delta)

        headers = {"Content-Type": self.codec.content_type}
        if message.get("producer"):
            headers["X-Producer-Id"] = message["producer"]
        if data.get("index") is not None:
            headers["X-Batch-Index"] = str(data["index"])
            headers["X-Total-Batches"] = str(data["totalBatches"])
            headers["X-Is-Last"] = "true" if data["isLast"] else "false"

        logger.debug(
            f"Compressed delta of {delta.size} items to {len(payload)} bytes "
            f"({self.codec.ratio(delta, payload):.0%})"
        )
        result, error = await self._post_with_retry(
            COMPRESSED_DELTA_PATH, content=payload, headers=headers
        )
        return self._result(result, error)

    @staticmethod
    def _result(data: Any, error: str | None) -> SendResult:
        if error:
            return SendResult(ok=False, error=error)
        data = data or {}
        return SendResult(
            ok=bool(data.get("accepted", True)),
            resync_required=bool(data.get("resync", False)),
            error=data.get("error"),
        )

    async def _post_with_retry(
        self,
        path: str,
        json_data: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[Any, str | None]:
        """POST with exponential backoff retry.

        Returns:
            Tuple of (response_data, error_message).
        """
        client = await self._get_client()
        backoff = 0.5

        for attempt in range(self.max_retries):
            try:
                if content is not None:
                    response = await client.post(path, content=content, headers=headers)
                else:
                    response = await client.post(path, json=json_data, headers=headers)

                if response.status_code == 200:
                    return response.json(), None

                elif response.status_code >= 500:
                    # Server error, retry
                    logger.warning(
                        f"Server error {response.status_code} on {path}, "
                        f"attempt {attempt + 1}/{self.max_retries}"
                    )
                else:
                    # Client error, don't retry
                    return None, f"HTTP {response.status_code}: {response.text}"

            except httpx.ConnectError:
                logger.warning(
                    f"Connection failed, attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.TimeoutException:
                logger.warning(
                    f"Request timeout, attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.HTTPError as e:
                logger.error(f"Request error: {e}")
                return None, str(e)

            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        return None, f"Max retries ({self.max_retries}) exceeded"


class ConsumerClient:
    """Read-side client for a running consumer's HTTP API."""

    def __init__(self, server_url: str, timeout: float = 10.0):
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            async with httpx.AsyncClient(base_url=self.server_url, timeout=self.timeout) as client:
                response = await client.get(path, params=params)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {self.server_url}{path} failed: {e}") from e

    async def get_connection(self) -> dict[str, Any]:
        return await self._get("/api/connection")

    async def get_stats(self) -> dict[str, Any]:
        return await self._get("/api/stats")

    async def get_tree(self, query: str = "") -> dict[str, Any]:
        params = {"query": query} if query else None
        return await self._get("/api/tree", params=params)

    async def list_nodes(self) -> list[dict[str, Any]]:
        data = await self._get("/api/nodes")
        return data.get("nodes", [])
