"""HTTP client for the remote bookmark store.

Talks to a PostgREST-style endpoint (``/rest/v1/<table>``). Reads are
retried with exponential backoff; writes are issued exactly once and any
failure is reported to the caller.
"""

import asyncio
import logging
from typing import Any

import httpx

from ..config import RemoteConfig
from ..errors import MalformedRecordError, RemoteStoreError
from ..records import Bookmark, CorrelationKey, DurableId
from .base import RemoteStore

logger = logging.getLogger(__name__)

_SUCCESS_CODES = (200, 201, 204)


class RemoteStoreClient(RemoteStore):
    """Remote store backed by a PostgREST table."""

    def __init__(
        self,
        config: RemoteConfig,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            config: Remote store configuration.
            access_token: Bearer token for the signed-in owner.
            transport: Optional httpx transport (used by tests).
        """
        self.config = config
        self._access_token = access_token
        self._transport = transport

    def set_access_token(self, token: str | None) -> None:
        """Set or clear the bearer token used for requests."""
        self._access_token = token

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["apikey"] = self.config.api_key
        bearer = self._access_token or self.config.api_key
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            headers=self._headers(),
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        params: dict[str, str] | None = None,
        json_data: Any = None,
        headers: dict[str, str] | None = None,
        retries: int = 1,
    ) -> Any:
        """Make an HTTP request, retrying server and connection errors.

        Returns:
            Decoded JSON body, or None for empty responses.

        Raises:
            RemoteStoreError: On client errors or when retries are exhausted.
        """
        url = self.config.rest_url
        backoff = 0.5
        last_error = "no attempts made"
        last_status: int | None = None

        async with self._client() as client:
            for attempt in range(retries):
                try:
                    response = await client.request(
                        method, url, params=params, json=json_data, headers=headers
                    )

                    if response.status_code in _SUCCESS_CODES:
                        if not response.content:
                            return None
                        return response.json()

                    last_status = response.status_code
                    last_error = f"HTTP {response.status_code}: {response.text}"
                    if response.status_code < 500:
                        # Client error, don't retry
                        raise RemoteStoreError(last_error, status_code=response.status_code)

                    logger.warning(
                        f"Server error {response.status_code} on {method}, "
                        f"attempt {attempt + 1}/{retries}"
                    )

                except httpx.ConnectError as e:
                    last_error = f"Connection failed: {e}"
                    logger.warning(f"Connection failed, attempt {attempt + 1}/{retries}")
                except httpx.TimeoutException as e:
                    last_error = f"Request timeout: {e}"
                    logger.warning(f"Request timeout, attempt {attempt + 1}/{retries}")
                except httpx.HTTPError as e:
                    raise RemoteStoreError(f"Request error: {e}") from e
                except ValueError as e:
                    raise RemoteStoreError(f"Invalid JSON response: {e}") from e

                if attempt < retries - 1:
                    await asyncio.sleep(backoff)
                    backoff *= 2

        raise RemoteStoreError(last_error, status_code=last_status)

    async def fetch_all(self, owner_id: str) -> list[Bookmark]:
        """Fetch every bookmark for an owner, newest first."""
        rows = await self._request(
            "GET",
            params={
                "select": "*",
                "user_id": f"eq.{owner_id}",
                "order": "created_at.desc",
            },
            retries=self.config.fetch_max_retries,
        )

        if not isinstance(rows, list):
            raise RemoteStoreError(f"Expected a list of rows, got {type(rows).__name__}")

        records = []
        for row in rows:
            try:
                records.append(Bookmark.from_dict(row))
            except MalformedRecordError as e:
                logger.warning(f"Skipping malformed row from remote store: {e}")
        return records

    async def create(
        self,
        title: str,
        url: str,
        owner_id: str,
        correlation: CorrelationKey | None = None,
    ) -> DurableId:
        """Insert a bookmark row and return its durable identifier."""
        body = {"title": title, "url": url, "user_id": owner_id}
        if correlation is not None:
            body["client_ref"] = correlation.token

        rows = await self._request(
            "POST",
            json_data=body,
            headers={"Prefer": "return=representation"},
        )

        row = rows[0] if isinstance(rows, list) and rows else rows
        if not isinstance(row, dict) or row.get("id") is None:
            raise RemoteStoreError("Create response did not include an id")
        return DurableId(str(row["id"]))

    async def delete(self, identifier: DurableId) -> None:
        """Delete a bookmark row."""
        await self._request("DELETE", params={"id": f"eq.{identifier.value}"})

    async def check_connection(self) -> bool:
        """Check if the remote store answers."""
        try:
            await self._request("GET", params={"select": "id", "limit": "1"})
            return True
        except RemoteStoreError:
            return False
