"""Async REST client for the hosted record store and object storage.

Tables are reached through a PostgREST-style API (``/rest/v1/<table>``
with ``column=op.value`` filters) and objects through a storage API
(``/storage/v1/object/...``).
"""

import logging
from collections.abc import Iterable
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from snapme_claim.errors import BackendError, NotFoundError, RateLimitError, ServerError

logger = logging.getLogger(__name__)

# Only throttled idempotent reads are retried; writes are never replayed
read_retry = retry(
    retry=retry_if_exception_type(RateLimitError),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
    stop=stop_after_attempt(3),
    reraise=True,
)


def eq(value: Any) -> str:
    return f"eq.{value}"


def ilike(term: str) -> str:
    """Case-insensitive partial match on ``term``, taken literally.

    ``%`` and ``_`` are escaped. ``*`` is always a wildcard to the backend
    and cannot be escaped, so it is dropped from the term.
    """
    literal = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"ilike.*{literal.replace('*', '')}*"


def in_(values: Iterable[Any]) -> str:
    return f"in.({','.join(str(v) for v in values)})"


def lte(value: Any) -> str:
    return f"lte.{value}"


class BackendClient:
    """Client for the hosted backend's table and storage APIs using httpx."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 30.0) -> None:
        """Initialize backend client.

        Args:
            base_url: Project URL, e.g. "https://project.example.co"
            api_key: API key sent as both ``apikey`` and bearer token
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def rest_url(self) -> str:
        return f"{self.base_url}/rest/v1"

    @property
    def storage_url(self) -> str:
        return f"{self.base_url}/storage/v1"

    async def __aenter__(self) -> "BackendClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={
                "apikey": self.api_key,
                "Authorization": f"Bearer {self.api_key}",
            },
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
        self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the httpx AsyncClient instance.

        Raises:
            RuntimeError: If client is used outside of async context manager
        """
        if self._client is None:
            raise RuntimeError("Client must be used within async context manager")
        return self._client

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    @read_retry
    async def select(
        self,
        table: str,
        filters: dict[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """Select rows from a table.

        Args:
            table: Table name
            filters: Column filters built with :func:`eq`, :func:`ilike`, ...
            order: Ordering, e.g. "created_at.desc"
            limit: Maximum number of rows
            offset: Number of rows to skip

        Returns:
            Matching rows
        """
        params: dict[str, Any] = {"select": "*", **(filters or {})}
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = limit
        if offset is not None:
            params["offset"] = offset
        return await self._send("GET", f"{self.rest_url}/{table}", f"selecting from {table}", params=params)

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored."""
        rows = await self._send(
            "POST",
            f"{self.rest_url}/{table}",
            f"inserting into {table}",
            json=row,
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise BackendError(f"Insert into {table} returned no row")
        return rows[0]

    async def update(
        self, table: str, values: dict[str, Any], filters: dict[str, str]
    ) -> list[dict[str, Any]]:
        """Update matching rows and return them as stored."""
        return await self._send(
            "PATCH",
            f"{self.rest_url}/{table}",
            f"updating {table}",
            params=filters,
            json=values,
            headers={"Prefer": "return=representation"},
        )

    async def delete(self, table: str, filters: dict[str, str]) -> list[dict[str, Any]]:
        """Delete matching rows and return them."""
        return await self._send(
            "DELETE",
            f"{self.rest_url}/{table}",
            f"deleting from {table}",
            params=filters,
            headers={"Prefer": "return=representation"},
        )

    async def rpc(self, function: str, params: dict[str, Any] | None = None) -> Any:
        """Invoke a server-side function."""
        return await self._send(
            "POST", f"{self.rest_url}/rpc/{function}", f"calling {function}", json=params or {}
        )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def upload_object(
        self, bucket: str, path: str, content: bytes, content_type: str
    ) -> str:
        """Upload bytes to ``bucket/path``; existing objects are never overwritten.

        Returns:
            The stored object key
        """
        result = await self._send(
            "POST",
            f"{self.storage_url}/object/{bucket}/{path}",
            f"uploading {path}",
            content=content,
            headers={
                "Content-Type": content_type,
                "Cache-Control": "max-age=3600",
                "x-upsert": "false",
            },
        )
        logger.debug(f"Stored object {path} ({len(content)} bytes)")
        if isinstance(result, dict) and result.get("Key"):
            return result["Key"]
        return f"{bucket}/{path}"

    @read_retry
    async def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        """Create a time-limited download URL for one object."""
        result = await self._send(
            "POST",
            f"{self.storage_url}/object/sign/{bucket}/{path}",
            f"signing {path}",
            json={"expiresIn": expires_in},
        )
        return self._absolute_url(result["signedURL"])

    @read_retry
    async def create_signed_urls(
        self, bucket: str, paths: list[str], expires_in: int
    ) -> list[dict[str, Any]]:
        """Create download URLs for many objects in one request.

        Returns:
            One ``{"path", "url", "error"}`` entry per requested path
        """
        result = await self._send(
            "POST",
            f"{self.storage_url}/object/sign/{bucket}",
            f"signing {len(paths)} object(s)",
            json={"expiresIn": expires_in, "paths": paths},
        )
        return [
            {
                "path": item.get("path"),
                "url": self._absolute_url(item["signedURL"]) if item.get("signedURL") else None,
                "error": item.get("error"),
            }
            for item in result
        ]

    async def remove_objects(self, bucket: str, paths: list[str]) -> None:
        """Delete objects from a bucket."""
        await self._send(
            "DELETE",
            f"{self.storage_url}/object/{bucket}",
            f"removing {len(paths)} object(s)",
            json={"prefixes": paths},
        )

    @read_retry
    async def fetch(self, url: str) -> bytes:
        """Download raw bytes from an absolute (signed) URL."""
        try:
            response = await self.client.get(url)
        except httpx.RequestError as e:
            raise ServerError(f"Network error: {e}") from e
        if response.status_code >= 400:
            self._handle_error_response(
                response.status_code, {"message": response.text[:200]}, "fetching object"
            )
        return response.content

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _absolute_url(self, signed_path: str) -> str:
        if signed_path.startswith("http"):
            return signed_path
        return f"{self.storage_url}/{signed_path.lstrip('/')}"

    async def _send(self, method: str, url: str, context: str, **kwargs: Any) -> Any:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            logger.warning(f"Network error while {context}: {e}")
            raise ServerError(f"Network error: {e}") from e

        if response.status_code == 204 or not response.content:
            if response.status_code >= 400:
                self._handle_error_response(response.status_code, {}, context)
            return []

        result = self._parse_json_response(response, context)
        if response.status_code >= 400:
            self._handle_error_response(response.status_code, result, context)
        return result

    def _parse_json_response(self, response: httpx.Response, context: str) -> Any:
        """Parse JSON response, handling non-JSON responses gracefully.

        Raises:
            ServerError: If response is 5xx with non-JSON body
            BackendError: If response has invalid JSON for non-5xx status
        """
        try:
            return response.json()
        except ValueError:
            if response.status_code >= 500:
                raise ServerError(
                    f"Server error {response.status_code}: {response.text[:200]}"
                )
            raise BackendError(f"Invalid response while {context}: {response.text[:200]}")

    def _handle_error_response(self, status_code: int, result: Any, context: str) -> None:
        """Map an error response to the exception hierarchy.

        Raises:
            RateLimitError: On HTTP 429
            ServerError: On 5xx
            NotFoundError: On 404
            BackendError: For other errors
        """
        message = str(result)
        if isinstance(result, dict):
            message = result.get("message") or result.get("error") or message

        if status_code == 429:
            logger.warning(f"Rate limit exceeded while {context}")
            raise RateLimitError(f"Backend rate limit exceeded: {message}")

        if status_code >= 500:
            logger.warning(f"Server error while {context}: {message}")
            raise ServerError(f"Backend server error: {message}")

        if status_code == 404:
            raise NotFoundError(f"Not found while {context}: {message}")

        error_msg = f"Backend error while {context}: {message}"
        logger.error(error_msg)
        raise BackendError(error_msg)
