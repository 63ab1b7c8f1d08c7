"""
HTTP client for the hosted reservations table (PostgREST-style surface).

Every request carries the project API key plus the staff session's
bearer token. 401/403 responses become AuthenticationError so callers
can redirect to login instead of retrying; every other failure becomes
BackendError.
"""

import logging
from typing import Any, Optional

import httpx

from reservation_sync.backend.base import AuthenticationError, BackendError, Row
from reservation_sync.config import settings
from reservation_sync.session import SessionContext

logger = logging.getLogger(__name__)


class RestBackend:
    """ReservationBackend over HTTP using httpx.AsyncClient."""

    def __init__(
        self,
        session: SessionContext,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        table: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        cfg = settings.backend
        self._session = session
        self._api_key = api_key if api_key is not None else cfg.api_key
        self._table = table or cfg.table
        base = (base_url if base_url is not None else cfg.url).rstrip("/")
        if not base:
            raise ValueError("BACKEND_URL is not configured")
        self._client = httpx.AsyncClient(
            base_url=f"{base}/rest/v1",
            timeout=timeout if timeout is not None else cfg.timeout_sec,
            transport=transport,
        )

    async def __aenter__(self) -> "RestBackend":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_all(self) -> list[Row]:
        response = await self._request(
            "GET", params={"select": "*", "order": "created_at.desc"}
        )
        rows = response.json()
        if not isinstance(rows, list):
            raise BackendError(f"Unexpected fetch response: {type(rows).__name__}")
        logger.debug("Fetched %d reservation rows", len(rows))
        return rows

    async def fetch_one(self, reservation_id: str) -> Optional[Row]:
        response = await self._request(
            "GET", params={"select": "*", "id": f"eq.{reservation_id}"}
        )
        rows = response.json()
        if not isinstance(rows, list):
            raise BackendError(f"Unexpected fetch response: {type(rows).__name__}")
        return rows[0] if rows else None

    async def update(self, reservation_id: str, fields: Row) -> None:
        await self._request(
            "PATCH",
            params={"id": f"eq.{reservation_id}"},
            json=fields,
            headers={"Prefer": "return=minimal"},
        )
        logger.debug("Patched reservation %s: %s", reservation_id, sorted(fields))

    async def create(self, fields: Row) -> Row:
        response = await self._request(
            "POST",
            json=fields,
            headers={"Prefer": "return=representation"},
            authenticated=False,
        )
        rows = response.json()
        if isinstance(rows, list) and rows:
            return rows[0]
        raise BackendError("Insert returned no row")

    async def _request(
        self,
        method: str,
        params: Optional[dict[str, str]] = None,
        json: Optional[Row] = None,
        headers: Optional[dict[str, str]] = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        request_headers = {"apikey": self._api_key, "Content-Type": "application/json"}
        if authenticated:
            token = self._session.access_token
            if not self._session.is_authenticated or not token:
                raise AuthenticationError("No active staff session")
            request_headers["Authorization"] = f"Bearer {token}"
        else:
            request_headers["Authorization"] = f"Bearer {self._api_key}"
        if headers:
            request_headers.update(headers)

        try:
            response = await self._client.request(
                method, f"/{self._table}", params=params, json=json, headers=request_headers
            )
        except httpx.HTTPError as exc:
            logger.warning("%s /%s failed: %s", method, self._table, exc)
            raise BackendError(f"{method} {self._table} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"{method} {self._table} refused with {response.status_code}"
            )
        if response.status_code >= 400:
            raise BackendError(
                f"{method} {self._table} returned {response.status_code}: {response.text[:200]}"
            )
        return response
