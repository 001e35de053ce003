"""
HTTP client for the field-sales API.

Wraps ``httpx.AsyncClient`` and turns every failure into an ``ApiError`` with a
``kind`` the sync engine can act on:

- ``transient``: no response, timeout, 5xx, 408, 429 or 401 (expired session).
  Worth retrying later.
- ``validation``: 422. The payload itself is rejected; retrying cannot help.
- ``permanent``: any other 4xx, e.g. the 400 "already has an open visit"
  business-rule conflict, 403, 404 or 409.
"""

import enum
import logging
from typing import Any, Dict, Optional

import httpx

from fieldsales.offline.cache import SERVED_FROM_CACHE_HEADER

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"

TRANSIENT_STATUS_CODES = {401, 408, 429}


class ErrorKind(str, enum.Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    VALIDATION = "validation"
    # Raised locally for events that cannot be sent at all
    LOCAL = "local"


class ApiError(Exception):
    def __init__(self, status_code: Optional[int], message: str, kind: ErrorKind, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.kind = kind
        self.body = body

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.status_code}: {self.message}"


def classify_status(status_code: int) -> ErrorKind:
    if status_code >= 500 or status_code in TRANSIENT_STATUS_CODES:
        return ErrorKind.TRANSIENT
    if status_code == 422:
        return ErrorKind.VALIDATION
    return ErrorKind.PERMANENT


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase or f"HTTP {response.status_code}", None

    if isinstance(body, dict):
        detail = body.get("detail", body.get("error"))
        if isinstance(detail, str):
            return detail, body
        if isinstance(detail, list) and detail:
            # FastAPI validation errors
            first = detail[0]
            if isinstance(first, dict) and "msg" in first:
                return str(first["msg"]), body
        if detail is not None:
            return str(detail), body
    return f"HTTP {response.status_code}", body


class FieldSalesApiClient:
    """Typed calls for the endpoints the offline client replays and reads."""

    def __init__(self, client: httpx.AsyncClient, api_prefix: str = "/api/v1", token: Optional[str] = None):
        self.client = client
        self.api_prefix = api_prefix.rstrip("/")
        self.token = token

    @classmethod
    def from_settings(cls, settings, token: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )
        return cls(client, api_prefix=settings.api_prefix, token=token)

    def _headers(self, idempotency_key: Optional[str]) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if idempotency_key:
            headers[IDEMPOTENCY_HEADER] = idempotency_key
        return headers

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        idempotency_key: Optional[str] = None,
        fresh: bool = False,
    ) -> Any:
        """Send a request and return the decoded JSON body, or raise ApiError.

        With ``fresh`` a response replayed from the offline cache counts as a
        transient failure.
        """
        url = f"{self.api_prefix}{path}"
        try:
            response = await self.client.request(
                method, url, json=json, headers=self._headers(idempotency_key),
            )
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {url} timed out: {e}")
            raise ApiError(None, "Request timed out", ErrorKind.TRANSIENT) from e
        except httpx.HTTPError as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise ApiError(None, f"Network error: {e}", ErrorKind.TRANSIENT) from e

        if fresh and response.headers.get(SERVED_FROM_CACHE_HEADER) == "true":
            logger.info(f"{method} {url} answered from offline cache, ignoring")
            raise ApiError(None, "Server unreachable, cached response ignored", ErrorKind.TRANSIENT)

        if response.is_success:
            if not response.content:
                return None
            return response.json()

        message, body = _error_message(response)
        kind = classify_status(response.status_code)
        logger.info(f"{method} {url} -> {response.status_code} ({kind.value}): {message}")
        raise ApiError(response.status_code, message, kind, body)

    async def checkin(self, payload: Dict[str, Any], idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        return await self.request("POST", "/visits/checkin", payload, idempotency_key)

    async def checkout(self, payload: Dict[str, Any], idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        return await self.request("POST", "/visits/checkout", payload, idempotency_key)

    async def create_company(self, payload: Dict[str, Any], idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        return await self.request("POST", "/companies", payload, idempotency_key)

    async def create_sale(self, payload: Dict[str, Any], idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        return await self.request("POST", "/sales", payload, idempotency_key)

    async def get_active_visit(self) -> Optional[Dict[str, Any]]:
        body = await self.request("GET", "/visits/active", fresh=True)
        return (body or {}).get("visit")

    async def aclose(self) -> None:
        await self.client.aclose()
