"""openHAB REST client.

Speaks the openHAB REST protocol (``/rest/items``, ``/rest/items/{name}``)
over a shared httpx.AsyncClient. Transport and HTTP failures are mapped
onto the OpenHABConnectionError family; nothing is retried here.
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError

from twinsync.exceptions import (
    BadResponseError,
    OpenHABConnectionError,
    RequestTimeoutError,
    UnauthorizedError,
    UnreachableError,
)
from twinsync.openhab.models import (
    ConnectionTestResult,
    Credential,
    ExternalItem,
    NoCredential,
)
from twinsync.openhab.security import validate_item_name
from twinsync.settings import get_settings

logger = logging.getLogger(__name__)

ITEMS_PATH = "/rest/items"


class OpenHABClient:
    """Client for one openHAB server.

    Usage:
        async with OpenHABClient(base_url, credential) as client:
            items = await client.list_items()
    """

    def __init__(
        self,
        base_url: str,
        credential: Credential | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.credential = credential or NoCredential()
        self.timeout = timeout if timeout is not None else get_settings().openhab_timeout_seconds
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "OpenHABClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        auth = self.credential.auth_header()
        if auth:
            headers["Authorization"] = auth
        return headers

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared httpx.AsyncClient (connection pooling)."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=httpx.Limits(
                    max_keepalive_connections=20,
                    max_connections=100,
                ),
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client and release connections."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        content: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send one request and map failures to OpenHABConnectionError.

        Returns:
            The 2xx response.
        """
        url = f"{self.base_url}{path}"
        request_headers = self._headers()
        if headers:
            request_headers.update(headers)

        client = self._get_http_client()
        try:
            response = await client.request(method, url, content=content, headers=request_headers)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(
                f"Request to {self.base_url} timed out after {self.timeout:g}s",
                operation=operation,
            ) from e
        except httpx.ConnectError as e:
            raise UnreachableError(
                f"Cannot connect to openHAB at {self.base_url}",
                operation=operation,
            ) from e
        except httpx.HTTPError as e:
            raise UnreachableError(
                f"Request to {self.base_url} failed: {type(e).__name__}",
                operation=operation,
            ) from e

        if response.status_code in (401, 403):
            raise UnauthorizedError(
                f"openHAB rejected the credentials (HTTP {response.status_code})",
                operation=operation,
                status_code=response.status_code,
            )
        if not response.is_success:
            raise BadResponseError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                operation=operation,
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise BadResponseError(
                "openHAB returned a body that is not valid JSON",
                operation=operation,
                status_code=response.status_code,
            ) from e

    async def _fetch_items(self, operation: str) -> list[ExternalItem]:
        response = await self._request("GET", ITEMS_PATH, operation)
        payload = self._json(response, operation)
        if not isinstance(payload, list):
            raise BadResponseError(
                "Expected a list of items",
                operation=operation,
                status_code=response.status_code,
            )

        items: list[ExternalItem] = []
        for raw in payload:
            try:
                items.append(ExternalItem.model_validate(raw))
            except PydanticValidationError:
                logger.debug("Skipping malformed openHAB item: %r", raw)
        return items

    async def test_connection(self) -> ConnectionTestResult:
        """Check that the server answers and the credential is accepted.

        Never raises; failures are reported on the result.
        """
        try:
            items = await self._fetch_items("test_connection")
        except OpenHABConnectionError as e:
            logger.info("openHAB connection test against %s failed: %s", self.base_url, e)
            return ConnectionTestResult(
                success=False,
                message=f"Connection failed: {e}",
                error_kind=e.kind,
            )
        return ConnectionTestResult(
            success=True,
            message=f"Successfully connected! Found {len(items)} items.",
            item_count=len(items),
        )

    async def list_items(self, sensor_only: bool = True) -> list[ExternalItem]:
        """List items on the server.

        Args:
            sensor_only: Keep only numeric items (``Number`` and
                ``Number:<Dimension>`` types).
        """
        items = await self._fetch_items("list_items")
        if sensor_only:
            items = [item for item in items if item.is_numeric]
        return items

    async def read_item_state(self, item_name: str) -> str:
        """Return the current raw state of one item."""
        validate_item_name(item_name)
        response = await self._request("GET", f"{ITEMS_PATH}/{quote(item_name, safe='')}", "read_item_state")
        payload = self._json(response, "read_item_state")
        if not isinstance(payload, dict) or not isinstance(payload.get("state"), str):
            raise BadResponseError(
                f"Item {item_name} has no state in the response",
                operation="read_item_state",
                status_code=response.status_code,
            )
        return payload["state"]

    async def send_command(self, item_name: str, command: str) -> None:
        """Send a command to an item (``POST /rest/items/{name}``)."""
        validate_item_name(item_name)
        await self._request(
            "POST",
            f"{ITEMS_PATH}/{quote(item_name, safe='')}",
            "send_command",
            content=command,
            headers={"Content-Type": "text/plain"},
        )
        logger.info("Sent command %r to openHAB item %s", command, item_name)


__all__ = ["ITEMS_PATH", "OpenHABClient"]
