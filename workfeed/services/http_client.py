"""Bearer-token JSON client shared by every provider adapter.

Manages one httpx client for connection reuse and converts transport and
status failures into the workfeed error taxonomy at a single boundary.
"""

import logging
from typing import Any

import httpx

from workfeed import __version__
from workfeed.errors import (
    AccessDeniedError,
    InvalidResponseError,
    UnauthorizedError,
    UpstreamError,
    UpstreamStatusError,
)

logger = logging.getLogger(__name__)

USER_AGENT = f"WorkWidget/{__version__}"


class HttpClient:
    """Thin async wrapper around ``httpx.AsyncClient``."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

    @property
    def raw(self) -> httpx.AsyncClient:
        """The underlying client, for token-endpoint calls that need full control."""
        return self._http

    async def close(self) -> None:
        """Close the shared HTTP client. Call on app shutdown."""
        await self._http.aclose()

    async def get_json(
        self,
        url: str,
        bearer_token: str,
        *,
        params: dict[str, Any] | list[tuple[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        return await self._request("GET", url, bearer_token, params=params, headers=headers)

    async def post_json(
        self,
        url: str,
        bearer_token: str,
        body: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
    ) -> Any:
        return await self._request("POST", url, bearer_token, json=body, headers=headers)

    async def _request(
        self,
        method: str,
        url: str,
        bearer_token: str,
        *,
        params: Any = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        request_headers = {"Authorization": f"Bearer {bearer_token}"}
        if headers:
            request_headers.update(headers)

        try:
            response = await self._http.request(
                method, url, params=params, json=json, headers=request_headers
            )
        except httpx.TimeoutException as e:
            raise UpstreamError(f"Timeout calling {url}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Network error: {e}") from e

        return parse_response(response)


def parse_response(response: httpx.Response) -> Any:
    """Decode a JSON response or raise the matching upstream error."""
    if response.status_code == 401:
        raise UnauthorizedError()
    if response.status_code == 403:
        raise AccessDeniedError(f"Access denied by {response.request.url.host}")
    if not response.is_success:
        logger.debug(f"{response.request.method} {response.request.url} -> {response.status_code}")
        raise UpstreamStatusError(response.status_code, response.text)
    try:
        return response.json()
    except ValueError as e:
        raise InvalidResponseError(f"Invalid JSON from {response.request.url}") from e
