"""
HackTheBox API client.

Thin authenticated wrapper around ``httpx.AsyncClient`` used by the tools
to reach the HTB labs API.
"""

import logging
from typing import Any, Dict, Optional

import httpx


logger = logging.getLogger(__name__)

USER_AGENT = "htb-mcp-server/1.0"


class HTBError(Exception):
    """Base error for HTB API failures."""

    retryable = False


class UnauthorizedError(HTBError):
    """The HTB token was rejected."""


class BackendTimeoutError(HTBError):
    """The HTB API did not answer within the configured timeout."""

    retryable = True


class BackendUnavailableError(HTBError):
    """Transport failure or 5xx answer from the HTB API."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class HTBClient:
    """
    Authenticated client for the HTB API.

    Usage::

        async with HTBClient(token, base_url) as client:
            info = await client.get_json("/user/info", "info")
    """

    def __init__(
        self,
        token: str,
        base_url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token = token
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=False,
        )

    @classmethod
    def from_config(cls, config: Any) -> "HTBClient":
        return cls(
            token=config.htb_token,
            base_url=config.htb_base_url,
            timeout=config.request_timeout,
        )

    async def __aenter__(self) -> "HTBClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, method: str) -> Dict[str, str]:
        headers = {
            "User-Agent": USER_AGENT,
            "Authorization": f"Bearer {self._token}",
        }
        if method == "POST":
            headers["Content-Type"] = "application/json"
            headers["Accept"] = "application/json, text/plain, */*"
        return headers

    async def request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Make an authenticated request to the HTB API.

        Raises:
            UnauthorizedError: on 401 or a redirect to the login page.
            BackendTimeoutError: when the configured timeout expires.
            BackendUnavailableError: on transport failures and 5xx answers.
        """
        method = method.upper()
        url = self.base_url + endpoint
        logger.debug(f"HTB {method} {endpoint}")

        try:
            response = await self._client.request(
                method,
                url,
                json=body,
                params=params,
                headers=self._headers(method),
            )
        except httpx.TimeoutException as e:
            raise BackendTimeoutError(
                f"request to {endpoint} timed out after {self.timeout}s"
            ) from e
        except httpx.HTTPError as e:
            raise BackendUnavailableError(f"failed to execute request: {e}") from e

        if response.status_code == 302 and response.headers.get("Location"):
            raise UnauthorizedError("HTB token appears invalid or expired")
        if response.status_code == 401:
            raise UnauthorizedError("unauthorized: HTB token is invalid")
        if response.status_code >= 500:
            raise BackendUnavailableError(
                f"HTB API returned status {response.status_code}",
                status_code=response.status_code,
            )
        return response

    def parse_response(self, response: httpx.Response, field: str = "") -> Any:
        """Decode a JSON object body and optionally extract one field."""
        try:
            result = response.json()
        except ValueError as e:
            raise HTBError(f"failed to parse JSON response: {e}") from e

        if not field:
            return result
        if not isinstance(result, dict):
            raise HTBError("failed to parse JSON response: expected an object")
        return result.get(field)

    async def get_json(
        self,
        endpoint: str,
        field: str = "",
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        response = await self.request("GET", endpoint, params=params)
        return self.parse_response(response, field)

    async def post_json(self, endpoint: str, body: Any = None, field: str = "") -> Any:
        response = await self.request("POST", endpoint, body=body)
        return self.parse_response(response, field)

    async def health_check(self) -> None:
        """
        Verify the API is reachable and the token is accepted.

        Raises:
            HTBError: if the check fails for any reason.
        """
        try:
            response = await self.request("GET", "/user/info")
        except HTBError as e:
            raise HTBError(f"HTB API health check failed: {e}") from e

        if response.status_code != 200:
            raise HTBError(
                f"HTB API health check failed with status: {response.status_code}"
            )
