"""
HTTP transport for the remote job service
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from pulsejobs.core.config import settings
from pulsejobs.core.exceptions import NetworkError

logger = logging.getLogger(__name__)


class HTTPClientConfig:
    """Configuration for the job service HTTP client"""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        user_agent: str = None,
        headers: Dict[str, str] = None,
        verify_ssl: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or settings.JOBS_API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT
        self.user_agent = user_agent or settings.USER_AGENT
        self.headers = headers or {}
        self.verify_ssl = verify_ssl
        # Tests plug an httpx.MockTransport in here
        self.transport = transport


@dataclass
class HTTPResponse:
    """Decoded response from the job service"""
    status_code: int
    content: Any
    url: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return 200 <= self.status_code < 300

    def error_message(self, default: str) -> str:
        """Extract the `error.message` the service puts in failure bodies"""
        if isinstance(self.content, dict):
            error = self.content.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str) and error:
                return error
            if self.content.get("message"):
                return str(self.content["message"])
        return default


class JobServiceHTTPClient:
    """Thin async wrapper around httpx that never raises on HTTP status codes.

    Transport failures (DNS, refused connections, timeouts) are converted to
    NetworkError; status interpretation is left to the caller.
    """

    def __init__(self, config: HTTPClientConfig = None):
        self.config = config or HTTPClientConfig()
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {
                "User-Agent": self.config.user_agent,
                "Accept": "application/json",
                "Content-Type": "application/json",
                **self.config.headers
            }
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                headers=headers,
                verify=self.config.verify_ssl,
                transport=self.config.transport
            )
        return self._client

    async def aclose(self):
        """Close the underlying connection pool"""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        path: str,
        json: Dict[str, Any] = None,
        headers: Dict[str, str] = None
    ) -> HTTPResponse:
        """Send a request and decode the body"""

        client = self._ensure_client()
        logger.debug(f"{method} {path}")

        try:
            response = await client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout on {method} {path}: {e}")
            raise NetworkError(f"Request timed out: {method} {path}") from e
        except httpx.TransportError as e:
            logger.warning(f"Transport error on {method} {path}: {e}")
            raise NetworkError(f"Network error: {e}") from e

        return self._process_response(response)

    async def get(self, path: str, headers: Dict[str, str] = None) -> HTTPResponse:
        return await self.request("GET", path, headers=headers)

    async def post(self, path: str, json: Dict[str, Any] = None, headers: Dict[str, str] = None) -> HTTPResponse:
        return await self.request("POST", path, json=json, headers=headers)

    def _process_response(self, response: httpx.Response) -> HTTPResponse:
        content_type = response.headers.get("content-type", "").lower()

        if "application/json" in content_type:
            try:
                content = response.json()
            except ValueError:
                logger.warning(f"Malformed JSON body from {response.url}")
                content = response.text
        else:
            content = response.text

        return HTTPResponse(
            status_code=response.status_code,
            content=content,
            url=str(response.url),
            headers=dict(response.headers)
        )
