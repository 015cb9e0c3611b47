"""
Bridge discovery client.

Asks a remote HTTPS endpoint for candidate bridges of one pluggable
transport type:

    POST <url>  {"transport": "obfs4"}
    200         {"bridges": ["1.2.3.4:443 <fingerprint> obfs4", ...]}

Network, HTTP and JSON failures are returned as an error inside the
DiscoveryResponse instead of being raised: discovery is best-effort.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from .bridges import Bridge
from .config import BridgeConfig
from .enums import DiscoveryErrorCode
from .exceptions import ConfigError, DiscoveryError


@dataclass
class DiscoveryFailure:
    """Error information from a discovery request."""

    code: DiscoveryErrorCode
    message: str
    http_status_code: Optional[int] = None


@dataclass
class DiscoveryResponse:
    """Result of one discovery request."""

    bridges: list[Bridge] = field(default_factory=list)
    rejected_lines: list[str] = field(default_factory=list)
    http_status_code: int = 0
    error: Optional[DiscoveryFailure] = None
    response_time_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        """
        Raises:
            DiscoveryError: If the request failed
        """
        if self.error is not None:
            raise DiscoveryError(
                code=self.error.code.value,
                message=self.error.message,
                details={"http_status_code": self.error.http_status_code},
            )


class DiscoveryClient:
    """
    Async discovery client with TLS enforcement.

    Usage:
        async with DiscoveryClient(config) as client:
            response = await client.fetch_bridges("obfs4")
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            config: Endpoint URL, timeout and user agent
            transport: Optional httpx transport (used to stub the endpoint)
        """
        self._config = config or BridgeConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "DiscoveryClient":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def endpoint(self) -> str:
        return self._config.discovery_url

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=True,
                timeout=httpx.Timeout(self._config.http_timeout_seconds),
                follow_redirects=True,
                headers={"User-Agent": self._config.user_agent},
                transport=self._transport,
            )
        return self._client

    def _validate_endpoint_url(self, endpoint: str) -> None:
        """
        Raises:
            DiscoveryError: If the endpoint does not use HTTPS
        """
        parsed = urlparse(endpoint)
        if parsed.scheme.lower() != "https":
            raise DiscoveryError(
                code=DiscoveryErrorCode.TLS_ERROR.value,
                message=f"Discovery endpoint must use HTTPS: {endpoint}",
                details={"endpoint": endpoint, "scheme": parsed.scheme},
            )

    async def fetch_bridges(self, transport: Optional[str] = None) -> DiscoveryResponse:
        """
        Request candidate bridges for one transport type.

        Args:
            transport: Pluggable transport name; defaults to the configured one

        Returns:
            DiscoveryResponse with parsed bridges, or an error
        """
        start_time = time.perf_counter()
        transport = transport or self._config.transport

        try:
            self._validate_endpoint_url(self.endpoint)
        except DiscoveryError as e:
            return self._failure(DiscoveryErrorCode.TLS_ERROR, e.message, start_time)

        client = self._ensure_client()

        try:
            response = await client.post(
                self.endpoint,
                json={"transport": transport},
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException:
            return self._failure(
                DiscoveryErrorCode.TIMEOUT,
                f"Discovery request timed out after {self._config.http_timeout_seconds}s",
                start_time,
            )
        except httpx.ConnectError as e:
            error_msg = str(e)
            if "ssl" in error_msg.lower() or "certificate" in error_msg.lower():
                return self._failure(
                    DiscoveryErrorCode.TLS_ERROR,
                    f"TLS connection error: {error_msg}",
                    start_time,
                )
            return self._failure(
                DiscoveryErrorCode.NETWORK_ERROR,
                f"Connection error: {error_msg}",
                start_time,
            )
        except httpx.HTTPError as e:
            return self._failure(
                DiscoveryErrorCode.NETWORK_ERROR,
                f"Discovery request failed: {e}",
                start_time,
            )

        if not 200 <= response.status_code < 300:
            return self._failure(
                DiscoveryErrorCode.HTTP_ERROR,
                f"Discovery endpoint returned error status: {response.status_code}",
                start_time,
                http_status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            return self._failure(
                DiscoveryErrorCode.PARSE_ERROR,
                f"Failed to parse discovery response: {e}",
                start_time,
                http_status_code=response.status_code,
            )

        result = self.parse_payload(payload)
        result.http_status_code = response.status_code
        result.response_time_ms = self._elapsed_ms(start_time)
        return result

    @staticmethod
    def parse_payload(payload: Any) -> DiscoveryResponse:
        """Decode the ``bridges`` array, collecting lines that fail to parse."""
        if not isinstance(payload, dict) or not isinstance(payload.get("bridges", []), list):
            return DiscoveryResponse(
                error=DiscoveryFailure(
                    code=DiscoveryErrorCode.PARSE_ERROR,
                    message="Discovery response has no bridges array",
                ),
            )

        bridges = []
        rejected = []
        for item in payload.get("bridges", []):
            if not isinstance(item, str):
                continue
            try:
                bridges.append(Bridge.parse(item))
            except ConfigError:
                rejected.append(item)

        return DiscoveryResponse(bridges=bridges, rejected_lines=rejected)

    def _failure(
        self,
        code: DiscoveryErrorCode,
        message: str,
        start_time: float,
        http_status_code: Optional[int] = None,
    ) -> DiscoveryResponse:
        return DiscoveryResponse(
            http_status_code=http_status_code or 0,
            error=DiscoveryFailure(
                code=code,
                message=message,
                http_status_code=http_status_code,
            ),
            response_time_ms=self._elapsed_ms(start_time),
        )

    def _elapsed_ms(self, start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
