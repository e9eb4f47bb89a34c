"""
Upstream clients.

``APIClient`` is the contract the ServiceManager depends on: a named client
that executes a generic ``APIRequest`` and returns a generic ``APIResponse``.
``HTTPClient`` implements it on top of httpx for any provider that speaks
plain HTTP; provider-specific parsing lives in the widgets.
"""

import time
from abc import ABC, abstractmethod

import httpx
from loguru import logger

from feedboard.config import APISourceConfig
from feedboard.services.errors import UpstreamError
from feedboard.services.types import APIRequest, APIResponse

USER_AGENT = "feedboard/0.1"


class APIClient(ABC):
    """Contract for one upstream integration."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def base_url(self) -> str:
        ...

    @abstractmethod
    async def request(self, req: APIRequest) -> APIResponse:
        """Execute ``req``. Transport failures raise ``UpstreamError``."""
        ...

    async def is_healthy(self) -> bool:
        try:
            resp = await self.request(APIRequest(path="/health", timeout=5.0))
        except UpstreamError:
            return False
        return resp.ok

    async def aclose(self) -> None:
        return None


class HTTPClient(APIClient):
    """
    httpx-backed client configured from an ``APISourceConfig``.

    Usage:
        client = HTTPClient("gitee", APISourceConfig(base_url="https://gitee.com/api/v5"))
        resp = await client.request(APIRequest(path="/repos/owner/name"))
    """

    def __init__(
        self,
        name: str,
        config: APISourceConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._name = name
        self._config = config
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def base_url(self) -> str:
        return self._config.base_url

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            headers = {"User-Agent": USER_AGENT, **self._config.headers}
            if self._config.token:
                headers["Authorization"] = f"token {self._config.token}"
            self._http_client = httpx.AsyncClient(
                base_url=self._config.base_url,
                headers=headers,
                timeout=httpx.Timeout(self._config.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    async def request(self, req: APIRequest) -> APIResponse:
        client = self._get_http_client()
        timeout = req.timeout or self._config.timeout

        start = time.perf_counter()
        try:
            response = await client.request(
                method=req.method,
                url=req.path,
                params=req.params or None,
                headers=req.headers or None,
                json=req.body,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise UpstreamError(
                f"Request to '{self._name}' timed out after {timeout}s",
                service_id=self._name,
            ) from e
        except httpx.RequestError as e:
            raise UpstreamError(str(e) or type(e).__name__, service_id=self._name) from e
        duration = time.perf_counter() - start

        logger.debug(
            f"{self._name} {req.method} {req.path} -> {response.status_code} "
            f"({duration * 1000:.0f}ms)"
        )
        return APIResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
            duration=duration,
        )

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
