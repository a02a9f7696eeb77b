"""
HTTP transport for a CDS Hooks server
"""
from typing import Any, Dict, Optional

import httpx

from cds_hooks.core.config import get_settings
from cds_hooks.core.errors import CDSHooksClientError
from cds_hooks.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)


class CDSHooksHttpClient:
    """
    Thin JSON client over httpx.AsyncClient

    Every failure (connect error, timeout, non-2xx, non-JSON body, a path
    that is not a valid URL) is raised as CDSHooksClientError; the
    services decide how to degrade.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        bearer_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.cds_base_url).rstrip("/")
        self._bearer_token = bearer_token if bearer_token is not None else settings.cds_bearer_token
        self.timeout = timeout or settings.service_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._bearer_token:
            headers["Authorization"] = f"Bearer {self._bearer_token}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the pooled HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
                limits=httpx.Limits(
                    max_keepalive_connections=10,
                    max_connections=20,
                ),
            )
        return self._client

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        client = self._get_client()
        try:
            response = await client.request(method, path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            body: Any
            try:
                body = e.response.json()
            except ValueError:
                body = e.response.text
            raise CDSHooksClientError(
                f"{method} {path} returned {e.response.status_code}",
                status=e.response.status_code,
                details=body,
            ) from e
        except httpx.TimeoutException as e:
            raise CDSHooksClientError(f"{method} {path} timed out", details=str(e)) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise CDSHooksClientError(f"{method} {path!r} failed: {e}", details=type(e).__name__) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise CDSHooksClientError(
                f"{method} {path} returned a non-JSON body",
                status=response.status_code,
                details=response.text[:200],
            ) from e

    async def get_json(self, path: str) -> Any:
        return await self._request("GET", path)

    async def post_json(self, path: str, payload: Dict[str, Any]) -> Any:
        return await self._request("POST", path, payload)

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "CDSHooksHttpClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
