"""
Generic REST provider adapter.

Maps the adapter contract onto a JSON collection endpoint:

    create  POST   {base_url}{collection}          -> {"id": ...}
    read    GET    {base_url}{collection}/{id}
    update  PUT    {base_url}{collection}/{id}
    delete  DELETE {base_url}{collection}/{id}

HTTP 408/429/5xx and network errors are transient; other 4xx are permanent;
404 on read/update/delete is ResourceNotFound.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from landform.core.errors import (
    PermanentProviderError,
    ProviderError,
    ResourceNotFound,
    TransientProviderError,
)
from landform.providers.registry import register_provider

logger = structlog.get_logger()

DEFAULT_USER_AGENT = "landform-provider-http/0.1.0"


def is_retryable_status(status_code: int) -> bool:
    """Determine if HTTP status code is retryable."""
    return status_code in (408, 429, 500, 502, 503, 504)


class HttpProvider:
    name = "http"

    def __init__(
        self,
        kind: str,
        base_url: str,
        *,
        collection: str | None = None,
        token: str | None = None,
        id_field: str = "id",
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.kind = kind
        self._base_url = base_url.rstrip("/")
        self._collection = "/" + (collection or f"{kind}s").strip("/")
        self._token = token
        self._id_field = id_field
        self._timeout = timeout
        self._user_agent = user_agent
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": self._user_agent}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, headers=self._headers())
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        provider_id: str | None = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = await self._get_client().request(method, url, json=json, headers=headers)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            logger.warning("http_network_error", method=method, url=url, error=str(exc))
            raise TransientProviderError(f"{method} {url}: {exc}") from exc

        if response.status_code == 404 and provider_id is not None:
            raise ResourceNotFound(provider_id)
        if is_retryable_status(response.status_code):
            logger.warning(
                "http_retryable_error",
                status=response.status_code,
                method=method,
                url=url,
            )
            raise TransientProviderError(
                f"HTTP {response.status_code}: {response.text}",
                {"status": response.status_code},
            )
        if response.is_error:
            logger.error(
                "http_permanent_error",
                status=response.status_code,
                method=method,
                url=url,
            )
            raise PermanentProviderError(
                f"HTTP {response.status_code}: {response.text}",
                {"status": response.status_code},
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise PermanentProviderError(f"{method} {url}: invalid JSON response") from exc

    async def create(
        self,
        attributes: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> str:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        body = await self._request("POST", self._collection, json=attributes, headers=headers)
        provider_id = body.get(self._id_field)
        if provider_id is None:
            raise ProviderError(
                f"Create response for {self.kind} has no '{self._id_field}' field",
                details={"kind": self.kind},
            )
        return str(provider_id)

    async def read(self, provider_id: str) -> dict[str, Any]:
        return await self._request(
            "GET", f"{self._collection}/{provider_id}", provider_id=provider_id
        )

    async def update(self, provider_id: str, attributes: dict[str, Any]) -> None:
        await self._request(
            "PUT", f"{self._collection}/{provider_id}", provider_id=provider_id, json=attributes
        )

    async def delete(self, provider_id: str) -> None:
        await self._request(
            "DELETE", f"{self._collection}/{provider_id}", provider_id=provider_id
        )


def _factory(**kwargs: Any) -> HttpProvider:
    return HttpProvider(**kwargs)


register_provider(
    HttpProvider.name,
    _factory,
    description="Generic REST collection adapter (httpx)",
)
