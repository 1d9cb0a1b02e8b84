from __future__ import annotations

import logging
from typing import Any

import httpx

from shirtforge.config import settings

logger = logging.getLogger(__name__)


class PrintifyApiError(RuntimeError):
    def __init__(
        self,
        *,
        message: str,
        status_code: int = 502,
        retry_after: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after
        self.payload = payload

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


def _retry_after_seconds(response: httpx.Response) -> int | None:
    raw = response.headers.get("retry-after")
    if not raw:
        return None
    try:
        return max(0, int(float(raw)))
    except ValueError:
        return None


class PrintifyApiClient:
    def __init__(
        self,
        *,
        token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token if token is not None else settings.PRINTIFY_API_TOKEN
        self._base_url = (base_url or settings.printify_base_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.PRINTIFY_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._token)

    def _headers(self) -> dict[str, str]:
        if not self._token:
            raise PrintifyApiError(message="Printify API token not configured", status_code=500)
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            "User-Agent": settings.PRINTIFY_USER_AGENT,
        }

    async def _send(
        self,
        *,
        method: str,
        path: str,
        payload: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = self._headers()
        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(
                    method.upper(),
                    url,
                    json=payload if method.upper() not in {"GET", "DELETE"} else None,
                    params=params,
                    headers=headers,
                )
        except httpx.RequestError as exc:
            raise PrintifyApiError(
                message=f"Network error while calling Printify: {exc}",
                status_code=500,
            ) from exc
        logger.debug(
            "Printify request completed",
            extra={"method": method.upper(), "path": path, "status_code": response.status_code},
        )
        return response

    async def forward(
        self,
        *,
        method: str,
        path: str,
        payload: Any = None,
        params: dict[str, Any] | None = None,
    ) -> tuple[int, Any]:
        """Pass-through call: upstream status and JSON body are returned as-is."""
        response = await self._send(method=method, path=path, payload=payload, params=params)
        if not response.content:
            return response.status_code, {}
        try:
            return response.status_code, response.json()
        except ValueError:
            return response.status_code, {"detail": response.text}

    async def request_json(
        self,
        *,
        method: str,
        path: str,
        payload: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        response = await self._send(method=method, path=path, payload=payload, params=params)
        if response.status_code >= 400:
            body: Any
            try:
                body = response.json()
            except ValueError:
                body = response.text
            if response.status_code == 429:
                message = "Printify API rate limited, try again later"
            else:
                message = f"Printify API call failed ({response.status_code}): {response.text}"
            raise PrintifyApiError(
                message=message,
                status_code=response.status_code,
                retry_after=_retry_after_seconds(response),
                payload=body,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise PrintifyApiError(message="Printify API returned invalid JSON", status_code=500) from exc

    async def _get_object(self, path: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        body = await self.request_json(method="GET", path=path, params=params)
        if not isinstance(body, dict):
            raise PrintifyApiError(message="Printify API response must be a JSON object")
        return body

    async def _post_object(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        body = await self.request_json(method="POST", path=path, payload=payload)
        if not isinstance(body, dict):
            raise PrintifyApiError(message="Printify API response must be a JSON object")
        return body

    async def list_shops(self) -> list[dict[str, Any]]:
        body = await self.request_json(method="GET", path="/shops.json")
        return body if isinstance(body, list) else []

    async def list_blueprints(self) -> list[dict[str, Any]]:
        body = await self.request_json(method="GET", path="/catalog/blueprints.json")
        return body if isinstance(body, list) else []

    async def get_blueprint(self, *, blueprint_id: int) -> dict[str, Any]:
        return await self._get_object(f"/catalog/blueprints/{blueprint_id}.json")

    async def list_print_providers(self, *, blueprint_id: int) -> list[dict[str, Any]]:
        body = await self.request_json(
            method="GET",
            path=f"/catalog/blueprints/{blueprint_id}/print_providers.json",
        )
        if isinstance(body, list):
            return body
        if isinstance(body, dict) and isinstance(body.get("print_providers"), list):
            return body["print_providers"]
        return []

    async def list_variants(self, *, blueprint_id: int, provider_id: int) -> list[dict[str, Any]]:
        body = await self.request_json(
            method="GET",
            path=f"/catalog/blueprints/{blueprint_id}/print_providers/{provider_id}/variants.json",
        )
        if isinstance(body, list):
            return body
        if isinstance(body, dict) and isinstance(body.get("variants"), list):
            return body["variants"]
        return []

    async def upload_image_by_url(self, *, file_name: str, url: str) -> dict[str, Any]:
        return await self._post_object("/uploads/images.json", {"file_name": file_name, "url": url})

    async def upload_image_contents(self, *, file_name: str, contents: str) -> dict[str, Any]:
        return await self._post_object("/uploads/images.json", {"file_name": file_name, "contents": contents})

    async def get_upload(self, *, image_id: str) -> dict[str, Any]:
        return await self._get_object(f"/uploads/{image_id}.json")

    async def list_products(self, *, shop_id: str, limit: int = 100) -> list[dict[str, Any]]:
        body = await self.request_json(
            method="GET",
            path=f"/shops/{shop_id}/products.json",
            params={"limit": limit},
        )
        if isinstance(body, dict) and isinstance(body.get("data"), list):
            return body["data"]
        return body if isinstance(body, list) else []

    async def get_product(self, *, shop_id: str, product_id: str) -> dict[str, Any]:
        return await self._get_object(f"/shops/{shop_id}/products/{product_id}.json")

    async def create_product(self, *, shop_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._post_object(f"/shops/{shop_id}/products.json", payload)

    async def publish_product(self, *, shop_id: str, product_id: str) -> dict[str, Any]:
        return await self._post_object(
            f"/shops/{shop_id}/products/{product_id}/publish.json",
            {
                "title": True,
                "description": True,
                "images": True,
                "variants": True,
                "tags": True,
            },
        )

    async def delete_product(self, *, shop_id: str, product_id: str) -> None:
        await self.request_json(method="DELETE", path=f"/shops/{shop_id}/products/{product_id}.json")

    async def create_order(self, *, shop_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._post_object(f"/shops/{shop_id}/orders.json", payload)
