from __future__ import annotations

import logging
from typing import Any, Mapping
from urllib.parse import urlencode

from shirtforge.cache import TTLCache
from shirtforge.printify_api import PrintifyApiClient, PrintifyApiError

logger = logging.getLogger(__name__)

CATALOG_TTL_SECONDS = 1800
DYNAMIC_TTL_SECONDS = 600


def cache_key(method: str, path: str, query: Mapping[str, Any] | None = None) -> str:
    key = f"{method.upper()}:/{path.lstrip('/')}"
    if query:
        key = f"{key}?{urlencode(sorted(query.items()))}"
    return key


def ttl_for_path(path: str) -> int:
    return CATALOG_TTL_SECONDS if "catalog" in path else DYNAMIC_TTL_SECONDS


class GatewayService:
    """Authenticated pass-through to the Printify REST API with a GET response cache."""

    def __init__(self, *, client: PrintifyApiClient, cache: TTLCache | None = None) -> None:
        self._client = client
        self.cache = cache if cache is not None else TTLCache(default_ttl_seconds=DYNAMIC_TTL_SECONDS)

    async def handle(
        self,
        *,
        method: str,
        path: str,
        payload: Any = None,
        query: Mapping[str, Any] | None = None,
    ) -> tuple[int, Any]:
        method = method.upper()
        params = dict(query) if query else None
        key = cache_key(method, path, query)
        if method == "GET":
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Gateway cache hit", extra={"cache_key": key})
                return 200, cached

        try:
            status_code, body = await self._client.forward(
                method=method,
                path=path,
                payload=payload,
                params=params,
            )
        except PrintifyApiError:
            raise
        except Exception as exc:
            logger.exception("Gateway request failed", extra={"method": method, "path": path})
            raise PrintifyApiError(message=f"Printify proxy error: {exc}", status_code=500) from exc

        if method == "GET" and 200 <= status_code < 300:
            self.cache.set(key, body, ttl_seconds=ttl_for_path(path))
        return status_code, body
