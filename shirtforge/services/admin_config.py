from __future__ import annotations

import hmac
import json
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

import httpx

from shirtforge.cache import TTLCache
from shirtforge.schemas import AdminConfig

logger = logging.getLogger(__name__)

CONSUMER_CACHE_TTL_SECONDS = 300
PRIVATE_FIELDS = frozenset({"featuredProducts"})


class AdminAuthError(PermissionError):
    pass


def default_admin_config() -> dict[str, Any]:
    return AdminConfig().model_dump()


class AdminConfigStore:
    """The single global storefront configuration, backed by a JSON file.

    Updates are shallow merges with last-write-wins semantics. A failed save keeps
    the in-memory update and reports ``persisted=False``.
    """

    def __init__(self, *, path: Path, password: str) -> None:
        self.path = Path(path)
        self._password = password
        self._config: dict[str, Any] = default_admin_config()

    def load(self) -> dict[str, Any]:
        config = default_admin_config()
        try:
            if self.path.exists():
                saved = json.loads(self.path.read_text(encoding="utf-8"))
                if isinstance(saved, dict):
                    config.update(saved)
                else:
                    logger.error("Admin config file is not a JSON object", extra={"path": str(self.path)})
        except (OSError, ValueError):
            logger.exception("Error loading admin config from file", extra={"path": str(self.path)})
        self._config = config
        return self.get()

    def save(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._config, indent=2), encoding="utf-8")
        except (OSError, TypeError, ValueError):
            logger.exception("Error saving admin config to file", extra={"path": str(self.path)})
            return False
        return True

    def get(self) -> dict[str, Any]:
        return json.loads(json.dumps(self._config))

    def public_view(self) -> dict[str, Any]:
        return {key: value for key, value in self.get().items() if key not in PRIVATE_FIELDS}

    def featured_product_ids(self) -> list[str]:
        featured = self._config.get("featuredProducts") or []
        if not isinstance(featured, list):
            return []
        return [str(product_id) for product_id in featured]

    def check_password(self, password: str | None) -> bool:
        return hmac.compare_digest((password or "").encode("utf-8"), self._password.encode("utf-8"))

    def update(self, *, password: str | None, partial: Mapping[str, Any]) -> tuple[dict[str, Any], bool]:
        if not self.check_password(password):
            logger.warning("Rejected admin config update with invalid password")
            raise AdminAuthError("Invalid admin password")
        self._config = {**self._config, **dict(partial)}
        persisted = self.save()
        if not persisted:
            logger.warning("Admin config kept in memory only; file save failed")
        logger.info("Admin config updated", extra={"keys": sorted(partial)})
        return self.get(), persisted


def _status_code(exc: Exception) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status_code = getattr(exc, "status_code", None)
    return status_code if isinstance(status_code, int) else None


class AdminConfigClient:
    """Consumer-side view of the admin config with a short cache.

    On 429 (or any fetch failure) it serves the last cached value even if stale,
    else the built-in defaults.
    """

    def __init__(
        self,
        *,
        fetch: Callable[[], Awaitable[Mapping[str, Any]]],
        ttl_seconds: float = CONSUMER_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self._cache = TTLCache(default_ttl_seconds=ttl_seconds, clock=clock)

    async def get(self) -> dict[str, Any]:
        # read the stale copy first; get() evicts it once expired
        stale = self._cache.peek("config")
        cached = self._cache.get("config")
        if cached is not None:
            return dict(cached)
        try:
            fetched = await self._fetch()
        except Exception as exc:
            if _status_code(exc) == 429:
                logger.warning("Admin config fetch rate limited; using fallback")
            else:
                logger.warning("Admin config fetch failed; using fallback", extra={"error": str(exc)})
            return dict(stale) if stale is not None else default_admin_config()
        config = {**default_admin_config(), **dict(fetched)}
        self._cache.set("config", config)
        return dict(config)

    def invalidate(self) -> None:
        self._cache.clear()
