from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Mapping, Sequence

from shirtforge.cache import TTLCache
from shirtforge.config import settings
from shirtforge.printify_api import PrintifyApiClient
from shirtforge.services.catalog_search import normalize_variant

logger = logging.getLogger(__name__)

PRODUCT_CACHE_TTL_SECONDS = 600
SHORT_CACHE_TTL_SECONDS = 300
RATE_LIMIT_CACHE_TTL_SECONDS = 60
TOP_PRODUCTS_LIMIT = 5
LISTING_PAGE_SIZE = 50

NO_FEATURED_MESSAGE = "No featured products selected. Please configure featured products in the admin panel."


class RefreshThrottledError(RuntimeError):
    def __init__(self, *, retry_after: int) -> None:
        super().__init__(f"Please wait {retry_after} seconds before refreshing again.")
        self.retry_after = retry_after


def _display_image(product: Mapping[str, Any]) -> Any:
    images = product.get("images") or []
    for image in images:
        if image.get("is_default"):
            return image
    return images[0] if images else None


def _first_enabled_price(product: Mapping[str, Any]) -> Any:
    for variant in product.get("variants") or []:
        if variant.get("is_enabled"):
            return variant.get("price")
    return None


def summarize_product(product: Mapping[str, Any], *, include_variants: bool = True) -> dict[str, Any]:
    summary = {
        "id": product.get("id"),
        "title": product.get("title"),
        "description": product.get("description"),
        "created_at": product.get("created_at"),
        "image": _display_image(product),
        "price": _first_enabled_price(product),
    }
    if include_variants:
        summary["visible"] = product.get("visible")
        summary["variants"] = [
            {
                "id": variant.get("id"),
                "title": variant.get("title"),
                "price": variant.get("price"),
                "is_default": variant.get("is_default"),
            }
            for variant in product.get("variants") or []
            if variant.get("is_enabled")
        ]
    return summary


class StorefrontService:
    """Read side of the shop: listings, featured products and per-product lookups."""

    def __init__(
        self,
        *,
        client: PrintifyApiClient,
        featured_ids: Callable[[], Sequence[str]],
        shop_id: str | None = None,
        shop_name: str | None = None,
        cache: TTLCache | None = None,
        rate_limit_cache: TTLCache | None = None,
        refresh_interval_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._featured_ids = featured_ids
        self.shop_id = shop_id or settings.PRINTIFY_SHOP_ID
        self.shop_name = shop_name or settings.PRINTIFY_SHOP_NAME
        self._clock = clock
        if cache is None:
            cache = TTLCache(default_ttl_seconds=PRODUCT_CACHE_TTL_SECONDS, clock=clock)
        if rate_limit_cache is None:
            rate_limit_cache = TTLCache(default_ttl_seconds=RATE_LIMIT_CACHE_TTL_SECONDS, clock=clock)
        self.cache = cache
        self.rate_limit_cache = rate_limit_cache
        self.refresh_interval_seconds = (
            refresh_interval_seconds
            if refresh_interval_seconds is not None
            else settings.ALL_PRODUCTS_REFRESH_INTERVAL_SECONDS
        )

    @property
    def _all_products_key(self) -> str:
        return f"all-products-{self.shop_id}"

    @property
    def _featured_prefix(self) -> str:
        return f"featured-products-{self.shop_id}"

    async def list_shops(self) -> list[dict[str, Any]]:
        cached = self.cache.get("shops")
        if cached is not None:
            return cached
        shops = await self._client.list_shops()
        self.cache.set("shops", shops, ttl_seconds=SHORT_CACHE_TTL_SECONDS)
        return shops

    def first_shop(self) -> dict[str, Any]:
        return {"id": int(self.shop_id), "title": self.shop_name, "sales_channel": "custom_integration"}

    async def shop_top_products(self, shop_id: str) -> dict[str, Any]:
        key = f"top-products-{shop_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        products = await self._client.list_products(shop_id=shop_id, limit=LISTING_PAGE_SIZE)
        published = [summarize_product(p) for p in products if p.get("visible") is True][:TOP_PRODUCTS_LIMIT]
        result = {"data": published, "total": len(published), "shop_id": shop_id}
        self.cache.set(key, result, ttl_seconds=SHORT_CACHE_TTL_SECONDS)
        return result

    async def all_products(self, *, refresh: bool = False) -> dict[str, Any]:
        key = self._all_products_key
        if not refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        else:
            last_call = self.rate_limit_cache.get(key)
            if last_call is not None:
                elapsed = self._clock() - last_call
                if elapsed < self.refresh_interval_seconds:
                    wait = math.ceil(self.refresh_interval_seconds - elapsed)
                    stale = self.cache.get(key)
                    if stale is not None:
                        return {
                            **stale,
                            "message": f"Data refreshed recently. Next refresh available in {wait} seconds.",
                            "rateLimited": True,
                        }
                    raise RefreshThrottledError(retry_after=wait)
            self.cache.delete(key)

        self.rate_limit_cache.set(key, self._clock())
        products = await self._client.list_products(shop_id=self.shop_id, limit=LISTING_PAGE_SIZE)
        visible = [summarize_product(p, include_variants=False) for p in products if p.get("visible") is True]
        result = {
            "data": visible,
            "total": len(visible),
            "shop_id": self.shop_id,
            "shop_name": self.shop_name,
        }
        self.cache.set(key, result, ttl_seconds=PRODUCT_CACHE_TTL_SECONDS)
        logger.info("Fetched shop products", extra={"shop_id": self.shop_id, "count": len(visible)})
        return result

    async def featured_products(self) -> dict[str, Any]:
        featured_ids = [str(product_id) for product_id in self._featured_ids()]
        base = {"shop_id": self.shop_id, "shop_name": self.shop_name}
        if not featured_ids:
            return {**base, "data": [], "total": 0, "message": NO_FEATURED_MESSAGE}

        key = f"{self._featured_prefix}-{'-'.join(featured_ids)}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        products = await self._client.list_products(shop_id=self.shop_id, limit=LISTING_PAGE_SIZE)
        by_id = {str(product.get("id")): product for product in products}
        featured = [
            summarize_product(by_id[product_id])
            for product_id in featured_ids
            if product_id in by_id and by_id[product_id].get("visible") is True
        ]
        result = {
            **base,
            "data": featured,
            "total": len(featured),
            "featured_product_ids": featured_ids,
            "found_products": len(featured),
            "total_configured": len(featured_ids),
        }
        self.cache.set(key, result, ttl_seconds=SHORT_CACHE_TTL_SECONDS)
        return result

    async def product_details(self, product_id: str) -> dict[str, Any]:
        key = f"product_details_{product_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        details = await self._client.get_product(shop_id=self.shop_id, product_id=product_id)
        self.cache.set(key, details, ttl_seconds=SHORT_CACHE_TTL_SECONDS)
        return details

    async def product_variants(self, product_id: str) -> dict[str, Any]:
        key = f"product_variants_{product_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        details = await self._client.get_product(shop_id=self.shop_id, product_id=product_id)
        variants = [
            normalize_variant(raw).model_dump() for raw in details.get("variants") or [] if "id" in raw
        ]
        result = {"product_id": product_id, "variants": variants, "total": len(variants)}
        self.cache.set(key, result, ttl_seconds=SHORT_CACHE_TTL_SECONDS)
        return result

    def invalidate_product_listings(self) -> None:
        self.cache.delete(self._all_products_key)
        self.cache.delete_prefix(self._featured_prefix)
