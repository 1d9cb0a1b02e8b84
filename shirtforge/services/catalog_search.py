from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from shirtforge.cache import TTLCache
from shirtforge.printify_api import PrintifyApiClient
from shirtforge.schemas import Variant, VariantOptions

logger = logging.getLogger(__name__)

CATALOG_CACHE_TTL_SECONDS = 3600
MIN_QUERY_LENGTH = 2
DEFAULT_RESULT_LIMIT = 20

BLUEPRINT_SEARCH_FIELDS = ("title", "brand", "model")
PROVIDER_SEARCH_FIELDS = ("title", "location")

EXACT_MATCH_SCORE = 100
PREFIX_MATCH_SCORE = 50
SUBSTRING_MATCH_SCORE = 10


def _field_text(item: Mapping[str, Any], field: str) -> str:
    value = item.get(field)
    if value is None:
        return ""
    if isinstance(value, Mapping):
        # provider locations arrive as {"address1": ..., "city": ..., "country": ...}
        return " ".join(str(part) for part in value.values() if part)
    return str(value)


def relevance_score(item: Mapping[str, Any], query: str, fields: Sequence[str]) -> int:
    needle = query.lower()
    score = 0
    for field in fields:
        value = _field_text(item, field).lower()
        if not value:
            continue
        if value == needle:
            score += EXACT_MATCH_SCORE
        elif value.startswith(needle):
            score += PREFIX_MATCH_SCORE
        elif needle in value:
            score += SUBSTRING_MATCH_SCORE
    return score


def fuzzy_search(
    items: Iterable[Mapping[str, Any]],
    query: str,
    fields: Sequence[str],
    *,
    limit: int = DEFAULT_RESULT_LIMIT,
) -> list[Mapping[str, Any]]:
    """Filter by case-insensitive substring on any field, rank by summed relevance.

    Python's sort is stable, so items with equal scores keep their input order.
    """
    needle = query.strip().lower()
    if not needle:
        return list(items)[:limit]
    matches = [
        item for item in items if any(needle in _field_text(item, field).lower() for field in fields)
    ]
    ranked = sorted(matches, key=lambda item: relevance_score(item, needle, fields), reverse=True)
    return ranked[:limit]


def _option_value(options: Any, name: str) -> str | None:
    if isinstance(options, Mapping):
        for key, value in options.items():
            if str(key).lower() == name and value is not None:
                return str(value)
        return None
    if isinstance(options, list):
        for option in options:
            if isinstance(option, Mapping) and str(option.get("name", "")).lower() == name:
                value = option.get("value")
                return str(value) if value is not None else None
    return None


def normalize_variant(raw: Mapping[str, Any]) -> Variant:
    options = raw.get("options")
    return Variant(
        id=int(raw["id"]),
        title=str(raw.get("title") or ""),
        options=VariantOptions(color=_option_value(options, "color"), size=_option_value(options, "size")),
        cost=int(raw.get("cost") or 0),
        price=int(raw.get("price") or 0),
        is_enabled=raw.get("is_enabled") is not False,
        is_default=bool(raw.get("is_default", False)),
        is_available=raw.get("is_available") is not False,
    )


class CatalogService:
    def __init__(self, *, client: PrintifyApiClient, cache: TTLCache | None = None) -> None:
        self._client = client
        self.cache = cache if cache is not None else TTLCache(default_ttl_seconds=CATALOG_CACHE_TTL_SECONDS)

    async def _blueprints(self) -> list[dict[str, Any]]:
        cached = self.cache.get("blueprints")
        if cached is not None:
            return cached
        blueprints = await self._client.list_blueprints()
        self.cache.set("blueprints", blueprints)
        logger.info("Cached Printify blueprints", extra={"count": len(blueprints)})
        return blueprints

    async def _providers(self, blueprint_id: int) -> list[dict[str, Any]]:
        key = f"providers:{blueprint_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        providers = await self._client.list_print_providers(blueprint_id=blueprint_id)
        self.cache.set(key, providers)
        return providers

    async def search_blueprints(self, query: str) -> list[dict[str, Any]]:
        if len(query.strip()) < MIN_QUERY_LENGTH:
            return []
        blueprints = await self._blueprints()
        results = fuzzy_search(blueprints, query, BLUEPRINT_SEARCH_FIELDS)
        return [
            {
                "id": item.get("id"),
                "title": item.get("title"),
                "brand": item.get("brand"),
                "model": item.get("model"),
                "description": item.get("description"),
            }
            for item in results
        ]

    async def search_providers(self, blueprint_id: int, query: str = "") -> list[dict[str, Any]]:
        providers = await self._providers(blueprint_id)
        if len(query.strip()) >= MIN_QUERY_LENGTH:
            results = fuzzy_search(providers, query, PROVIDER_SEARCH_FIELDS)
        else:
            results = providers[:DEFAULT_RESULT_LIMIT]
        return [
            {
                "id": item.get("id"),
                "title": item.get("title"),
                "location": item.get("location"),
            }
            for item in results
        ]

    async def get_variants(self, blueprint_id: int, provider_id: int) -> list[Variant]:
        key = f"variants:{blueprint_id}:{provider_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        raw_variants = await self._client.list_variants(blueprint_id=blueprint_id, provider_id=provider_id)
        variants = [normalize_variant(raw) for raw in raw_variants if isinstance(raw, Mapping) and "id" in raw]
        self.cache.set(key, variants)
        return variants

    def clear(self) -> None:
        self.cache.clear()
        logger.info("Catalog cache cleared")
