from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from shirtforge.deps import get_catalog
from shirtforge.services.catalog_search import CatalogService

router = APIRouter(prefix="/api/catalog", tags=["catalog"])


@router.get("/blueprints/search")
async def search_blueprints(query: str = "", catalog: CatalogService = Depends(get_catalog)) -> dict[str, Any]:
    results = await catalog.search_blueprints(query)
    return {"data": results, "total": len(results), "query": query}


@router.get("/blueprints/{blueprint_id}/providers/search")
async def search_providers(
    blueprint_id: int,
    query: str = "",
    catalog: CatalogService = Depends(get_catalog),
) -> dict[str, Any]:
    results = await catalog.search_providers(blueprint_id, query)
    return {"data": results, "total": len(results), "blueprint_id": blueprint_id, "query": query}


@router.get("/blueprints/{blueprint_id}/providers/{provider_id}/variants")
async def list_variants(
    blueprint_id: int,
    provider_id: int,
    catalog: CatalogService = Depends(get_catalog),
) -> dict[str, Any]:
    variants = await catalog.get_variants(blueprint_id, provider_id)
    return {
        "data": [variant.model_dump() for variant in variants],
        "total": len(variants),
        "blueprint_id": blueprint_id,
        "provider_id": provider_id,
    }


@router.post("/cache/clear")
def clear_cache(catalog: CatalogService = Depends(get_catalog)) -> dict[str, Any]:
    catalog.clear()
    return {"success": True, "message": "Catalog cache cleared"}
