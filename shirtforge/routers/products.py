from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from shirtforge.deps import get_products, get_storefront
from shirtforge.schemas import CreateAdminProductRequest, CreateCustomOrderRequest
from shirtforge.services.image_processing import ImageValidationError
from shirtforge.services.product_creation import DEFAULT_BLUEPRINT_ID, DEFAULT_PRINT_PROVIDER_ID, ProductService
from shirtforge.services.storefront import StorefrontService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])


@router.get("/shops")
async def list_shops(storefront: StorefrontService = Depends(get_storefront)) -> list[dict[str, Any]]:
    return await storefront.list_shops()


@router.get("/shops/{shop_id}/top-products")
async def shop_top_products(
    shop_id: str,
    storefront: StorefrontService = Depends(get_storefront),
) -> dict[str, Any]:
    return await storefront.shop_top_products(shop_id)


@router.get("/first-shop")
def first_shop(storefront: StorefrontService = Depends(get_storefront)) -> dict[str, Any]:
    return storefront.first_shop()


@router.get("/top-products")
async def featured_products(storefront: StorefrontService = Depends(get_storefront)) -> dict[str, Any]:
    return await storefront.featured_products()


@router.get("/all-products")
async def all_products(
    refresh: bool = False,
    storefront: StorefrontService = Depends(get_storefront),
) -> dict[str, Any]:
    return await storefront.all_products(refresh=refresh)


@router.post("/create-custom-order")
async def create_custom_order(
    payload: CreateCustomOrderRequest,
    products: ProductService = Depends(get_products),
) -> dict[str, Any]:
    if (
        not payload.templateProductId
        or not payload.selectedVariant
        or payload.shippingAddress is None
        or not payload.customerEmail
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: templateProductId, selectedVariant, shippingAddress, customerEmail",
        )
    try:
        result = await products.create_custom_order(
            template_product_id=payload.templateProductId,
            selected_variant=payload.selectedVariant,
            address=payload.shippingAddress.to_printify(),
            customer_email=payload.customerEmail,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {
        "success": True,
        "product": result["product"],
        "order": result["order"],
        "published": result["published"],
        "message": "Custom order created successfully",
    }


@router.post("/create-admin-product")
async def create_admin_product(
    payload: CreateAdminProductRequest,
    products: ProductService = Depends(get_products),
) -> dict[str, Any]:
    if not payload.designUrl or not payload.shirtTemplate:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: designUrl and shirtTemplate",
        )
    try:
        product = await products.create_admin_product(
            design_url=payload.designUrl,
            blueprint_id=payload.blueprintId or DEFAULT_BLUEPRINT_ID,
            provider_id=payload.printProviderId or DEFAULT_PRINT_PROVIDER_ID,
            prompt=payload.prompt,
            price=payload.price,
            variant_id=payload.variantId,
            shape=payload.shape,
            aspect_ratio=payload.aspectRatio,
        )
    except ImageValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {"success": True, "product": product, "message": "Admin product created successfully"}


@router.get("/{product_id}/original-design")
async def original_design(
    product_id: str,
    products: ProductService = Depends(get_products),
) -> dict[str, Any]:
    design = await products.original_design(product_id)
    if design is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Original design not found for product")
    return design


@router.get("/{product_id}/details")
async def product_details(
    product_id: str,
    storefront: StorefrontService = Depends(get_storefront),
) -> dict[str, Any]:
    return await storefront.product_details(product_id)


@router.get("/{product_id}/variants")
async def product_variants(
    product_id: str,
    storefront: StorefrontService = Depends(get_storefront),
) -> dict[str, Any]:
    return await storefront.product_variants(product_id)


@router.delete("/{product_id}")
async def delete_product(
    product_id: str,
    products: ProductService = Depends(get_products),
    storefront: StorefrontService = Depends(get_storefront),
) -> dict[str, Any]:
    await products.delete_product(product_id)
    storefront.invalidate_product_listings()
    logger.info("Deleted product", extra={"product_id": product_id})
    return {"success": True, "message": "Product deleted successfully", "productId": product_id}
