from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import ORJSONResponse

from shirtforge.deps import get_gateway, get_products
from shirtforge.schemas import MultiOrderRequest
from shirtforge.services.gateway import GatewayService
from shirtforge.services.image_processing import ImageValidationError
from shirtforge.services.product_creation import DesignProductRequest, ProductService

router = APIRouter(prefix="/api/printify", tags=["printify"])


@router.get("/uploads/{image_id}")
async def get_upload(image_id: str, products: ProductService = Depends(get_products)) -> dict[str, Any]:
    return await products.get_upload(image_id)


@router.post("/multi-order/multi-order")
async def create_multi_order(
    payload: MultiOrderRequest,
    products: ProductService = Depends(get_products),
) -> dict[str, Any]:
    if not payload.shirts or payload.shippingAddress is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing shirts or shipping address",
        )
    shirts = [
        DesignProductRequest(
            image_url=shirt.designImageUrl,
            title=shirt.title,
            description=shirt.description,
            variant_id=shirt.variantId,
        )
        for shirt in payload.shirts
    ]
    try:
        order = await products.create_multi_order(
            shirts=shirts,
            address=payload.shippingAddress.to_printify(),
        )
    except (ImageValidationError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {"success": True, "order": order}


@router.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE"])
async def proxy(path: str, request: Request, gateway: GatewayService = Depends(get_gateway)) -> ORJSONResponse:
    payload = None
    if request.method in {"POST", "PUT"}:
        raw = await request.body()
        if raw:
            try:
                payload = await request.json()
            except ValueError as exc:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body") from exc
    status_code, body = await gateway.handle(
        method=request.method,
        path=path,
        payload=payload,
        query=dict(request.query_params),
    )
    return ORJSONResponse(status_code=status_code, content=body)
