from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import httpx

from shirtforge.config import settings
from shirtforge.pacing import RequestPacer
from shirtforge.printify_api import PrintifyApiClient, PrintifyApiError
from shirtforge.services.image_processing import (
    ImageValidationError,
    apply_shape_cutout,
    decode_data_url,
    to_data_url,
    validate_image_bytes,
    validate_image_for_product_creation,
)
from shirtforge.services.positioning import CENTERED_PLACEMENT, PrintPlacement, calculate_print_positioning
from shirtforge.services.product_metadata import (
    clean_product_description,
    embed_original_design_url,
    extract_original_design_url,
    extract_original_image_id,
)

logger = logging.getLogger(__name__)

DEFAULT_BLUEPRINT_ID = 6
DEFAULT_PRINT_PROVIDER_ID = 103
DEFAULT_PRICE_CENTS = 2499
MAX_DESIGNS_PER_ORDER = 3


def _now_ms() -> int:
    return int(time.time() * 1000)


def _parse_variant_id(variant_id: Any) -> int:
    try:
        return int(str(variant_id))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid variant ID: {variant_id}") from exc


@dataclass(frozen=True)
class DesignProductRequest:
    image_url: str
    title: str
    description: str
    variant_id: int
    shape: str | None = None
    aspect_ratio: str | None = None


@dataclass(frozen=True)
class CreatedProduct:
    id: str
    title: str
    description: str
    images: list[dict[str, Any]]
    variant_id: int | None = None
    # retail price in cents, as sent to Printify
    price: int = DEFAULT_PRICE_CENTS

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "images": self.images,
            "variantId": self.variant_id,
            "price": self.price,
        }


class BatchCreationError(RuntimeError):
    """Raised when a multi-design batch fails part way; ``created`` lists what already exists."""

    def __init__(self, *, created: Sequence["CreatedProduct"], cause: Exception) -> None:
        super().__init__(f"Product creation failed after {len(created)} product(s): {cause}")
        self.created = list(created)
        self.cause = cause


@dataclass
class DeletionReport:
    deleted: list[str]
    failed: dict[str, str]

    @property
    def attempted(self) -> int:
        return len(self.deleted) + len(self.failed)


class ProductService:
    """Upload -> create -> (publish) -> order flows against one Printify shop."""

    def __init__(
        self,
        *,
        client: PrintifyApiClient,
        shop_id: str | None = None,
        pacer: RequestPacer | None = None,
        fetch_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = client
        self.shop_id = shop_id or settings.PRINTIFY_SHOP_ID
        self._pacer = pacer or RequestPacer(interval_seconds=settings.PRODUCT_CREATION_INTERVAL_SECONDS)
        self._fetch_transport = fetch_transport

    async def _fetch_image(self, image_url: str) -> tuple[bytes, str | None]:
        if image_url.startswith("data:"):
            return decode_data_url(image_url)
        if image_url.startswith("blob:"):
            raise ImageValidationError("Blob URLs must be converted to data URLs before upload")
        try:
            async with httpx.AsyncClient(
                timeout=settings.IMAGE_REQUEST_TIMEOUT_SECONDS,
                transport=self._fetch_transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(image_url)
        except httpx.RequestError as exc:
            raise ImageValidationError(f"Failed to fetch image: {exc}") from exc
        if response.status_code >= 400:
            raise ImageValidationError(f"Failed to fetch image: {response.status_code}")
        content_type = response.headers.get("content-type")
        return response.content, content_type.split(";")[0] if content_type else None

    async def upload_image(self, image_url: str, *, file_name: str | None = None) -> str:
        if not self._client.is_configured:
            raise PrintifyApiError(message="Printify API token not configured", status_code=500)
        file_name = file_name or f"ai_design_{_now_ms()}.png"
        if not image_url.startswith(("blob:", "data:")):
            try:
                uploaded = await self._client.upload_image_by_url(file_name=file_name, url=image_url)
                if uploaded.get("id"):
                    return str(uploaded["id"])
                logger.warning("URL upload returned no image id", extra={"image_url": image_url})
            except PrintifyApiError as exc:
                logger.warning(
                    "URL upload failed, falling back to contents upload",
                    extra={"image_url": image_url, "error": str(exc)},
                )

        data, content_type = await self._fetch_image(image_url)
        validate_image_bytes(data, content_type=content_type)
        uploaded = await self._client.upload_image_contents(
            file_name=file_name,
            contents=base64.b64encode(data).decode("ascii"),
        )
        image_id = uploaded.get("id")
        if not image_id:
            raise PrintifyApiError(message="Upload response missing image ID", status_code=502)
        return str(image_id)

    def build_product_payload(
        self,
        *,
        title: str,
        description: str,
        image_id: str,
        variant_id: int,
        blueprint_id: int = DEFAULT_BLUEPRINT_ID,
        provider_id: int = DEFAULT_PRINT_PROVIDER_ID,
        price: int = DEFAULT_PRICE_CENTS,
        placement: PrintPlacement | None = None,
    ) -> dict[str, Any]:
        placement = placement or CENTERED_PLACEMENT
        return {
            "title": title,
            "description": description,
            "blueprint_id": blueprint_id,
            "print_provider_id": provider_id,
            "variants": [{"id": variant_id, "price": price, "is_enabled": True}],
            "print_areas": [
                {
                    "variant_ids": [variant_id],
                    "placeholders": [
                        {
                            "position": "front",
                            "images": [
                                {
                                    "id": image_id,
                                    "x": placement["x"],
                                    "y": placement["y"],
                                    "scale": placement["scale"],
                                    "angle": placement["angle"],
                                }
                            ],
                        }
                    ],
                }
            ],
        }

    async def create_product(
        self,
        *,
        title: str,
        description: str,
        image_id: str,
        variant_id: Any,
        blueprint_id: int = DEFAULT_BLUEPRINT_ID,
        provider_id: int = DEFAULT_PRINT_PROVIDER_ID,
        price: int = DEFAULT_PRICE_CENTS,
        placement: PrintPlacement | None = None,
    ) -> str:
        payload = self.build_product_payload(
            title=title,
            description=description,
            image_id=image_id,
            variant_id=_parse_variant_id(variant_id),
            blueprint_id=blueprint_id,
            provider_id=provider_id,
            price=price,
            placement=placement,
        )
        created = await self._client.create_product(shop_id=self.shop_id, payload=payload)
        product_id = created.get("id")
        if not product_id:
            raise PrintifyApiError(message="Product creation response missing product ID", status_code=502)
        logger.info("Created Printify product", extra={"product_id": product_id, "shop_id": self.shop_id})
        return str(product_id)

    async def publish_product(self, product_id: str) -> bool:
        try:
            await self._client.publish_product(shop_id=self.shop_id, product_id=product_id)
        except PrintifyApiError as exc:
            logger.warning("Product publish failed", extra={"product_id": product_id, "error": str(exc)})
            return False
        return True

    async def get_product_details(self, product_id: str) -> dict[str, Any]:
        data = await self._client.get_product(shop_id=self.shop_id, product_id=product_id)
        return {
            "id": str(data.get("id", product_id)),
            "title": data.get("title") or "",
            "description": data.get("description") or "",
            "images": data.get("images") or [],
        }

    async def create_product_from_design(
        self,
        *,
        image_url: str,
        title: str,
        description: str,
        variant_id: Any,
        shape: str | None = None,
        aspect_ratio: str | None = None,
        publish: bool = False,
        blueprint_id: int = DEFAULT_BLUEPRINT_ID,
        provider_id: int = DEFAULT_PRINT_PROVIDER_ID,
        price: int = DEFAULT_PRICE_CENTS,
    ) -> CreatedProduct:
        check = validate_image_for_product_creation(image_url)
        if not check.is_valid:
            raise ImageValidationError(check.message)

        upload_url = image_url
        if shape and shape != "square":
            # shaped designs are uploaded as a transparent PNG cutout
            data, _ = await self._fetch_image(image_url)
            upload_url = to_data_url(apply_shape_cutout(data, shape))
        image_id = await self.upload_image(upload_url)
        placement = calculate_print_positioning(shape, aspect_ratio) if shape else None
        product_id = await self.create_product(
            title=title,
            description=embed_original_design_url(description, image_url),
            image_id=image_id,
            variant_id=variant_id,
            blueprint_id=blueprint_id,
            provider_id=provider_id,
            price=price,
            placement=placement,
        )
        if publish:
            await self.publish_product(product_id)
        details = await self.get_product_details(product_id)
        return CreatedProduct(
            id=details["id"],
            title=details["title"],
            description=details["description"],
            images=details["images"],
            variant_id=_parse_variant_id(variant_id),
            price=price,
        )

    async def create_products_for_designs(
        self,
        requests: Sequence[DesignProductRequest],
        **product_options: Any,
    ) -> list[CreatedProduct]:
        """Create one product per design, strictly one after another, paced for Printify's rate limits."""
        if not requests:
            raise ValueError("At least one design is required")
        if len(requests) > MAX_DESIGNS_PER_ORDER:
            raise ValueError(f"At most {MAX_DESIGNS_PER_ORDER} designs can be ordered together")

        created: list[CreatedProduct] = []
        self._pacer.reset()
        for request in requests:
            await self._pacer.wait()
            try:
                product = await self.create_product_from_design(
                    image_url=request.image_url,
                    title=request.title,
                    description=request.description,
                    variant_id=request.variant_id,
                    shape=request.shape,
                    aspect_ratio=request.aspect_ratio,
                    **product_options,
                )
            except Exception as exc:
                logger.warning(
                    "Batch product creation stopped",
                    extra={"created_count": len(created), "requested": len(requests), "error": str(exc)},
                )
                raise BatchCreationError(created=created, cause=exc) from exc
            created.append(product)
        return created

    async def place_order(
        self,
        *,
        line_items: Sequence[Mapping[str, Any]],
        address: Mapping[str, Any],
        external_id: str | None = None,
    ) -> dict[str, Any]:
        if not line_items:
            raise ValueError("An order needs at least one line item")
        payload = {
            "external_id": external_id or f"order-{_now_ms()}",
            "line_items": [
                {
                    "product_id": str(item["product_id"]),
                    "variant_id": _parse_variant_id(item["variant_id"]),
                    "quantity": int(item.get("quantity", 1)),
                }
                for item in line_items
            ],
            "shipping_method": 1,
            "is_printify_express": False,
            "send_shipping_notification": False,
            "address_to": dict(address),
        }
        order = await self._client.create_order(shop_id=self.shop_id, payload=payload)
        logger.info(
            "Placed Printify order",
            extra={"order_id": order.get("id"), "line_items": len(payload["line_items"])},
        )
        return order

    async def delete_product(self, product_id: str) -> None:
        await self._client.delete_product(shop_id=self.shop_id, product_id=product_id)

    async def delete_products(self, product_ids: Sequence[str]) -> DeletionReport:
        """Attempt every delete; a failure on one id never stops the others."""
        report = DeletionReport(deleted=[], failed={})
        for product_id in product_ids:
            try:
                await self.delete_product(product_id)
            except Exception as exc:
                logger.warning("Product delete failed", extra={"product_id": product_id, "error": str(exc)})
                report.failed[product_id] = str(exc)
            else:
                report.deleted.append(product_id)
        return report

    async def get_upload(self, image_id: str) -> dict[str, Any]:
        upload = await self._client.get_upload(image_id=image_id)
        return {
            "id": upload.get("id", image_id),
            "file_name": upload.get("file_name"),
            "preview_url": upload.get("preview_url"),
            "width": upload.get("width"),
            "height": upload.get("height"),
            "size": upload.get("size"),
            "mime_type": upload.get("mime_type"),
            "upload_time": upload.get("upload_time"),
        }

    async def original_design(self, product_id: str) -> dict[str, Any] | None:
        """Find the artwork a product was printed from.

        The design URL embedded in the description wins. Otherwise the image id in
        the product's print areas is resolved through the uploads endpoint.
        """
        product = await self._client.get_product(shop_id=self.shop_id, product_id=product_id)
        description = product.get("description")
        result = {"productId": product_id, "description": clean_product_description(description)}
        design_url = extract_original_design_url(description)
        if design_url:
            return {**result, "imageUrl": design_url, "source": "description"}
        image_id = extract_original_image_id(product)
        if image_id is None:
            return None
        upload = await self.get_upload(image_id)
        if not upload["preview_url"]:
            logger.warning("Upload has no preview URL", extra={"product_id": product_id, "image_id": image_id})
            return None
        return {**result, "imageUrl": upload["preview_url"], "imageId": image_id, "source": "upload"}

    async def create_admin_product(
        self,
        *,
        design_url: str,
        blueprint_id: int,
        provider_id: int,
        prompt: str = "",
        price: int | None = None,
        variant_id: int | None = None,
        shape: str | None = None,
        aspect_ratio: str | None = None,
    ) -> dict[str, Any]:
        """Draft product for the admin template preview; never published automatically."""
        image_id = await self.upload_image(design_url)
        selected_variant_id = variant_id or 1
        payload = self.build_product_payload(
            title=f"AI Design - {prompt[:30] or 'Custom Design'}",
            description=f'AI-generated design created from prompt: "{prompt or "Custom design"}"',
            image_id=image_id,
            variant_id=selected_variant_id,
            blueprint_id=blueprint_id,
            provider_id=provider_id,
            price=price or DEFAULT_PRICE_CENTS,
            placement=calculate_print_positioning(shape or "square", aspect_ratio or "1:1"),
        )
        product = await self._client.create_product(shop_id=self.shop_id, payload=payload)
        logger.info("Created admin draft product", extra={"product_id": product.get("id")})
        return product

    async def create_custom_order(
        self,
        *,
        template_product_id: str,
        selected_variant: Mapping[str, Any],
        address: Mapping[str, Any],
        customer_email: str,
    ) -> dict[str, Any]:
        template = await self._client.get_product(shop_id=self.shop_id, product_id=template_product_id)
        variant_id = _parse_variant_id(selected_variant.get("id"))
        options = selected_variant.get("options") or {}
        if isinstance(options, Mapping) and (options.get("size") or options.get("color")):
            label = "-".join(str(part) for part in (options.get("size"), options.get("color")) if part)
        else:
            label = str(selected_variant.get("title") or variant_id)
        payload = {
            "title": f"{template.get('title', 'Custom Shirt')} - {label.lower()} - {_now_ms()}",
            "description": template.get("description") or "",
            "blueprint_id": template.get("blueprint_id"),
            "print_provider_id": template.get("print_provider_id"),
            "variants": [
                {
                    "id": variant_id,
                    "price": int(selected_variant.get("price") or DEFAULT_PRICE_CENTS),
                    "is_enabled": True,
                }
            ],
            "print_areas": template.get("print_areas") or [],
        }
        product = await self._client.create_product(shop_id=self.shop_id, payload=payload)
        product_id = str(product.get("id"))
        published = await self.publish_product(product_id)
        order_address = dict(address)
        order_address["email"] = customer_email
        order = await self.place_order(
            line_items=[{"product_id": product_id, "variant_id": variant_id, "quantity": 1}],
            address=order_address,
            external_id=f"order_{_now_ms()}",
        )
        return {"product": product, "order": order, "published": published}

    async def create_multi_order(
        self,
        *,
        shirts: Sequence[DesignProductRequest],
        address: Mapping[str, Any],
    ) -> dict[str, Any]:
        if not shirts:
            raise ValueError("Missing shirts or shipping address")
        if len(shirts) > MAX_DESIGNS_PER_ORDER:
            raise ValueError(f"At most {MAX_DESIGNS_PER_ORDER} designs can be ordered together")
        line_items: list[dict[str, Any]] = []
        self._pacer.reset()
        for shirt in shirts:
            await self._pacer.wait()
            image_id = await self.upload_image(shirt.image_url)
            product_id = await self.create_product(
                title=shirt.title,
                description=shirt.description,
                image_id=image_id,
                variant_id=shirt.variant_id,
            )
            line_items.append({"product_id": product_id, "variant_id": shirt.variant_id, "quantity": 1})
        return await self.place_order(
            line_items=line_items,
            address=address,
            external_id=f"multi-order-{_now_ms()}",
        )
