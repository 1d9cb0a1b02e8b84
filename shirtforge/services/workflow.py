"""Customer order workflow as an explicit state machine.

Each step is a frozen dataclass that carries exactly the data the step needs, so
for example a ``PaymentStep`` cannot exist without something to pay for. The
module-level transition functions are pure: they take a state and return the
next one, raising ``InvalidTransition`` when the move is not allowed.
``OrderWorkflow`` drives those transitions and performs the I/O around them
(image generation, variant loading, product creation, ordering).
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, ClassVar, Mapping, Sequence, Union

import httpx

from shirtforge.cache import TTLCache
from shirtforge.pacing import RetryPolicy
from shirtforge.printify_api import PrintifyApiError
from shirtforge.schemas import ShippingAddress, Variant
from shirtforge.services.admin_config import AdminConfigClient
from shirtforge.services.catalog_search import CatalogService
from shirtforge.services.image_generation import Design, ImageGenerationService, release_designs
from shirtforge.services.product_creation import (
    BatchCreationError,
    CreatedProduct,
    DesignProductRequest,
    ProductService,
)

logger = logging.getLogger(__name__)

MAX_SELECTED_DESIGNS = 3
DEV_BYPASS_PREFIX = "dev_free_payment_"
SESSION_IDLE_TTL_SECONDS = 2 * 60 * 60


class WorkflowError(RuntimeError):
    pass


class InvalidTransition(WorkflowError):
    def __init__(self, *, step: str, action: str) -> None:
        super().__init__(f"Cannot {action} while on the {step} step")
        self.step = step
        self.action = action


@dataclass(frozen=True)
class Notice:
    level: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"level": self.level, "message": self.message}


@dataclass(frozen=True)
class DesignConfig:
    color: str
    size: str
    variant: Variant


@dataclass(frozen=True)
class SelectedShirt:
    design: Design
    config: DesignConfig
    product: CreatedProduct


@dataclass(frozen=True)
class CustomPurchase:
    shirts: tuple[SelectedShirt, ...]
    # where a cancel returns to
    origin: "VariantsStep"

    def __post_init__(self) -> None:
        if not self.shirts:
            raise ValueError("A custom purchase needs at least one created product")

    def line_items(self) -> list[dict[str, Any]]:
        return [
            {"product_id": shirt.product.id, "variant_id": shirt.config.variant.id, "quantity": 1}
            for shirt in self.shirts
        ]

    def total(self) -> int:
        return sum(shirt.product.price for shirt in self.shirts)


@dataclass(frozen=True)
class FeaturedPurchase:
    product: Mapping[str, Any]
    variant: Variant

    def __post_init__(self) -> None:
        if not self.product.get("id"):
            raise ValueError("A featured purchase needs an existing product")

    @property
    def color(self) -> str | None:
        # Only structured variant options are trusted; titles are never parsed for colour.
        return self.variant.options.color

    def line_items(self) -> list[dict[str, Any]]:
        return [{"product_id": str(self.product["id"]), "variant_id": self.variant.id, "quantity": 1}]

    def total(self) -> int:
        return self.variant.price


Purchase = Union[CustomPurchase, FeaturedPurchase]


@dataclass(frozen=True)
class PromptStep:
    name: ClassVar[str] = "prompt"
    last_prompt: str = ""


@dataclass(frozen=True)
class DesignsStep:
    name: ClassVar[str] = "designs"
    prompt: str


@dataclass(frozen=True)
class VariantsStep:
    name: ClassVar[str] = "variants"
    prompt: str
    designs: tuple[Design, ...]
    variants: tuple[Variant, ...]
    selected: tuple[str, ...] = ()
    configs: Mapping[str, DesignConfig] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.designs:
            raise ValueError("The variants step needs at least one design")
        if not self.variants:
            raise ValueError("The variants step needs at least one shirt variant")

    def design(self, design_id: str) -> Design:
        for design in self.designs:
            if design.id == design_id:
                return design
        raise WorkflowError(f"Unknown design: {design_id}")


@dataclass(frozen=True)
class CreatingStep:
    name: ClassVar[str] = "creating"
    origin: VariantsStep


@dataclass(frozen=True)
class PaymentStep:
    name: ClassVar[str] = "payment"
    purchase: Purchase


@dataclass(frozen=True)
class StripeStep:
    name: ClassVar[str] = "stripe"
    purchase: Purchase
    # the intent created for this checkout; only it can confirm payment
    payment_intent_id: str | None = None


@dataclass(frozen=True)
class ShippingStep:
    name: ClassVar[str] = "shipping"
    purchase: Purchase
    payment_intent_id: str


@dataclass(frozen=True)
class SuccessStep:
    name: ClassVar[str] = "success"
    purchase: Purchase
    payment_intent_id: str
    order: Mapping[str, Any]


WorkflowState = Union[
    PromptStep,
    DesignsStep,
    VariantsStep,
    CreatingStep,
    PaymentStep,
    StripeStep,
    ShippingStep,
    SuccessStep,
]


def _expect(state: WorkflowState, expected: tuple[type, ...], action: str) -> None:
    if not isinstance(state, expected):
        raise InvalidTransition(step=state.name, action=action)


def begin_generation(state: WorkflowState, prompt: str) -> DesignsStep:
    _expect(state, (PromptStep, VariantsStep), "generate designs")
    prompt = prompt.strip()
    if not prompt:
        raise WorkflowError("Please enter a prompt")
    return DesignsStep(prompt=prompt)


def generation_succeeded(
    state: WorkflowState,
    designs: Sequence[Design],
    variants: Sequence[Variant],
) -> VariantsStep:
    _expect(state, (DesignsStep,), "finish generation")
    return VariantsStep(prompt=state.prompt, designs=tuple(designs), variants=tuple(variants))


def generation_failed(state: WorkflowState) -> PromptStep:
    _expect(state, (DesignsStep,), "fail generation")
    return PromptStep(last_prompt=state.prompt)


def select_design(state: WorkflowState, design_id: str) -> VariantsStep:
    _expect(state, (VariantsStep,), "select a design")
    state.design(design_id)
    if design_id in state.selected:
        return state
    if len(state.selected) >= MAX_SELECTED_DESIGNS:
        raise WorkflowError(f"You can select up to {MAX_SELECTED_DESIGNS} designs")
    return replace(state, selected=state.selected + (design_id,))


def deselect_design(state: WorkflowState, design_id: str) -> VariantsStep:
    _expect(state, (VariantsStep,), "deselect a design")
    configs = {key: value for key, value in state.configs.items() if key != design_id}
    return replace(state, selected=tuple(d for d in state.selected if d != design_id), configs=configs)


def find_variant(variants: Sequence[Variant], *, color: str, size: str) -> Variant:
    for variant in variants:
        options = variant.options
        if (
            (options.color or "").lower() == color.lower()
            and (options.size or "").lower() == size.lower()
            and variant.is_enabled
            and variant.is_available
        ):
            return variant
    raise WorkflowError(f"No available shirt in {color} / {size}")


def configure_design(state: WorkflowState, design_id: str, *, color: str, size: str) -> VariantsStep:
    _expect(state, (VariantsStep,), "configure a design")
    selected = select_design(state, design_id)
    variant = find_variant(state.variants, color=color, size=size)
    configs = dict(selected.configs)
    configs[design_id] = DesignConfig(color=color, size=size, variant=variant)
    return replace(selected, configs=configs)


def begin_creation(state: WorkflowState) -> CreatingStep:
    _expect(state, (VariantsStep,), "create products")
    if not state.selected:
        raise WorkflowError("Please select at least one design")
    missing = [design_id for design_id in state.selected if design_id not in state.configs]
    if missing:
        raise WorkflowError("Please choose a color and size for every selected design")
    return CreatingStep(origin=state)


def creation_succeeded(state: WorkflowState, products: Sequence[CreatedProduct]) -> PaymentStep:
    _expect(state, (CreatingStep,), "finish product creation")
    origin = state.origin
    if len(products) != len(origin.selected):
        raise WorkflowError("Product count does not match the selected designs")
    shirts = tuple(
        SelectedShirt(design=origin.design(design_id), config=origin.configs[design_id], product=product)
        for design_id, product in zip(origin.selected, products)
    )
    return PaymentStep(purchase=CustomPurchase(shirts=shirts, origin=origin))


def creation_failed(state: WorkflowState) -> VariantsStep:
    _expect(state, (CreatingStep,), "fail product creation")
    return state.origin


def enter_featured_checkout(state: WorkflowState, product: Mapping[str, Any], variant: Variant) -> PaymentStep:
    _expect(state, (PromptStep, VariantsStep), "start a featured checkout")
    return PaymentStep(purchase=FeaturedPurchase(product=dict(product), variant=variant))


def proceed_to_stripe(state: WorkflowState) -> StripeStep:
    _expect(state, (PaymentStep,), "proceed to payment")
    return StripeStep(purchase=state.purchase)


def return_to_summary(state: WorkflowState) -> PaymentStep:
    _expect(state, (StripeStep,), "return to the order summary")
    return PaymentStep(purchase=state.purchase)


def payment_intent_attached(state: WorkflowState, payment_intent_id: str) -> StripeStep:
    _expect(state, (StripeStep,), "start payment")
    return replace(state, payment_intent_id=payment_intent_id)


def payment_confirmed(state: WorkflowState, payment_intent_id: str) -> ShippingStep:
    _expect(state, (StripeStep,), "confirm payment")
    if state.payment_intent_id is None or payment_intent_id != state.payment_intent_id:
        raise WorkflowError("Payment does not belong to this checkout")
    return ShippingStep(purchase=state.purchase, payment_intent_id=payment_intent_id)


def payment_bypassed(state: WorkflowState, payment_intent_id: str) -> ShippingStep:
    _expect(state, (PaymentStep, StripeStep), "skip payment")
    return ShippingStep(purchase=state.purchase, payment_intent_id=payment_intent_id)


def order_placed(state: WorkflowState, order: Mapping[str, Any]) -> SuccessStep:
    _expect(state, (ShippingStep,), "finish the order")
    return SuccessStep(purchase=state.purchase, payment_intent_id=state.payment_intent_id, order=dict(order))


def order_failed(state: WorkflowState) -> StripeStep:
    _expect(state, (ShippingStep,), "fail the order")
    # dev bypass ids are not real intents and cannot confirm payment again
    intent_id = None if state.payment_intent_id.startswith(DEV_BYPASS_PREFIX) else state.payment_intent_id
    return StripeStep(purchase=state.purchase, payment_intent_id=intent_id)


def checkout_cancelled(state: WorkflowState) -> Union[VariantsStep, PromptStep]:
    _expect(state, (PaymentStep,), "cancel checkout")
    purchase = state.purchase
    if isinstance(purchase, CustomPurchase):
        return purchase.origin
    return PromptStep()


def _product_request(design: Design, config: DesignConfig) -> DesignProductRequest:
    # square designs keep the default centred placement
    shaped = design.shape != "square"
    return DesignProductRequest(
        image_url=design.image_url,
        title=design.title,
        description=f"Custom {design.title} - {config.color} {config.size}",
        variant_id=config.variant.id,
        shape=design.shape if shaped else None,
        aspect_ratio=design.aspect_ratio if shaped else None,
    )


class HttpImagePreloader:
    """Fetch each design image once so lazily rendered URLs are ready before display."""

    def __init__(self, *, timeout: float = 60.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._timeout = timeout
        self._transport = transport

    async def __call__(self, design: Design) -> None:
        if design.image_url.startswith(("data:", "blob:")):
            return
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            response = await client.get(design.image_url)
            response.raise_for_status()


class OrderWorkflow:
    def __init__(
        self,
        *,
        images: ImageGenerationService,
        catalog: CatalogService,
        products: ProductService,
        admin_config: AdminConfigClient,
        preload_image: Callable[[Design], Any] | None = None,
        retry_policy: RetryPolicy | None = None,
        allow_dev_bypass: bool | Callable[[], bool] = False,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.state: WorkflowState = PromptStep()
        self.notices: list[Notice] = []
        self._images = images
        self._catalog = catalog
        self._products = products
        self._admin_config = admin_config
        self._preload_image = preload_image or HttpImagePreloader()
        self._retry = retry_policy or RetryPolicy(max_attempts=3, base_delay_seconds=1.0)
        self._allow_dev_bypass = allow_dev_bypass

    @property
    def step(self) -> str:
        return self.state.name

    def _notify(self, level: str, message: str) -> None:
        self.notices.append(Notice(level=level, message=message))
        log = logger.warning if level == "error" else logger.info
        log(message, extra={"session_id": self.session_id, "step": self.step})

    def _designs(self) -> tuple[Design, ...]:
        state = self.state
        if isinstance(state, VariantsStep):
            return state.designs
        if isinstance(state, CreatingStep):
            return state.origin.designs
        return ()

    async def _load_variants(self, config: Mapping[str, Any]) -> list[Variant]:
        blueprint_id = int(config.get("blueprintId") or 6)
        provider_id = int(config.get("printProviderId") or 103)

        def rate_limited(exc: Exception) -> bool:
            return isinstance(exc, PrintifyApiError) and exc.is_rate_limited

        return await self._retry.run(
            lambda: self._catalog.get_variants(blueprint_id, provider_id),
            should_retry=rate_limited,
        )

    async def _preload(self, designs: Sequence[Design]) -> None:
        results = await asyncio.gather(
            *(self._preload_image(design) for design in designs),
            return_exceptions=True,
        )
        for design, result in zip(designs, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Design image preload failed",
                    extra={"design_id": design.id, "error": str(result)},
                )

    async def generate(self, prompt: str) -> WorkflowState:
        previous = self._designs()
        self.state = begin_generation(self.state, prompt)
        prompt = self.state.prompt
        config = await self._admin_config.get()
        if previous:
            release_designs(previous)
        try:
            designs, variants = await asyncio.gather(
                self._images.generate(
                    prompt,
                    source=str(config.get("imageSource") or "pollinations"),
                    count=int(config.get("maxDesignsPerGeneration") or 3),
                ),
                self._load_variants(config),
            )
            if not designs:
                raise WorkflowError("No designs were generated")
            if not variants:
                raise WorkflowError("No shirt options are available")
            await self._preload(designs)
            self.state = generation_succeeded(self.state, designs, variants)
        except Exception as exc:
            logger.exception("Design generation failed", extra={"session_id": self.session_id})
            self.state = generation_failed(self.state)
            self._notify("error", f"Failed to generate designs. Please try again. ({exc})")
            return self.state
        self._notify("success", f"{len(designs)} designs ready!")
        return self.state

    def select_design(self, design_id: str) -> WorkflowState:
        try:
            self.state = select_design(self.state, design_id)
        except InvalidTransition:
            raise
        except WorkflowError as exc:
            self._notify("error", str(exc))
        return self.state

    def deselect_design(self, design_id: str) -> WorkflowState:
        self.state = deselect_design(self.state, design_id)
        return self.state

    def configure_design(self, design_id: str, *, color: str, size: str) -> WorkflowState:
        try:
            self.state = configure_design(self.state, design_id, color=color, size=size)
        except InvalidTransition:
            raise
        except WorkflowError as exc:
            self._notify("error", str(exc))
        return self.state

    async def create_products(self) -> WorkflowState:
        try:
            self.state = begin_creation(self.state)
        except InvalidTransition:
            raise
        except WorkflowError as exc:
            self._notify("error", str(exc))
            return self.state

        origin = self.state.origin
        config = await self._admin_config.get()
        requests = [
            _product_request(origin.design(design_id), origin.configs[design_id]) for design_id in origin.selected
        ]
        try:
            products = await self._products.create_products_for_designs(
                requests,
                blueprint_id=int(config.get("blueprintId") or 6),
                provider_id=int(config.get("printProviderId") or 103),
                price=int(config.get("shirtPrice") or 2499),
            )
        except Exception as exc:
            logger.exception("Product creation failed", extra={"session_id": self.session_id})
            if isinstance(exc, BatchCreationError) and exc.created:
                await self._products.delete_products([product.id for product in exc.created])
            self.state = creation_failed(self.state)
            self._notify("error", "Failed to create your t-shirt. Please try again.")
            return self.state
        self.state = creation_succeeded(self.state, products)
        self._notify("success", "Your custom t-shirt has been created!")
        return self.state

    def start_featured_checkout(self, product: Mapping[str, Any], variant: Variant) -> WorkflowState:
        self.state = enter_featured_checkout(self.state, product, variant)
        return self.state

    def proceed_to_payment(self) -> WorkflowState:
        self.state = proceed_to_stripe(self.state)
        return self.state

    def back_to_summary(self) -> WorkflowState:
        self.state = return_to_summary(self.state)
        return self.state

    def payment_total(self) -> int:
        """Amount in cents the current checkout must be paid with."""
        _expect(self.state, (StripeStep,), "start payment")
        return self.state.purchase.total()

    def attach_payment_intent(self, payment_intent_id: str) -> WorkflowState:
        self.state = payment_intent_attached(self.state, payment_intent_id)
        return self.state

    def payment_succeeded(self, payment_intent_id: str, *, amount: int, status: str = "succeeded") -> WorkflowState:
        state = self.state
        _expect(state, (StripeStep,), "confirm payment")
        if payment_intent_id != state.payment_intent_id:
            raise WorkflowError("Payment does not belong to this checkout")
        if amount != state.purchase.total():
            logger.warning(
                "Payment amount mismatch",
                extra={"session_id": self.session_id, "amount": amount, "expected": state.purchase.total()},
            )
            raise WorkflowError("Payment amount does not match the order total")
        if status != "succeeded":
            self._notify("error", f"Payment failed: payment status is {status}")
            return self.state
        self.state = payment_confirmed(state, payment_intent_id)
        self._notify("success", "Payment successful!")
        return self.state

    def dev_bypass_payment(self) -> WorkflowState:
        allowed = self._allow_dev_bypass() if callable(self._allow_dev_bypass) else self._allow_dev_bypass
        if not allowed:
            raise WorkflowError("Payment bypass is only available in development mode")
        self.state = payment_bypassed(self.state, f"{DEV_BYPASS_PREFIX}{int(time.time() * 1000)}")
        self._notify("success", "Development mode - Payment skipped!")
        return self.state

    async def submit_shipping(self, address: ShippingAddress) -> WorkflowState:
        state = self.state
        _expect(state, (ShippingStep,), "submit shipping")
        try:
            order = await self._products.place_order(
                line_items=state.purchase.line_items(),
                address=address.to_printify(),
            )
        except Exception as exc:
            logger.exception("Order placement failed", extra={"session_id": self.session_id})
            self.state = order_failed(state)
            self._notify("error", f"Failed to process order. Please try again. ({exc})")
            return self.state
        self.state = order_placed(state, order)
        self._notify("success", "Order placed successfully!")
        return self.state

    async def cancel(self) -> WorkflowState:
        state = self.state
        _expect(state, (PaymentStep,), "cancel checkout")
        purchase = state.purchase
        if isinstance(purchase, CustomPurchase):
            report = await self._products.delete_products([shirt.product.id for shirt in purchase.shirts])
            if report.failed:
                self._notify("error", f"Could not delete {len(report.failed)} product(s)")
            else:
                self._notify("info", "Product canceled successfully")
        self.state = checkout_cancelled(state)
        return self.state

    def reset(self) -> WorkflowState:
        designs = self._designs()
        if designs:
            release_designs(designs)
        self.state = PromptStep()
        return self.state

    def snapshot(self) -> dict[str, Any]:
        state = self.state
        data: dict[str, Any] = {"sessionId": self.session_id, "step": state.name}
        if isinstance(state, PromptStep):
            data["lastPrompt"] = state.last_prompt
        elif isinstance(state, DesignsStep):
            data["prompt"] = state.prompt
        elif isinstance(state, (VariantsStep, CreatingStep)):
            variants_step = state if isinstance(state, VariantsStep) else state.origin
            data.update(
                {
                    "prompt": variants_step.prompt,
                    "designs": [design.to_dict() for design in variants_step.designs],
                    "availableVariants": [variant.model_dump() for variant in variants_step.variants],
                    "selectedDesignIds": list(variants_step.selected),
                    "designConfigs": {
                        design_id: {
                            "color": config.color,
                            "size": config.size,
                            "variant": config.variant.model_dump(),
                        }
                        for design_id, config in variants_step.configs.items()
                    },
                }
            )
        else:
            data["checkout"] = _purchase_snapshot(state.purchase)
            if isinstance(state, (StripeStep, ShippingStep, SuccessStep)) and state.payment_intent_id:
                data["paymentIntentId"] = state.payment_intent_id
            if isinstance(state, SuccessStep):
                data["order"] = dict(state.order)
        data["notices"] = [notice.to_dict() for notice in self.notices]
        return data


def _purchase_snapshot(purchase: Purchase) -> dict[str, Any]:
    if isinstance(purchase, FeaturedPurchase):
        return {
            "kind": "featured",
            "productId": str(purchase.product.get("id")),
            "originalProduct": dict(purchase.product),
            "selectedVariant": purchase.variant.model_dump(),
            "color": purchase.color,
            "total": purchase.total(),
        }
    return {
        "kind": "custom",
        "selectedShirts": [
            {
                "design": shirt.design.to_dict(),
                "color": shirt.config.color,
                "size": shirt.config.size,
                "variant": shirt.config.variant.model_dump(),
                "product": shirt.product.to_dict(),
            }
            for shirt in purchase.shirts
        ],
        "total": purchase.total(),
    }


class WorkflowRegistry:
    """One workflow per browser session, held in process memory.

    A session that goes untouched for ``idle_ttl_seconds`` is dropped; each
    ``get`` restarts its idle timer.
    """

    def __init__(
        self,
        *,
        factory: Callable[[], OrderWorkflow],
        idle_ttl_seconds: float = SESSION_IDLE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self._sessions = TTLCache(default_ttl_seconds=idle_ttl_seconds, clock=clock)

    def _evict_idle(self) -> None:
        evicted = self._sessions.purge_expired()
        if evicted:
            logger.info("Evicted idle workflow sessions", extra={"evicted": evicted})

    def create(self) -> OrderWorkflow:
        self._evict_idle()
        workflow = self._factory()
        self._sessions.set(workflow.session_id, workflow)
        return workflow

    def get(self, session_id: str) -> OrderWorkflow:
        workflow = self._sessions.get(session_id)
        if workflow is None:
            raise KeyError(session_id)
        self._sessions.set(session_id, workflow)
        return workflow

    def delete(self, session_id: str) -> bool:
        workflow = self._sessions.peek(session_id)
        if workflow is None:
            return False
        self._sessions.delete(session_id)
        workflow.reset()
        return True

    def __len__(self) -> int:
        return len(self._sessions)
