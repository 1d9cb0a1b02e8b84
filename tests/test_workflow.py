from __future__ import annotations

import asyncio

import pytest

from shirtforge.pacing import RequestPacer, RetryPolicy
from shirtforge.printify_api import PrintifyApiClient, PrintifyApiError
from shirtforge.schemas import ShippingAddress, Variant, VariantOptions
from shirtforge.services.admin_config import AdminConfigClient
from shirtforge.services.image_generation import Design, ImageGenerationError, ImageGenerationService
from shirtforge.services.product_creation import CreatedProduct, ProductService
from shirtforge.services.workflow import (
    CreatingStep,
    CustomPurchase,
    FeaturedPurchase,
    InvalidTransition,
    OrderWorkflow,
    PaymentStep,
    PromptStep,
    ShippingStep,
    StripeStep,
    SuccessStep,
    VariantsStep,
    WorkflowError,
    WorkflowRegistry,
    proceed_to_stripe,
)

VARIANTS = [
    Variant(id=101, title="White / M", options=VariantOptions(color="White", size="M")),
    Variant(id=102, title="Black / L", options=VariantOptions(color="Black", size="L")),
]

ADDRESS = ShippingAddress(
    first_name="Ada",
    last_name="Lovelace",
    email="ada@example.com",
    phone="555-123-4567",
    country="US",
    region="NY",
    address1="1 Main St",
    city="New York",
    zip="10001",
)


class FakeGenerator:
    source = "pollinations"

    def __init__(self, *, fail: bool = False, count: int | None = None) -> None:
        self.fail = fail
        self.count = count
        self.prompts: list[str] = []

    async def generate(self, prompt: str, *, count: int, shape: str = "square", aspect_ratio: str = "1:1"):
        self.prompts.append(prompt)
        if self.fail:
            raise ImageGenerationError("generator down")
        total = count if self.count is None else self.count
        return [
            Design(
                id=f"design-{index}",
                image_url=f"https://image.pollinations.ai/prompt/{index}",
                title=f"Design {index}",
                prompt=prompt,
                original_prompt=prompt,
            )
            for index in range(total)
        ]


class FakeCatalog:
    def __init__(self, variants=None, failures: int = 0) -> None:
        self.variants = VARIANTS if variants is None else variants
        self.failures = failures
        self.calls = 0

    async def get_variants(self, blueprint_id: int, provider_id: int):
        self.calls += 1
        if self.calls <= self.failures:
            raise PrintifyApiError(message="Printify API rate limited, try again later", status_code=429)
        return list(self.variants)


class RecordingProducts(ProductService):
    """Real batch and delete logic with the per-product I/O stubbed out."""

    def __init__(self) -> None:
        super().__init__(
            client=PrintifyApiClient(token="test_token"),
            shop_id="24294177",
            pacer=RequestPacer(interval_seconds=0),
        )
        self.events: list[str] = []
        self.deleted: list[str] = []
        self.orders: list[dict] = []
        self.fail_create_on: int | None = None
        self.fail_delete_for: set[str] = set()
        self.fail_order = False

    async def create_product_from_design(self, *, image_url, title, description, variant_id, **kwargs):
        index = sum(1 for event in self.events if event.startswith("start")) + 1
        self.events.append(f"start {index}")
        await asyncio.sleep(0)
        if self.fail_create_on == index:
            raise PrintifyApiError(message="create failed", status_code=400)
        self.events.append(f"end {index}")
        return CreatedProduct(
            id=f"prod_{index}",
            title=title,
            description=description,
            images=[],
            variant_id=variant_id,
            price=kwargs["price"],
        )

    async def delete_product(self, product_id: str) -> None:
        self.deleted.append(product_id)
        if product_id in self.fail_delete_for:
            raise PrintifyApiError(message="delete failed", status_code=500)

    async def place_order(self, *, line_items, address, external_id=None):
        if self.fail_order:
            raise PrintifyApiError(message="order failed", status_code=400)
        self.orders.append({"line_items": list(line_items), "address": dict(address)})
        return {"id": "order_1"}


async def _no_preload(design: Design) -> None:
    return None


async def _no_sleep(seconds: float) -> None:
    return None


def _workflow(
    *,
    generator: FakeGenerator | None = None,
    catalog: FakeCatalog | None = None,
    products: RecordingProducts | None = None,
    preload=_no_preload,
    allow_dev_bypass=False,
    config: dict | None = None,
) -> OrderWorkflow:
    async def fetch_config():
        return {"imageSource": "pollinations", "maxDesignsPerGeneration": 4, **(config or {})}

    return OrderWorkflow(
        images=ImageGenerationService(generators=[generator or FakeGenerator()]),
        catalog=catalog or FakeCatalog(),
        products=products or RecordingProducts(),
        admin_config=AdminConfigClient(fetch=fetch_config),
        preload_image=preload,
        retry_policy=RetryPolicy(max_attempts=3, sleep=_no_sleep),
        allow_dev_bypass=allow_dev_bypass,
    )


def _configured(workflow: OrderWorkflow, *design_ids: str) -> OrderWorkflow:
    asyncio.run(workflow.generate("cosmic cat"))
    for design_id in design_ids:
        workflow.configure_design(design_id, color="White", size="M")
    return workflow


def _at_stripe(workflow: OrderWorkflow, payment_intent_id: str = "pi_1") -> OrderWorkflow:
    _configured(workflow, "design-0")
    asyncio.run(workflow.create_products())
    workflow.proceed_to_payment()
    workflow.attach_payment_intent(payment_intent_id)
    return workflow


def test_generate_reaches_variants_with_designs_and_variants():
    workflow = _workflow()

    state = asyncio.run(workflow.generate("  cosmic cat  "))

    assert isinstance(state, VariantsStep)
    assert len(state.designs) == 4
    assert len(state.variants) == 2
    assert state.prompt == "cosmic cat"
    assert workflow.notices[-1].level == "success"


def test_generate_failure_returns_to_prompt_with_error():
    workflow = _workflow(generator=FakeGenerator(fail=True))

    state = asyncio.run(workflow.generate("cosmic cat"))

    assert isinstance(state, PromptStep)
    assert state.last_prompt == "cosmic cat"
    assert workflow.notices[-1].level == "error"


def test_generate_with_no_variants_returns_to_prompt():
    workflow = _workflow(catalog=FakeCatalog(variants=[]))

    assert isinstance(asyncio.run(workflow.generate("cosmic cat")), PromptStep)


def test_generate_with_no_designs_returns_to_prompt():
    workflow = _workflow(generator=FakeGenerator(count=0))

    assert isinstance(asyncio.run(workflow.generate("cosmic cat")), PromptStep)


def test_variant_loading_retries_rate_limits():
    catalog = FakeCatalog(failures=2)
    workflow = _workflow(catalog=catalog)

    assert isinstance(asyncio.run(workflow.generate("cosmic cat")), VariantsStep)
    assert catalog.calls == 3


def test_preload_failures_do_not_block_designs():
    async def broken_preload(design: Design) -> None:
        raise RuntimeError("image timeout")

    workflow = _workflow(preload=broken_preload)

    assert isinstance(asyncio.run(workflow.generate("cosmic cat")), VariantsStep)


def test_fourth_selection_is_rejected_without_state_change():
    workflow = _workflow()
    asyncio.run(workflow.generate("cosmic cat"))
    for design_id in ("design-0", "design-1", "design-2"):
        workflow.select_design(design_id)
    before = workflow.state
    notices_before = len(workflow.notices)

    after = workflow.select_design("design-3")

    assert after is before
    assert after.selected == ("design-0", "design-1", "design-2")
    assert len(workflow.notices) == notices_before + 1
    assert workflow.notices[-1].level == "error"


def test_configure_resolves_variant_and_unknown_combination_is_refused():
    workflow = _configured(_workflow(), "design-0")
    state = workflow.state

    assert state.configs["design-0"].variant.id == 101
    assert state.selected == ("design-0",)

    workflow.configure_design("design-1", color="Purple", size="XS")
    assert workflow.state is state
    assert "Purple" in workflow.notices[-1].message


def test_deselect_drops_configuration():
    workflow = _configured(_workflow(), "design-0")

    state = workflow.deselect_design("design-0")

    assert state.selected == ()
    assert "design-0" not in state.configs


def test_two_designs_create_two_products_sequentially_then_payment():
    products = RecordingProducts()
    workflow = _configured(_workflow(products=products), "design-0", "design-1")

    state = asyncio.run(workflow.create_products())

    assert products.events == ["start 1", "end 1", "start 2", "end 2"]
    assert isinstance(state, PaymentStep)
    assert isinstance(state.purchase, CustomPurchase)
    assert len(state.purchase.shirts) == 2
    assert [shirt.product.id for shirt in state.purchase.shirts] == ["prod_1", "prod_2"]


def test_creation_failure_deletes_partial_batch_and_returns_to_variants():
    products = RecordingProducts()
    products.fail_create_on = 2
    workflow = _configured(_workflow(products=products), "design-0", "design-1")
    variants_state = workflow.state

    state = asyncio.run(workflow.create_products())

    assert state is variants_state
    assert products.deleted == ["prod_1"]
    assert workflow.notices[-1].level == "error"


def test_create_without_configuration_is_refused():
    workflow = _workflow()
    asyncio.run(workflow.generate("cosmic cat"))
    workflow.select_design("design-0")

    state = asyncio.run(workflow.create_products())

    assert isinstance(state, VariantsStep)
    assert "color and size" in workflow.notices[-1].message


def test_cancel_attempts_every_delete_and_returns_to_variants():
    products = RecordingProducts()
    products.fail_delete_for = {"prod_1"}
    workflow = _configured(_workflow(products=products), "design-0", "design-1")
    asyncio.run(workflow.create_products())

    state = asyncio.run(workflow.cancel())

    assert products.deleted == ["prod_1", "prod_2"]
    assert isinstance(state, VariantsStep)
    assert state.selected == ("design-0", "design-1")


def test_custom_checkout_through_to_success():
    products = RecordingProducts()
    workflow = _at_stripe(_workflow(products=products))

    assert workflow.payment_total() == 2499
    assert isinstance(workflow.payment_succeeded("pi_1", amount=2499), ShippingStep)
    state = asyncio.run(workflow.submit_shipping(ADDRESS))

    assert isinstance(state, SuccessStep)
    assert state.order == {"id": "order_1"}
    assert products.orders[0]["line_items"] == [{"product_id": "prod_1", "variant_id": 101, "quantity": 1}]
    assert products.orders[0]["address"]["zip"] == "10001"


def test_unsuccessful_payment_status_keeps_stripe_step():
    workflow = _at_stripe(_workflow())

    state = workflow.payment_succeeded("pi_1", amount=2499, status="requires_payment_method")

    assert isinstance(state, StripeStep)
    assert workflow.notices[-1].level == "error"


def test_order_failure_returns_to_stripe():
    products = RecordingProducts()
    products.fail_order = True
    workflow = _at_stripe(_workflow(products=products))
    workflow.payment_succeeded("pi_1", amount=2499)

    state = asyncio.run(workflow.submit_shipping(ADDRESS))

    assert isinstance(state, StripeStep)
    assert state.payment_intent_id == "pi_1"


def test_featured_checkout_uses_structured_colour_and_cancel_resets_without_deletes():
    products = RecordingProducts()
    workflow = _workflow(products=products)

    state = workflow.start_featured_checkout({"id": "feat_1", "title": "Classic"}, VARIANTS[1])

    assert isinstance(state.purchase, FeaturedPurchase)
    assert state.purchase.color == "Black"
    assert state.purchase.line_items() == [{"product_id": "feat_1", "variant_id": 102, "quantity": 1}]

    assert isinstance(asyncio.run(workflow.cancel()), PromptStep)
    assert products.deleted == []


def test_featured_colour_is_none_without_options():
    purchase = FeaturedPurchase(product={"id": "feat_1"}, variant=Variant(id=5, title="Heather Grey / S"))

    assert purchase.color is None


def test_dev_bypass_requires_permission():
    workflow = _workflow()
    workflow.start_featured_checkout({"id": "feat_1"}, VARIANTS[0])

    with pytest.raises(WorkflowError, match="development mode"):
        workflow.dev_bypass_payment()

    allowed = _workflow(allow_dev_bypass=True)
    allowed.start_featured_checkout({"id": "feat_1"}, VARIANTS[0])
    state = allowed.dev_bypass_payment()
    assert isinstance(state, ShippingStep)
    assert state.payment_intent_id.startswith("dev_free_payment_")


def test_invalid_transitions_raise():
    workflow = _workflow()

    with pytest.raises(InvalidTransition):
        workflow.proceed_to_payment()
    with pytest.raises(InvalidTransition):
        proceed_to_stripe(PromptStep())
    with pytest.raises(InvalidTransition):
        asyncio.run(workflow.submit_shipping(ADDRESS))


def test_payment_cannot_exist_without_a_product():
    with pytest.raises(ValueError):
        FeaturedPurchase(product={}, variant=VARIANTS[0])
    with pytest.raises(ValueError):
        CustomPurchase(shirts=(), origin=None)  # type: ignore[arg-type]


def test_snapshot_and_reset():
    workflow = _configured(_workflow(), "design-0")

    snapshot = workflow.snapshot()
    assert snapshot["step"] == "variants"
    assert snapshot["selectedDesignIds"] == ["design-0"]
    assert snapshot["designConfigs"]["design-0"]["variant"]["id"] == 101

    assert isinstance(workflow.reset(), PromptStep)
    assert workflow.snapshot()["step"] == "prompt"


def test_registry_tracks_sessions():
    registry = WorkflowRegistry(factory=_workflow)
    workflow = registry.create()

    assert registry.get(workflow.session_id) is workflow
    assert len(registry) == 1
    assert registry.delete(workflow.session_id) is True
    with pytest.raises(KeyError):
        registry.get(workflow.session_id)


def test_creation_with_malformed_price_config_returns_to_variants():
    products = RecordingProducts()
    workflow = _configured(_workflow(products=products, config={"shirtPrice": "24.99"}), "design-0")
    variants_state = workflow.state

    state = asyncio.run(workflow.create_products())

    assert state is variants_state
    assert not isinstance(state, CreatingStep)
    assert products.events == []
    assert workflow.notices[-1].level == "error"


def test_payment_intent_of_another_checkout_is_rejected():
    first = _at_stripe(_workflow(), "pi_first")
    second = _at_stripe(_workflow(), "pi_second")

    with pytest.raises(WorkflowError, match="does not belong"):
        second.payment_succeeded("pi_first", amount=2499)

    assert isinstance(second.state, StripeStep)
    assert isinstance(first.payment_succeeded("pi_first", amount=2499), ShippingStep)


def test_payment_needs_an_intent_created_for_the_checkout():
    workflow = _configured(_workflow(), "design-0")
    asyncio.run(workflow.create_products())
    workflow.proceed_to_payment()

    with pytest.raises(WorkflowError, match="does not belong"):
        workflow.payment_succeeded("pi_1", amount=2499)


def test_payment_amount_must_match_order_total():
    workflow = _at_stripe(_workflow())

    with pytest.raises(WorkflowError, match="order total"):
        workflow.payment_succeeded("pi_1", amount=50)

    assert isinstance(workflow.state, StripeStep)


def test_confirmed_payment_cannot_be_replayed():
    workflow = _at_stripe(_workflow())
    workflow.payment_succeeded("pi_1", amount=2499)
    asyncio.run(workflow.submit_shipping(ADDRESS))

    with pytest.raises(InvalidTransition):
        workflow.payment_succeeded("pi_1", amount=2499)


def test_returning_to_summary_drops_the_payment_intent():
    workflow = _at_stripe(_workflow())

    workflow.back_to_summary()
    workflow.proceed_to_payment()

    assert workflow.state.payment_intent_id is None
    assert "paymentIntentId" not in workflow.snapshot()


def test_custom_total_sums_created_product_prices():
    products = RecordingProducts()
    workflow = _configured(_workflow(products=products, config={"shirtPrice": 2999}), "design-0", "design-1")
    asyncio.run(workflow.create_products())
    workflow.proceed_to_payment()

    assert workflow.payment_total() == 5998
    assert workflow.snapshot()["checkout"]["total"] == 5998


def test_dev_bypass_permission_is_read_when_bypassing():
    debug_mode = {"enabled": False}
    workflow = _workflow(allow_dev_bypass=lambda: debug_mode["enabled"])
    workflow.start_featured_checkout({"id": "feat_1"}, VARIANTS[0])

    with pytest.raises(WorkflowError, match="development mode"):
        workflow.dev_bypass_payment()

    debug_mode["enabled"] = True
    assert isinstance(workflow.dev_bypass_payment(), ShippingStep)


def test_failed_order_after_dev_bypass_needs_real_payment():
    products = RecordingProducts()
    products.fail_order = True
    workflow = _workflow(products=products, allow_dev_bypass=True)
    workflow.start_featured_checkout({"id": "feat_1"}, VARIANTS[0])
    workflow.dev_bypass_payment()

    state = asyncio.run(workflow.submit_shipping(ADDRESS))

    assert isinstance(state, StripeStep)
    assert state.payment_intent_id is None


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_registry_evicts_idle_sessions():
    clock = FakeClock()
    registry = WorkflowRegistry(factory=_workflow, idle_ttl_seconds=600, clock=clock)
    idle = registry.create()
    active = registry.create()

    clock.now = 500
    registry.get(active.session_id)
    clock.now = 900
    registry.create()

    assert len(registry) == 2
    assert registry.get(active.session_id) is active
    with pytest.raises(KeyError):
        registry.get(idle.session_id)
