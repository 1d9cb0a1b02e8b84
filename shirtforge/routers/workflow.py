from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import APIRouter, Depends, HTTPException, status
from starlette.concurrency import run_in_threadpool

from shirtforge.deps import get_payments, get_storefront, get_workflows
from shirtforge.schemas import (
    ConfigureDesignRequest,
    FeaturedCheckoutRequest,
    GenerateDesignsRequest,
    PaymentSucceededRequest,
    ShippingAddress,
)
from shirtforge.security import rate_limited
from shirtforge.services.catalog_search import normalize_variant
from shirtforge.services.payments import PaymentConfigurationError, PaymentProcessorError, PaymentService
from shirtforge.services.storefront import StorefrontService
from shirtforge.services.workflow import InvalidTransition, OrderWorkflow, WorkflowError, WorkflowRegistry

router = APIRouter(prefix="/api/workflow/sessions", tags=["workflow"])


def get_session(session_id: str, registry: WorkflowRegistry = Depends(get_workflows)) -> OrderWorkflow:
    try:
        return registry.get(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workflow session not found") from exc


@contextmanager
def _transition_errors() -> Iterator[None]:
    try:
        yield
    except InvalidTransition as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except WorkflowError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post("", status_code=status.HTTP_201_CREATED)
def create_session(registry: WorkflowRegistry = Depends(get_workflows)) -> dict[str, Any]:
    return registry.create().snapshot()


@router.get("/{session_id}")
def get_session_state(workflow: OrderWorkflow = Depends(get_session)) -> dict[str, Any]:
    return workflow.snapshot()


@router.delete("/{session_id}")
def delete_session(session_id: str, registry: WorkflowRegistry = Depends(get_workflows)) -> dict[str, bool]:
    if not registry.delete(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workflow session not found")
    return {"ok": True}


@router.post("/{session_id}/generate", dependencies=[Depends(rate_limited("image"))])
async def generate_designs(
    payload: GenerateDesignsRequest,
    workflow: OrderWorkflow = Depends(get_session),
) -> dict[str, Any]:
    if not payload.prompt:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Prompt is required")
    with _transition_errors():
        await workflow.generate(payload.prompt)
    return workflow.snapshot()


@router.post("/{session_id}/designs/{design_id}/select")
def select_design(design_id: str, workflow: OrderWorkflow = Depends(get_session)) -> dict[str, Any]:
    with _transition_errors():
        workflow.select_design(design_id)
    return workflow.snapshot()


@router.delete("/{session_id}/designs/{design_id}/select")
def deselect_design(design_id: str, workflow: OrderWorkflow = Depends(get_session)) -> dict[str, Any]:
    with _transition_errors():
        workflow.deselect_design(design_id)
    return workflow.snapshot()


@router.put("/{session_id}/designs/{design_id}/config")
def configure_design(
    design_id: str,
    payload: ConfigureDesignRequest,
    workflow: OrderWorkflow = Depends(get_session),
) -> dict[str, Any]:
    with _transition_errors():
        workflow.configure_design(design_id, color=payload.color, size=payload.size)
    return workflow.snapshot()


@router.post("/{session_id}/products")
async def create_products(workflow: OrderWorkflow = Depends(get_session)) -> dict[str, Any]:
    with _transition_errors():
        await workflow.create_products()
    return workflow.snapshot()


@router.post("/{session_id}/featured-checkout")
async def start_featured_checkout(
    payload: FeaturedCheckoutRequest,
    workflow: OrderWorkflow = Depends(get_session),
    storefront: StorefrontService = Depends(get_storefront),
) -> dict[str, Any]:
    product = await storefront.product_details(payload.productId)
    variant = next(
        (
            normalize_variant(raw)
            for raw in product.get("variants") or []
            if raw.get("id") == payload.variantId
        ),
        None,
    )
    if variant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Variant not found for product")
    with _transition_errors():
        workflow.start_featured_checkout(product, variant)
    return workflow.snapshot()


@router.post("/{session_id}/payment")
def proceed_to_payment(workflow: OrderWorkflow = Depends(get_session)) -> dict[str, Any]:
    with _transition_errors():
        workflow.proceed_to_payment()
    return workflow.snapshot()


@router.post("/{session_id}/summary")
def back_to_summary(workflow: OrderWorkflow = Depends(get_session)) -> dict[str, Any]:
    with _transition_errors():
        workflow.back_to_summary()
    return workflow.snapshot()


@router.post("/{session_id}/payment-intent", dependencies=[Depends(rate_limited("payment"))])
async def create_payment_intent(
    workflow: OrderWorkflow = Depends(get_session),
    payments: PaymentService = Depends(get_payments),
) -> dict[str, Any]:
    with _transition_errors():
        amount = workflow.payment_total()
    try:
        intent = await run_in_threadpool(
            payments.create_payment_intent,
            amount=amount,
            currency="usd",
            metadata={"sessionId": workflow.session_id},
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PaymentConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    except PaymentProcessorError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    with _transition_errors():
        workflow.attach_payment_intent(intent["id"])
    return {**workflow.snapshot(), "clientSecret": intent["client_secret"]}


@router.post("/{session_id}/payment-succeeded")
async def payment_succeeded(
    payload: PaymentSucceededRequest,
    workflow: OrderWorkflow = Depends(get_session),
    payments: PaymentService = Depends(get_payments),
) -> dict[str, Any]:
    try:
        intent = await run_in_threadpool(payments.get_payment_intent, payload.paymentIntentId)
    except PaymentConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    except PaymentProcessorError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    with _transition_errors():
        workflow.payment_succeeded(payload.paymentIntentId, amount=intent["amount"], status=intent["status"])
    return workflow.snapshot()


@router.post("/{session_id}/dev-bypass")
def dev_bypass_payment(workflow: OrderWorkflow = Depends(get_session)) -> dict[str, Any]:
    try:
        workflow.dev_bypass_payment()
    except InvalidTransition as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except WorkflowError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return workflow.snapshot()


@router.post("/{session_id}/shipping")
async def submit_shipping(
    payload: ShippingAddress,
    workflow: OrderWorkflow = Depends(get_session),
) -> dict[str, Any]:
    with _transition_errors():
        await workflow.submit_shipping(payload)
    return workflow.snapshot()


@router.post("/{session_id}/cancel")
async def cancel_checkout(workflow: OrderWorkflow = Depends(get_session)) -> dict[str, Any]:
    with _transition_errors():
        await workflow.cancel()
    return workflow.snapshot()


@router.post("/{session_id}/reset")
def reset_session(workflow: OrderWorkflow = Depends(get_session)) -> dict[str, Any]:
    workflow.reset()
    return workflow.snapshot()
