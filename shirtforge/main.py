from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from shirtforge.config import missing_required_settings, settings
from shirtforge.printify_api import PrintifyApiClient, PrintifyApiError
from shirtforge.routers import admin, catalog, printify, products, stripe, workflow
from shirtforge.security import FixedWindowRateLimiter, RateLimitExceeded, SecurityHeadersMiddleware, rate_limited
from shirtforge.services.admin_config import AdminConfigClient, AdminConfigStore
from shirtforge.services.catalog_search import CatalogService
from shirtforge.services.gateway import GatewayService
from shirtforge.services.image_generation import (
    HuggingFaceGenerator,
    ImageGenerationService,
    PollinationsGenerator,
    StockImageGenerator,
)
from shirtforge.services.image_processing import ImageValidationError
from shirtforge.services.payments import PaymentService
from shirtforge.services.product_creation import ProductService
from shirtforge.services.storefront import RefreshThrottledError, StorefrontService
from shirtforge.services.workflow import HttpImagePreloader, OrderWorkflow, WorkflowRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _app_lifespan(app: FastAPI) -> AsyncIterator[None]:
    missing = missing_required_settings()
    if missing:
        logger.error("Missing required environment variables", extra={"missing": missing})
        if settings.is_production:
            raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")
    app.state.admin_store.load()
    logger.info(
        "Storefront API started",
        extra={"environment": settings.ENVIRONMENT, "shop_id": settings.PRINTIFY_SHOP_ID},
    )
    yield


def _build_rate_limiters() -> dict[str, FixedWindowRateLimiter]:
    return {
        "general": FixedWindowRateLimiter(
            name="general",
            limit=settings.GENERAL_RATE_LIMIT,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            message="Too many requests from this IP, please try again later.",
        ),
        "payment": FixedWindowRateLimiter(
            name="payment",
            limit=settings.PAYMENT_RATE_LIMIT,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            message="Too many payment attempts, please try again later.",
        ),
        "image": FixedWindowRateLimiter(
            name="image",
            limit=settings.IMAGE_RATE_LIMIT,
            window_seconds=settings.IMAGE_RATE_LIMIT_WINDOW_SECONDS,
            message="Too many image requests, please try again later.",
        ),
    }


def _install_services(
    app: FastAPI,
    *,
    printify_client: PrintifyApiClient,
    admin_store: AdminConfigStore,
    payments: PaymentService,
) -> None:
    async def fetch_admin_config() -> dict[str, Any]:
        return admin_store.public_view()

    gateway = GatewayService(client=printify_client)
    catalog_service = CatalogService(client=printify_client)
    storefront = StorefrontService(client=printify_client, featured_ids=admin_store.featured_product_ids)
    product_service = ProductService(client=printify_client)
    images = ImageGenerationService(
        generators=[StockImageGenerator(), PollinationsGenerator(), HuggingFaceGenerator()],
    )
    admin_config_client = AdminConfigClient(fetch=fetch_admin_config)

    def dev_bypass_enabled() -> bool:
        # evaluated per bypass attempt, not per session
        return not settings.is_production or bool(admin_store.get().get("debugMode"))

    def new_workflow() -> OrderWorkflow:
        return OrderWorkflow(
            images=images,
            catalog=catalog_service,
            products=product_service,
            admin_config=admin_config_client,
            preload_image=HttpImagePreloader(timeout=settings.IMAGE_REQUEST_TIMEOUT_SECONDS),
            allow_dev_bypass=dev_bypass_enabled,
        )

    app.state.printify_client = printify_client
    app.state.gateway = gateway
    app.state.catalog = catalog_service
    app.state.storefront = storefront
    app.state.products = product_service
    app.state.payments = payments
    app.state.images = images
    app.state.admin_store = admin_store
    app.state.admin_config_client = admin_config_client
    app.state.workflows = WorkflowRegistry(
        factory=new_workflow,
        idle_ttl_seconds=settings.WORKFLOW_SESSION_IDLE_SECONDS,
    )
    app.state.rate_limiters = _build_rate_limiters()


def create_app(
    *,
    printify_client: PrintifyApiClient | None = None,
    admin_config_path: Path | None = None,
    payments: PaymentService | None = None,
) -> FastAPI:
    app = FastAPI(
        title="Shirtforge Storefront API",
        default_response_class=ORJSONResponse,
        lifespan=_app_lifespan,
    )

    _install_services(
        app,
        printify_client=printify_client or PrintifyApiClient(),
        admin_store=AdminConfigStore(
            path=admin_config_path or settings.admin_config_path,
            password=settings.ADMIN_PASSWORD,
        ),
        payments=payments or PaymentService(),
    )

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(_request: Request, exc: RateLimitExceeded) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=429,
            content={"detail": str(exc), "retryAfter": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(RefreshThrottledError)
    async def refresh_throttled_handler(_request: Request, exc: RefreshThrottledError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=429,
            content={"detail": str(exc), "retryAfter": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(PrintifyApiError)
    async def printify_error_handler(_request: Request, exc: PrintifyApiError) -> ORJSONResponse:
        content: dict[str, Any] = {"detail": str(exc)}
        headers = None
        if exc.retry_after is not None:
            content["retryAfter"] = exc.retry_after
            headers = {"Retry-After": str(exc.retry_after)}
        elif exc.is_rate_limited:
            content["retryAfter"] = 60
        return ORJSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(ImageValidationError)
    async def image_validation_handler(_request: Request, exc: ImageValidationError) -> ORJSONResponse:
        return ORJSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        detail = "Internal server error." if settings.is_production else (str(exc) or "Internal server error.")
        return ORJSONResponse(status_code=500, content={"detail": detail})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/api/cache-stats")
    def cache_stats() -> dict[str, Any]:
        return {
            "gateway": app.state.gateway.cache.stats(),
            "catalog": app.state.catalog.cache.stats(),
            "products": app.state.storefront.cache.stats(),
            "refreshRateLimit": app.state.storefront.rate_limit_cache.stats(),
        }

    general_limit = [Depends(rate_limited("general"))]
    app.include_router(printify.router, dependencies=general_limit)
    app.include_router(catalog.router, dependencies=general_limit)
    app.include_router(products.router, dependencies=general_limit)
    app.include_router(stripe.router, dependencies=general_limit)
    app.include_router(admin.router, dependencies=general_limit)
    app.include_router(workflow.router, dependencies=general_limit)

    return app


app = create_app()
