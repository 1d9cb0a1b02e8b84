from __future__ import annotations

from fastapi import Request

from shirtforge.services.admin_config import AdminConfigStore
from shirtforge.services.catalog_search import CatalogService
from shirtforge.services.gateway import GatewayService
from shirtforge.services.payments import PaymentService
from shirtforge.services.product_creation import ProductService
from shirtforge.services.storefront import StorefrontService
from shirtforge.services.workflow import WorkflowRegistry


def get_gateway(request: Request) -> GatewayService:
    return request.app.state.gateway


def get_catalog(request: Request) -> CatalogService:
    return request.app.state.catalog


def get_storefront(request: Request) -> StorefrontService:
    return request.app.state.storefront


def get_products(request: Request) -> ProductService:
    return request.app.state.products


def get_payments(request: Request) -> PaymentService:
    return request.app.state.payments


def get_admin_store(request: Request) -> AdminConfigStore:
    return request.app.state.admin_store


def get_workflows(request: Request) -> WorkflowRegistry:
    return request.app.state.workflows
