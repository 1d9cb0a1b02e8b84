from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from shirtforge.deps import get_admin_store
from shirtforge.schemas import AdminConfigUpdateRequest, AdminConfigUpdateResponse
from shirtforge.services.admin_config import AdminAuthError, AdminConfigStore

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/config")
def get_config(store: AdminConfigStore = Depends(get_admin_store)) -> dict[str, Any]:
    return store.public_view()


@router.post("/config", response_model=AdminConfigUpdateResponse)
def update_config(
    payload: AdminConfigUpdateRequest,
    request: Request,
    store: AdminConfigStore = Depends(get_admin_store),
) -> AdminConfigUpdateResponse:
    try:
        config, persisted = store.update(password=payload.password, partial=payload.config)
    except AdminAuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    request.app.state.admin_config_client.invalidate()
    request.app.state.storefront.invalidate_product_listings()
    return AdminConfigUpdateResponse(
        success=True,
        message="Configuration saved successfully" if persisted else "Configuration updated (not persisted to disk)",
        config=config,
        persisted=persisted,
    )
