from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_account_registry, get_auth_service
from core.logging import get_api_logger_safe
from services.accounts.models import AccountCreate, AccountUpdate
from services.accounts.registry import AccountRegistry
from services.auth.service import AuthService

router = APIRouter(prefix="/api/accounts", tags=["Accounts"])
logger = get_api_logger_safe("api.accounts")


@router.get("")
async def list_accounts(
    registry: AccountRegistry = Depends(get_account_registry),
) -> List[Dict[str, Any]]:
    """Accounts without their API secret or access token"""
    return [view.model_dump(mode="json") for view in registry.list_accounts()]


@router.post("", status_code=201)
async def add_account(
    request: AccountCreate,
    registry: AccountRegistry = Depends(get_account_registry),
) -> Dict[str, Any]:
    account = registry.add_account(request)
    return {"id": account.id, "name": account.name}


@router.post("/reload")
async def reload_accounts(
    registry: AccountRegistry = Depends(get_account_registry),
) -> Dict[str, Any]:
    count = registry.reload()
    return {"count": count, "enabled": len(registry.get_enabled_accounts())}


@router.get("/login-urls")
async def login_urls(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    """Per-account Zerodha login URLs plus the redirect URL to register with Kite"""
    return auth_service.login_urls(str(request.url_for("zerodha_callback")))


@router.put("/{account_id}")
async def update_account(
    account_id: str,
    request: AccountUpdate,
    registry: AccountRegistry = Depends(get_account_registry),
) -> Dict[str, Any]:
    registry.update_account(account_id, request)
    return {"id": account_id, "updated": True}


@router.delete("/{account_id}")
async def delete_account(
    account_id: str,
    registry: AccountRegistry = Depends(get_account_registry),
) -> Dict[str, Any]:
    registry.delete_account(account_id)
    return {"id": account_id, "deleted": True}
