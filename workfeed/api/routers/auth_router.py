"""Service connection API routes"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from workfeed.api.dependencies import get_container, parse_provider
from workfeed.container import Container
from workfeed.errors import (
    AuthError,
    StorageError,
    UnsupportedProviderError,
    UpstreamError,
    UserCancelledError,
)
from workfeed.models import Provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# ============================================
# Request/Response Models
# ============================================


class ConnectResponse(BaseModel):
    provider: str
    authenticated: bool
    account_id: str | None = None
    display_name: str | None = None


class AccountsResponse(BaseModel):
    provider: str
    accounts: list[str]
    active: str | None = None


class ActiveAccountRequest(BaseModel):
    account_id: str


def _multi_account(provider: str) -> Provider:
    p = parse_provider(provider)
    if not p.supports_multiple_accounts:
        raise HTTPException(status_code=400, detail=f"{p.display_name} has a single account")
    return p


# ============================================
# Endpoints
# ============================================


@router.post("/{provider}/connect", response_model=ConnectResponse)
async def connect(provider: str, container: Container = Depends(get_container)):
    """Run the browser consent flow for a provider.

    Returns 204 when the user cancels; cancellation is not an error.
    """
    p = parse_provider(provider)
    try:
        config = container.config(p)
        if not config.is_configured:
            raise HTTPException(status_code=400, detail=f"{p.display_name} client id not configured")

        if p.supports_multiple_accounts:
            identity = await container.oauth.authorize_multi_account(p, config)
            return ConnectResponse(
                provider=p.value,
                authenticated=True,
                account_id=identity.account_id,
                display_name=identity.display_name,
            )

        await container.oauth.authorize(p, config)
        return ConnectResponse(provider=p.value, authenticated=True)

    except UserCancelledError:
        return Response(status_code=204)
    except UnsupportedProviderError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except AuthError as e:
        logger.warning(f"{p.display_name} connect failed: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e
    except UpstreamError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    except StorageError as e:
        logger.error(f"{p.display_name} credentials could not be stored: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.delete("/{provider}", status_code=204)
async def disconnect(provider: str, container: Container = Depends(get_container)) -> Response:
    p = parse_provider(provider)
    if not p.uses_oauth:
        raise HTTPException(status_code=400, detail=f"{p.display_name} does not use OAuth")
    try:
        container.oauth.disconnect(p)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return Response(status_code=204)


@router.get("/{provider}/accounts", response_model=AccountsResponse)
async def list_accounts(provider: str, container: Container = Depends(get_container)) -> AccountsResponse:
    p = _multi_account(provider)
    try:
        accounts = container.credentials.list_accounts(p)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return AccountsResponse(
        provider=p.value, accounts=accounts, active=container.settings_store.active_account
    )


@router.put("/{provider}/accounts/active", response_model=AccountsResponse)
async def set_active_account(
    provider: str,
    request: ActiveAccountRequest,
    container: Container = Depends(get_container),
) -> AccountsResponse:
    p = _multi_account(provider)
    account = request.account_id.lower()
    accounts = container.credentials.list_accounts(p)
    if account not in accounts:
        raise HTTPException(status_code=404, detail=f"Unknown account '{request.account_id}'")

    container.settings_store.set_active_account(account)
    logger.info(f"{p.display_name} active account: {account}")
    return AccountsResponse(provider=p.value, accounts=accounts, active=account)


@router.delete("/{provider}/accounts/{account_id}", status_code=204)
async def disconnect_account(
    provider: str, account_id: str, container: Container = Depends(get_container)
) -> Response:
    p = _multi_account(provider)
    try:
        container.oauth.disconnect_account(p, account_id)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return Response(status_code=204)
