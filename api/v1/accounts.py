"""
Connected account endpoints: OAuth connect, list, refresh and disconnect
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Cookie, Depends, Response, status

from api.deps import Services, get_services
from schemas.publishing import CallbackParams
from schemas.responses import AccountResponse, ConnectStartResponse
from services.platforms.base import ensure_provider
from services.platforms.csrf import STATE_COOKIE_NAME
from utils.auth import get_current_user_id
from utils.exceptions import SocialFlowException, handle_platform_error

router = APIRouter()


@router.get("/providers", response_model=List[str])
async def list_providers(services: Services = Depends(get_services)):
    """List all supported providers"""
    return services.registry.list_platforms()


@router.post("/{provider}/connect", response_model=ConnectStartResponse)
async def begin_connect(
    provider: str,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
) -> ConnectStartResponse:
    """Start the provider's OAuth handshake"""
    try:
        start = await services.connections.begin_connect(provider, user_id)
    except SocialFlowException as e:
        raise handle_platform_error(e, provider)

    if start.state_cookie:
        response.set_cookie(
            STATE_COOKIE_NAME,
            start.state_cookie,
            max_age=services.config.csrf_state_ttl,
            httponly=True,
            secure=services.config.environment == "production",
            samesite="lax"
        )
    return ConnectStartResponse(provider=start.provider, authorization_url=start.authorization_url)


@router.get("/{provider}/callback", response_model=AccountResponse)
async def complete_connect(
    provider: str,
    response: Response,
    params: CallbackParams = Depends(),
    oauth_state: Optional[str] = Cookie(None),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
) -> AccountResponse:
    """Complete the handshake with the parameters the provider redirected back with"""
    try:
        account = await services.connections.complete_connect(provider, params, user_id, oauth_state)
    except SocialFlowException as e:
        raise handle_platform_error(e, provider)
    finally:
        response.delete_cookie(STATE_COOKIE_NAME)
    return AccountResponse.from_account(account)


@router.get("", response_model=List[AccountResponse])
async def list_accounts(
    provider: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
) -> List[AccountResponse]:
    """List the caller's connected accounts"""
    try:
        accounts = await services.vault.list_accounts(user_id, ensure_provider(provider) if provider else None)
    except SocialFlowException as e:
        raise handle_platform_error(e, provider or "all")
    return [AccountResponse.from_account(account) for account in accounts]


@router.post("/{account_id}/refresh", response_model=AccountResponse)
async def refresh_account(
    account_id: UUID,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
) -> AccountResponse:
    """Refresh an account's provider token"""
    try:
        account = await services.vault.get_owned_account(account_id, user_id)
        account = await services.connections.refresh_account(account)
    except SocialFlowException as e:
        raise handle_platform_error(e, "account")
    return AccountResponse.from_account(account)


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect_account(
    account_id: UUID,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
) -> Response:
    """Disconnect an account and revoke provider access where possible"""
    try:
        await services.connections.disconnect(account_id, user_id)
    except SocialFlowException as e:
        raise handle_platform_error(e, "account")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
