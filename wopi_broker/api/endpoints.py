"""
WOPI broker API endpoints.
Thin HTTP glue over the token manager, discovery cache and logout listener.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response

from ..domain.exceptions import PermissionDeniedError
from ..domain.models import WopiToken
from ..infrastructure.config import settings
from ..infrastructure.dependencies import (
    get_current_discovery_manager,
    get_current_logout_listener,
    get_current_token_manager,
)
from ..infrastructure.discovery_manager import DiscoveryManager
from ..infrastructure.logout_listener import UserLoggedOutListener
from ..infrastructure.token_manager import TokenManager
from .cookies import ResponseCookieJar
from .dto import (
    GenerateTokenRequest,
    GenerateTokenResponse,
    GuestNameRequest,
    GuestNameResponse,
    LogoutResponse,
    RemoteUpgradeRequest,
    TokenStateResponse,
)

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/wopi", tags=["wopi"])


def _is_secure(request: Request) -> bool:
    return request.url.scheme == "https"


@router.post("/token", response_model=GenerateTokenResponse)
async def generate_token(
    request: GenerateTokenRequest,
    token_manager: TokenManager = Depends(get_current_token_manager),
    x_user_id: Optional[str] = Header(default=None)
) -> GenerateTokenResponse:
    """
    Issue an access token for a file.
    The X-User-Id header carries the authenticated session user; without it
    a share token is required.
    """
    if x_user_id is None and request.share_token is None:
        raise PermissionDeniedError(
            "A session or a share token is required",
            details={"file_id": request.file_id}
        )

    wopi = await token_manager.generate_wopi_token(
        request.file_id,
        share_token=request.share_token,
        direct=request.direct,
        user_id=x_user_id,
        guest_name=request.guest_name,
    )

    base_url = (wopi.server_host or settings.wopi_base_url).rstrip("/")
    return GenerateTokenResponse(
        access_token=wopi.token,
        access_token_ttl=wopi.ttl_ms,
        token_type=wopi.token_type.value,
        wopi_src=f"{base_url}/wopi/files/{wopi.file_id}",
    )


@router.post("/token/{access_token}/guest-name", response_model=GuestNameResponse)
async def update_guest_name(
    access_token: str,
    request: GuestNameRequest,
    token_manager: TokenManager = Depends(get_current_token_manager)
) -> GuestNameResponse:
    """Rename the guest behind a token."""
    wopi = await token_manager.update_guest_name(access_token, request.guest_name)
    return GuestNameResponse(
        token_type=wopi.token_type.value,
        guest_displayname=wopi.guest_displayname,
    )


@router.post("/token/{access_token}/remote", response_model=TokenStateResponse)
async def upgrade_to_remote(
    access_token: str,
    request: RemoteUpgradeRequest,
    token_manager: TokenManager = Depends(get_current_token_manager)
) -> TokenStateResponse:
    """
    Federate an initiator token once the partner server has answered.
    Tokens of any other type are returned as they are.
    """
    wopi = await token_manager.get_wopi_for_token(access_token)
    remote_wopi = WopiToken(
        token=request.remote_server_token,
        file_id=wopi.file_id,
        owner_uid=None,
        editor_uid=request.editor_uid,
        expiry=wopi.expiry,
        can_write=request.can_write,
        hide_download=request.hide_download,
        guest_displayname=request.guest_displayname,
    )

    wopi = await token_manager.upgrade_to_remote_token(
        wopi,
        remote_wopi,
        request.share_token,
        request.remote_server,
        request.remote_server_token,
    )
    return TokenStateResponse(
        token_type=wopi.token_type.value,
        can_write=wopi.can_write,
        hide_download=wopi.hide_download,
        guest_displayname=wopi.guest_displayname,
        remote_server=wopi.remote_server,
    )


@router.get("/discovery")
async def get_discovery(
    discovery_manager: DiscoveryManager = Depends(get_current_discovery_manager)
) -> Response:
    discovery = await discovery_manager.get()
    return Response(content=discovery, media_type="text/xml")


@router.post("/discovery/refetch", status_code=204)
async def refetch_discovery(
    discovery_manager: DiscoveryManager = Depends(get_current_discovery_manager)
) -> Response:
    await discovery_manager.refetch()
    logger.info("Discovery cache cleared")
    return Response(status_code=204)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    request: Request,
    response: Response,
    listener: UserLoggedOutListener = Depends(get_current_logout_listener)
) -> LogoutResponse:
    """Expire the passphrase cookie and its session credential."""
    cookies = ResponseCookieJar(request, response)
    invalidated = await listener.handle(cookies, secure=_is_secure(request))
    return LogoutResponse(invalidated=invalidated)
