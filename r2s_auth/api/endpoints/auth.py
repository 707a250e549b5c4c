from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status

import r2s_auth.schemas.auth as schemas
from r2s_auth.core.dependencies import get_auth_service, get_bearer_token
from r2s_auth.services.auth_service import AuthService

router = APIRouter()
group_tags: List[str] = ["Auth"]


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@router.get(
    "/nonce",
    tags=group_tags,
    response_model=schemas.NonceResponse,
    status_code=status.HTTP_200_OK,
)
def request_nonce(
    address: str = Query(default="", description="Wallet address"),
    chain_id: Optional[str] = Query(default=None, alias="chainId", description="Chain id, default 1001"),
    auth_service: AuthService = Depends(get_auth_service),
) -> schemas.NonceResponse:
    """Generate a one-time challenge for a wallet address."""
    issued = auth_service.issue_challenge(address, chain_id)
    return schemas.NonceResponse(
        nonce=issued.nonce,
        message=issued.message,
        request_id=issued.request_id,
        expires_at=issued.expires_at,
    )


@router.post("/verify", tags=group_tags, response_model=schemas.AuthResponse)
def verify_wallet(
    body: schemas.VerifyRequest,
    request: Request,
    user_agent: Optional[str] = Header(None, alias="User-Agent"),
    auth_service: AuthService = Depends(get_auth_service),
) -> schemas.AuthResponse:
    """Verify a signed challenge and return an access/refresh token pair."""
    result = auth_service.verify_and_login(
        body.address,
        body.signature,
        body.message,
        body.request_id,
        ip=_client_ip(request),
        user_agent=user_agent,
    )
    return schemas.AuthResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        user=schemas.WalletUser(
            id=result.user.id,
            address=result.user.address,
            kyc_tier=result.user.kyc_tier,
            social_linked=result.user.social_linked,
        ),
    )


@router.post("/line", tags=group_tags, response_model=schemas.LineLoginResponse)
def line_login(
    body: schemas.LineLoginRequest,
    request: Request,
    user_agent: Optional[str] = Header(None, alias="User-Agent"),
    auth_service: AuthService = Depends(get_auth_service),
) -> schemas.LineLoginResponse:
    result = auth_service.social_login(
        body.id_token, body.access_token, ip=_client_ip(request), user_agent=user_agent
    )
    return schemas.LineLoginResponse(
        token=result.token,
        refresh_token=result.refresh_token,
        user=schemas.LineUser(
            id=result.user.id,
            social_id=result.user.social_id,
            display_name=result.user.display_name,
            avatar_url=result.user.avatar_url,
            wallet_linked=result.user.wallet_linked,
            kyc_tier=result.user.kyc_tier,
        ),
    )


@router.post("/refresh", tags=group_tags, response_model=schemas.RefreshResponse)
def refresh_token(
    body: schemas.RefreshRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> schemas.RefreshResponse:
    return schemas.RefreshResponse(access_token=auth_service.refresh(body.refresh_token))


@router.post("/logout", tags=group_tags, response_model=schemas.MessageResponse)
def logout(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> schemas.MessageResponse:
    auth_service.logout(token)
    return schemas.MessageResponse(message="Logged out successfully")


@router.get("/validate", tags=group_tags, response_model=schemas.ValidateResponse)
def validate_token(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> schemas.ValidateResponse:
    """Validate an access token (internal use by other services)."""
    claims = auth_service.validate(token)
    return schemas.ValidateResponse(claims=claims.to_dict())
