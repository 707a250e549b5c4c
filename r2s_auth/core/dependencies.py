"""
FastAPI Authentication Dependencies
This module provides FastAPI dependency functions that services mount on their own
routes to authenticate the bearer token through the auth service.
Usage in endpoints:
    @router.get("/protected")
    def protected_route(claims: TokenClaims = Depends(get_current_claims)):
        return {"user": claims.user_id}
Flow:
1. Client sends request with Authorization: Bearer <token> header
2. FastAPI calls get_current_claims() dependency
3. extract_bearer() pulls the token out of the header
4. AuthService.validate() checks revocation, signature, session and expiry
5. Returns the token claims to the route handler
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from r2s_auth.core.errors import AuthError
from r2s_auth.core.jwt_utils import TokenClaims
from r2s_auth.services.auth_service import AuthService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def extract_bearer(authorization: Optional[str]) -> str:
    """
    Extract the token from an Authorization header.
    Supports both "Bearer <token>" and plain token formats.
    Raises:
        HTTPException 401: If the header is missing or empty
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
        )

    authorization = authorization.strip()
    if authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    else:
        token = authorization
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header",
        )
    return token


def get_bearer_token(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> str:
    return extract_bearer(authorization)


def get_current_claims(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenClaims:
    """Validate the bearer token and return its claims, mapping auth errors to HTTP errors."""
    try:
        return auth_service.validate(token)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


def get_current_user_id(claims: TokenClaims = Depends(get_current_claims)) -> str:
    return claims.user_id
