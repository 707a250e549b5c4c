from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model for auth payloads: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NonceResponse(CamelModel):
    """Response model for nonce generation - output"""

    nonce: str
    message: str
    request_id: str
    expires_at: str


class VerifyRequest(CamelModel):
    """Request model for wallet verification - input validation"""

    address: str = Field(..., description="Wallet address")
    signature: str = Field(..., description="personal_sign signature of the message, hex")
    message: str = Field(..., description="Challenge message exactly as issued")
    request_id: str = Field(..., description="Request id returned with the nonce")


class WalletUser(CamelModel):
    id: str
    address: Optional[str] = None
    kyc_tier: int = 0
    social_linked: bool = False


class AuthResponse(CamelModel):
    """Response model for wallet authentication - output"""

    success: bool = True
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: WalletUser


class LineLoginRequest(CamelModel):
    id_token: str = Field(..., description="LINE id token")
    access_token: str = Field(..., description="LINE access token")


class LineUser(CamelModel):
    id: str
    social_id: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    wallet_linked: bool = False
    kyc_tier: int = 0


class LineLoginResponse(CamelModel):
    success: bool = True
    token: str
    refresh_token: str
    user: LineUser


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., description="Refresh token issued at login")


class RefreshResponse(CamelModel):
    success: bool = True
    access_token: str


class MessageResponse(CamelModel):
    success: bool = True
    message: str = ""


class ValidateResponse(CamelModel):
    success: bool = True
    claims: Dict[str, Any]
