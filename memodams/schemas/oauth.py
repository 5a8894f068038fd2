"""
Pydantic schemas for Google sign-in.

WHY: The browser leaves for Google's consent page and comes back with a
code and the state it was given. The code is then posted here and the
answer is the same SignInResponse a password sign-in gets, so the client
routes both the same way.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class OAuthProviderInfo(BaseModel):
    provider: str = Field(..., examples=["google"])
    name: str = Field(..., examples=["Google"])
    authorize_url: str = Field(..., description="Endpoint returning the consent URL")


class OAuthProvidersResponse(BaseModel):
    """Only fully configured providers are listed."""

    providers: List[OAuthProviderInfo]


class OAuthAuthorizeResponse(BaseModel):
    authorization_url: str = Field(..., description="Google consent page to send the browser to")
    state: str = Field(..., description="Opaque state; Google echoes it back with the code")
    device_id: str = Field(..., description="Device id to send as X-Device-Id from now on")


class OAuthTokenRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=2048, description="Authorization code from Google")
    state: str = Field(..., min_length=1, max_length=4096, description="State returned with the code")

    class Config:
        json_schema_extra = {
            "example": {
                "code": "4/0AX4XfWh...",
                "state": "gAAAAABl...",
            }
        }


class OAuthStateData(BaseModel):
    """
    Contents of the encrypted state parameter.

    WHY: Binding the state to the device that asked for the consent URL
    means a code obtained in one browser cannot finish a sign-in in another.
    """

    nonce: str
    device_id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class LinkedOAuthAccount(BaseModel):
    provider: str
    provider_name: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture_url: Optional[str] = None
    linked_at: datetime


class LinkedAccountsResponse(BaseModel):
    accounts: List[LinkedOAuthAccount]
    can_unlink: bool = Field(..., description="False while Google is the account's only way in")


class UnlinkAccountResponse(BaseModel):
    message: str
