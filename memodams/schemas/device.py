"""
Pydantic schemas for trusted devices.

WHY: Devices that answered the security question are listed so that the
account owner can revoke a lost or shared device from anywhere.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class TrustedDeviceResponse(BaseModel):
    device_id: str
    verified_at: datetime
    last_seen_at: Optional[datetime] = None
    user_agent: Optional[str] = None
    is_current: bool = False

    class Config:
        from_attributes = True


class TrustedDeviceListResponse(BaseModel):
    items: list[TrustedDeviceResponse]


class DeviceRevokeResponse(BaseModel):
    revoked: int
    message: str
