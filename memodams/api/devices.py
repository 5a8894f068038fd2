"""
Trusted device API endpoints.

WHAT: List the devices that answered the security question, revoke one,
or forget all of them.

WHY: A revoked device is asked the security question again at its next
sign-in. Revocation works from any device, including a different one
from the device being revoked.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.deps import get_current_user
from memodams.core.exceptions import ResourceNotFoundError
from memodams.db.session import get_db
from memodams.middleware.request_context import get_device_id
from memodams.models.user import User
from memodams.schemas.device import (
    DeviceRevokeResponse,
    TrustedDeviceListResponse,
    TrustedDeviceResponse,
)
from memodams.services.audit import AuditService
from memodams.services.device_verification import DeviceVerificationStore


router = APIRouter(prefix="/devices", tags=["devices"])


def get_device_store(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> DeviceVerificationStore:
    return DeviceVerificationStore(db, get_device_id(request) or "")


@router.get(
    "",
    response_model=TrustedDeviceListResponse,
    summary="List trusted devices",
)
async def list_devices(
    current_user: User = Depends(get_current_user),
    devices: DeviceVerificationStore = Depends(get_device_store),
) -> TrustedDeviceListResponse:
    rows = await devices.list_for_account(current_user.id)
    return TrustedDeviceListResponse(
        items=[
            TrustedDeviceResponse(
                device_id=row.device_id,
                verified_at=row.verified_at,
                last_seen_at=row.last_seen_at,
                user_agent=row.user_agent,
                is_current=row.device_id == devices.device_id,
            )
            for row in rows
        ]
    )


@router.delete(
    "/{device_id}",
    response_model=DeviceRevokeResponse,
    summary="Revoke a trusted device",
)
async def revoke_device(
    device_id: str,
    current_user: User = Depends(get_current_user),
    devices: DeviceVerificationStore = Depends(get_device_store),
    db: AsyncSession = Depends(get_db),
) -> DeviceRevokeResponse:
    """
    Raises:
        ResourceNotFoundError (404): No live flag for this device
    """
    if not await devices.revoke(current_user.id, device_id):
        raise ResourceNotFoundError(
            message="Device not found",
            resource_type="TrustedDevice",
        )

    await AuditService(db).log_device_revoked(user_id=current_user.id, device_id=device_id)
    return DeviceRevokeResponse(revoked=1, message="Device revoked.")


@router.post(
    "/forget",
    response_model=DeviceRevokeResponse,
    summary="Forget all trusted devices",
)
async def forget_all_devices(
    current_user: User = Depends(get_current_user),
    devices: DeviceVerificationStore = Depends(get_device_store),
    db: AsyncSession = Depends(get_db),
) -> DeviceRevokeResponse:
    """Every device, this one included, gets the security question again."""
    count = await devices.revoke_all(current_user.id)
    if count:
        await AuditService(db).log_device_revoked(
            user_id=current_user.id,
            device_id="*",
            count=count,
        )
    return DeviceRevokeResponse(revoked=count, message=f"{count} device(s) forgotten.")
