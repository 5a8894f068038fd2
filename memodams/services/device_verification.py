"""
Device verification flag store.

WHAT: Remembers that a device already answered an account's security
question, so the next sign-in from that device skips it.

WHY: The flag used to live in browser storage, where it could not be
listed or revoked. It is now a TrustedDevice row keyed by account and by
the client's device id (X-Device-Id header). Losing the device id only
means the question is asked again.

HOW: A thin store bound to one device id, over TrustedDeviceDAO.
"""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.config import settings
from memodams.dao.trusted_device import TrustedDeviceDAO
from memodams.models.trusted_device import TrustedDevice

logger = logging.getLogger(__name__)


class DeviceVerificationStore:
    """
    Verification flags for the device making the current request.

    Example:
        store = DeviceVerificationStore(db, device_id)
        if not await store.is_device_verified(user.id):
            ...
    """

    def __init__(self, session: AsyncSession, device_id: str):
        self.device_id = device_id
        self.dao = TrustedDeviceDAO(session)

    async def is_device_verified(self, account_id: int) -> bool:
        """
        Whether this device holds a live flag for the account.

        Expired flags (TRUSTED_DEVICE_DAYS) and revoked flags do not count.
        """
        device = await self.dao.get_for_user_and_device(account_id, self.device_id)
        if device is None:
            return False
        if not device.is_trusted(settings.TRUSTED_DEVICE_DAYS):
            return False
        await self.dao.touch(device)
        return True

    async def mark_device_verified(
        self,
        account_id: int,
        user_agent: Optional[str] = None,
    ) -> TrustedDevice:
        """Set the flag for (account, this device). Idempotent."""
        device = await self.dao.upsert_verified(account_id, self.device_id, user_agent)
        logger.info(
            "Device verified",
            extra={"user_id": account_id, "device_id": self.device_id},
        )
        return device

    async def clear_all(self) -> int:
        """
        Drop every flag stored for this device, whichever account set it.

        Used by "log out / start over" on a step-up page.

        Returns:
            Number of flags revoked
        """
        count = await self.dao.revoke_all_for_device(self.device_id)
        if count:
            logger.info(
                "Device verification flags cleared",
                extra={"device_id": self.device_id, "count": count},
            )
        return count

    async def list_for_account(self, account_id: int) -> List[TrustedDevice]:
        """Live flags of an account across all its devices."""
        devices = await self.dao.list_active_for_user(account_id)
        return [d for d in devices if d.is_trusted(settings.TRUSTED_DEVICE_DAYS)]

    async def revoke(self, account_id: int, device_id: str) -> bool:
        """
        Revoke one device of an account, from any device.

        Returns:
            True if a live flag was revoked
        """
        return await self.dao.revoke(account_id, device_id) > 0

    async def revoke_all(self, account_id: int) -> int:
        """Revoke every device of an account ("forget all devices")."""
        return await self.dao.revoke_all_for_user(account_id)
