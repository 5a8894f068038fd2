"""
Trusted device Data Access Object.

WHAT: Queries over per-(account, device) verification flags.
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.dao.base import BaseDAO
from memodams.models.trusted_device import TrustedDevice


class TrustedDeviceDAO(BaseDAO[TrustedDevice]):
    """Data Access Object for TrustedDevice."""

    def __init__(self, session: AsyncSession):
        super().__init__(TrustedDevice, session)

    async def get_for_user_and_device(
        self,
        user_id: int,
        device_id: str,
    ) -> Optional[TrustedDevice]:
        result = await self.session.execute(
            select(TrustedDevice).where(
                and_(
                    TrustedDevice.user_id == user_id,
                    TrustedDevice.device_id == device_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_active_for_user(self, user_id: int) -> List[TrustedDevice]:
        """Unrevoked devices, most recently verified first."""
        result = await self.session.execute(
            select(TrustedDevice)
            .where(
                and_(
                    TrustedDevice.user_id == user_id,
                    TrustedDevice.revoked_at.is_(None),
                )
            )
            .order_by(TrustedDevice.verified_at.desc(), TrustedDevice.id.desc())
        )
        return list(result.scalars().all())

    async def upsert_verified(
        self,
        user_id: int,
        device_id: str,
        user_agent: Optional[str] = None,
    ) -> TrustedDevice:
        """
        Mark (user, device) verified, reviving a revoked row if present.

        WHY: The unique constraint on (user_id, device_id) allows a single
        row per pair, so re-verification after revocation updates it.
        """
        now = datetime.utcnow()
        device = await self.get_for_user_and_device(user_id, device_id)
        if device is None:
            return await self.create(
                user_id=user_id,
                device_id=device_id,
                verified_at=now,
                last_seen_at=now,
                user_agent=user_agent,
            )

        if device.revoked_at is not None:
            device.verified_at = now
            device.revoked_at = None
        device.last_seen_at = now
        if user_agent:
            device.user_agent = user_agent
        await self.session.flush()
        await self.session.refresh(device)
        return device

    async def touch(self, device: TrustedDevice) -> None:
        device.last_seen_at = datetime.utcnow()
        await self.session.flush()

    async def revoke(self, user_id: int, device_id: str) -> int:
        result = await self.session.execute(
            update(TrustedDevice)
            .where(
                and_(
                    TrustedDevice.user_id == user_id,
                    TrustedDevice.device_id == device_id,
                    TrustedDevice.revoked_at.is_(None),
                )
            )
            .values(revoked_at=datetime.utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def revoke_all_for_device(self, device_id: str) -> int:
        """Revoke every account's flag stored for this device."""
        result = await self.session.execute(
            update(TrustedDevice)
            .where(
                and_(
                    TrustedDevice.device_id == device_id,
                    TrustedDevice.revoked_at.is_(None),
                )
            )
            .values(revoked_at=datetime.utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def revoke_all_for_user(self, user_id: int) -> int:
        result = await self.session.execute(
            update(TrustedDevice)
            .where(
                and_(
                    TrustedDevice.user_id == user_id,
                    TrustedDevice.revoked_at.is_(None),
                )
            )
            .values(revoked_at=datetime.utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount
