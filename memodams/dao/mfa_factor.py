"""
MFA factor Data Access Object.

WHAT: Lookups and lifecycle operations for second-factor enrollments.

WHY: The sign-in path only ever cares about the confirmed factor, while
enrollment works on pending rows. Keeping both query shapes here stops
callers from accidentally resolving a sign-in against a pending factor.
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.dao.base import BaseDAO
from memodams.models.mfa_factor import MfaFactor, FactorType


class MfaFactorDAO(BaseDAO[MfaFactor]):
    """Data Access Object for MfaFactor."""

    def __init__(self, session: AsyncSession):
        super().__init__(MfaFactor, session)

    async def get_by_factor_uid(
        self,
        user_id: int,
        factor_uid: str,
    ) -> Optional[MfaFactor]:
        """Factor owned by this user, confirmed or pending."""
        result = await self.session.execute(
            select(MfaFactor).where(
                and_(
                    MfaFactor.user_id == user_id,
                    MfaFactor.factor_uid == factor_uid,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_confirmed_for_user(self, user_id: int) -> List[MfaFactor]:
        """Confirmed factors, oldest enrollment first."""
        result = await self.session.execute(
            select(MfaFactor)
            .where(
                and_(
                    MfaFactor.user_id == user_id,
                    MfaFactor.enrolled_at.is_not(None),
                )
            )
            .order_by(MfaFactor.enrolled_at, MfaFactor.id)
        )
        return list(result.scalars().all())

    async def get_primary_factor(self, user_id: int) -> Optional[MfaFactor]:
        """
        The factor used to resolve sign-ins.

        WHY: An account has zero or one active second factor. If data ever
        holds more than one, the first enrolled one is the hint.
        """
        factors = await self.get_confirmed_for_user(user_id)
        return factors[0] if factors else None

    async def has_confirmed_factor(self, user_id: int) -> bool:
        return await self.get_primary_factor(user_id) is not None

    async def create_pending(
        self,
        user_id: int,
        factor_type: FactorType,
        display_name: Optional[str] = None,
        encrypted_secret: Optional[str] = None,
        phone_number: Optional[str] = None,
        pending_code_hash: Optional[str] = None,
    ) -> MfaFactor:
        """
        Start an enrollment.

        WHY: Abandoned enrollments are replaced rather than accumulated, so
        at most one pending row exists per user.
        """
        await self.delete_pending(user_id)
        return await self.create(
            user_id=user_id,
            factor_type=factor_type,
            display_name=display_name,
            encrypted_secret=encrypted_secret,
            phone_number=phone_number,
            pending_code_hash=pending_code_hash,
            pending_code_sent_at=datetime.utcnow() if pending_code_hash else None,
        )

    async def confirm(self, factor: MfaFactor) -> MfaFactor:
        factor.enrolled_at = datetime.utcnow()
        factor.pending_code_hash = None
        await self.session.flush()
        await self.session.refresh(factor)
        return factor

    async def delete_pending(self, user_id: int) -> int:
        result = await self.session.execute(
            delete(MfaFactor)
            .where(
                and_(
                    MfaFactor.user_id == user_id,
                    MfaFactor.enrolled_at.is_(None),
                )
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def remove(self, factor: MfaFactor) -> None:
        await self.session.delete(factor)
        await self.session.flush()
