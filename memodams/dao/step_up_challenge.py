"""
Step-up challenge Data Access Object.

WHAT: Persistence for pending step-up sign-ins.

HOW: Challenges are looked up by their opaque id only; validity checks
(expiry, consumption, device binding) are made by the step-up service so
that every failure maps to the same stale-session error.
"""

from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import select, update, delete, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.dao.base import BaseDAO
from memodams.models.step_up_challenge import StepUpChallenge, ChallengeStage, PASSWORD_SIGN_IN


class StepUpChallengeDAO(BaseDAO[StepUpChallenge]):
    """Data Access Object for StepUpChallenge."""

    def __init__(self, session: AsyncSession):
        super().__init__(StepUpChallenge, session)

    async def create_challenge(
        self,
        user_id: int,
        device_id: str,
        stage: ChallengeStage,
        ttl_seconds: int,
        factor_id: Optional[int] = None,
        sign_in_method: str = PASSWORD_SIGN_IN,
    ) -> StepUpChallenge:
        """
        Open a new challenge and close any other open one for this
        account on this device.

        WHY: Signing in again from the same browser replaces the pending
        step-up instead of leaving two live challenges behind.
        """
        await self.consume_open_for_device(user_id, device_id)
        return await self.create(
            user_id=user_id,
            device_id=device_id,
            stage=stage,
            factor_id=factor_id,
            sign_in_method=sign_in_method,
            attempts=0,
            expires_at=datetime.utcnow() + timedelta(seconds=ttl_seconds),
        )

    async def get_by_challenge_id(self, challenge_id: str) -> Optional[StepUpChallenge]:
        result = await self.session.execute(
            select(StepUpChallenge).where(StepUpChallenge.challenge_id == challenge_id)
        )
        return result.scalar_one_or_none()

    async def record_failed_attempt(self, challenge: StepUpChallenge) -> int:
        """Increment the attempt counter and return the new value."""
        challenge.attempts = (challenge.attempts or 0) + 1
        await self.session.flush()
        return challenge.attempts

    async def advance_to_security_question(self, challenge: StepUpChallenge) -> StepUpChallenge:
        """Second factor done; the security question is still owed."""
        challenge.stage = ChallengeStage.AWAITING_SECURITY_QUESTION
        challenge.factor_satisfied_at = datetime.utcnow()
        challenge.sms_code_hash = None
        # Attempts are counted per proof
        challenge.attempts = 0
        await self.session.flush()
        await self.session.refresh(challenge)
        return challenge

    async def store_sms_code(self, challenge: StepUpChallenge, code_hash: str) -> None:
        challenge.sms_code_hash = code_hash
        challenge.sms_sent_at = datetime.utcnow()
        await self.session.flush()

    async def consume(self, challenge: StepUpChallenge) -> None:
        if challenge.consumed_at is None:
            challenge.consumed_at = datetime.utcnow()
            challenge.sms_code_hash = None
            await self.session.flush()

    async def consume_open_for_device(self, user_id: int, device_id: str) -> int:
        result = await self.session.execute(
            update(StepUpChallenge)
            .where(
                and_(
                    StepUpChallenge.user_id == user_id,
                    StepUpChallenge.device_id == device_id,
                    StepUpChallenge.consumed_at.is_(None),
                )
            )
            .values(consumed_at=datetime.utcnow(), sms_code_hash=None)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def consume_all_for_device(self, device_id: str) -> int:
        """Close every open challenge started from this device."""
        result = await self.session.execute(
            update(StepUpChallenge)
            .where(
                and_(
                    StepUpChallenge.device_id == device_id,
                    StepUpChallenge.consumed_at.is_(None),
                )
            )
            .values(consumed_at=datetime.utcnow(), sms_code_hash=None)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def purge_stale(self, older_than_days: int = 7) -> int:
        """
        Delete challenges that expired or were closed before the cutoff.

        Returns:
            Number of rows deleted
        """
        cutoff = datetime.utcnow() - timedelta(days=older_than_days)
        result = await self.session.execute(
            delete(StepUpChallenge).where(
                or_(
                    StepUpChallenge.expires_at < cutoff,
                    StepUpChallenge.consumed_at < cutoff,
                )
            )
        )
        return result.rowcount
