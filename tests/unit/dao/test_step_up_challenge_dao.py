"""
Step-up challenge DAO tests.

WHAT: Tests persistence of pending step-up sign-ins.

WHY: A challenge is the only server-side record that a password was
accepted on a device, so opening a new one must close the old one and a
consumed challenge must never come back to life.
"""

import pytest
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.dao.step_up_challenge import StepUpChallengeDAO
from memodams.models.step_up_challenge import ChallengeStage
from tests.factories import DEVICE_ID, OTHER_DEVICE_ID, StepUpChallengeFactory


class TestStepUpChallengeDAO:
    async def test_create_challenge(self, db_session: AsyncSession, test_user):
        dao = StepUpChallengeDAO(db_session)

        challenge = await dao.create_challenge(
            user_id=test_user.id,
            device_id=DEVICE_ID,
            stage=ChallengeStage.AWAITING_SECURITY_QUESTION,
            ttl_seconds=600,
        )

        assert len(challenge.challenge_id) >= 40
        assert challenge.attempts == 0
        assert challenge.sign_in_method == "password"
        assert challenge.is_live
        assert challenge.expires_at > datetime.utcnow() + timedelta(seconds=590)

    async def test_new_challenge_replaces_open_one_on_same_device(
        self, db_session: AsyncSession, test_user
    ):
        dao = StepUpChallengeDAO(db_session)
        first = await dao.create_challenge(
            test_user.id, DEVICE_ID, ChallengeStage.AWAITING_FACTOR, 600
        )
        elsewhere = await dao.create_challenge(
            test_user.id, OTHER_DEVICE_ID, ChallengeStage.AWAITING_FACTOR, 600
        )

        second = await dao.create_challenge(
            test_user.id, DEVICE_ID, ChallengeStage.AWAITING_FACTOR, 600
        )

        assert (await dao.get_by_challenge_id(first.challenge_id)).is_consumed
        assert (await dao.get_by_challenge_id(elsewhere.challenge_id)).is_live
        assert second.challenge_id != first.challenge_id
        assert second.is_live

    async def test_get_by_challenge_id_unknown(self, db_session: AsyncSession):
        assert await StepUpChallengeDAO(db_session).get_by_challenge_id("missing") is None

    async def test_record_failed_attempt(self, db_session: AsyncSession, test_user):
        challenge = await StepUpChallengeFactory.create(db_session, test_user, attempts=1)
        dao = StepUpChallengeDAO(db_session)

        assert await dao.record_failed_attempt(challenge) == 2
        assert await dao.record_failed_attempt(challenge) == 3

    async def test_advance_to_security_question_resets_attempts(
        self, db_session: AsyncSession, test_user
    ):
        challenge = await StepUpChallengeFactory.create(db_session, test_user, attempts=2)
        dao = StepUpChallengeDAO(db_session)
        await dao.store_sms_code(challenge, "a" * 64)

        advanced = await dao.advance_to_security_question(challenge)

        assert advanced.stage == ChallengeStage.AWAITING_SECURITY_QUESTION
        assert advanced.factor_satisfied_at is not None
        assert advanced.sms_code_hash is None
        assert advanced.attempts == 0

    async def test_store_sms_code(self, db_session: AsyncSession, test_user):
        challenge = await StepUpChallengeFactory.create(db_session, test_user)

        await StepUpChallengeDAO(db_session).store_sms_code(challenge, "b" * 64)

        assert challenge.sms_code_hash == "b" * 64
        assert challenge.sms_sent_at is not None

    async def test_consume_is_idempotent(self, db_session: AsyncSession, test_user):
        challenge = await StepUpChallengeFactory.create(db_session, test_user)
        dao = StepUpChallengeDAO(db_session)

        await dao.consume(challenge)
        first_consumed_at = challenge.consumed_at
        await dao.consume(challenge)

        assert challenge.consumed_at == first_consumed_at
        assert not challenge.is_live

    async def test_consume_all_for_device(self, db_session: AsyncSession, test_user, test_admin):
        mine = await StepUpChallengeFactory.create(db_session, test_user, device_id=DEVICE_ID)
        theirs = await StepUpChallengeFactory.create(db_session, test_admin, device_id=DEVICE_ID)
        other = await StepUpChallengeFactory.create(
            db_session, test_user, device_id=OTHER_DEVICE_ID
        )
        dao = StepUpChallengeDAO(db_session)

        count = await dao.consume_all_for_device(DEVICE_ID)

        assert count == 2
        assert (await dao.get_by_challenge_id(mine.challenge_id)).is_consumed
        assert (await dao.get_by_challenge_id(theirs.challenge_id)).is_consumed
        assert (await dao.get_by_challenge_id(other.challenge_id)).is_live

    async def test_expired_challenge_is_not_live(self, db_session: AsyncSession, test_user):
        challenge = await StepUpChallengeFactory.create(
            db_session, test_user, expires_in_seconds=-1
        )

        assert challenge.is_expired
        assert not challenge.is_live

    async def test_purge_stale(self, db_session: AsyncSession, test_user):
        old_expired = await StepUpChallengeFactory.create(
            db_session, test_user, expires_in_seconds=-10 * 86400
        )
        old_consumed = await StepUpChallengeFactory.create(
            db_session, test_user, device_id=OTHER_DEVICE_ID, consumed=True
        )
        old_consumed.consumed_at = datetime.utcnow() - timedelta(days=8)
        recent = await StepUpChallengeFactory.create(
            db_session, test_user, device_id="device-cccccccc0003"
        )
        await db_session.flush()
        gone = [old_expired.challenge_id, old_consumed.challenge_id]
        dao = StepUpChallengeDAO(db_session)

        deleted = await dao.purge_stale(older_than_days=7)

        assert deleted == 2
        db_session.expunge_all()
        for challenge_id in gone:
            assert await dao.get_by_challenge_id(challenge_id) is None
        assert await dao.get_by_challenge_id(recent.challenge_id) is not None
