"""
Provisioning commands.

WHAT: `python -m memodams.cli seed-admin <email>` grants the admin claim
to an already registered account. `purge-expired` deletes spent email
links and step-up challenges.

WHY: Seeding the first admin at provisioning time means
BOOTSTRAP_ADMIN_EMAIL does not have to stay configured on a running
deployment.
"""

import argparse
import asyncio
import sys
from typing import Optional, Sequence, Tuple

from memodams.core.exceptions import AppException
from memodams.dao.step_up_challenge import StepUpChallengeDAO
from memodams.dao.verification_token import VerificationTokenDAO
from memodams.db.session import AsyncSessionLocal
from memodams.services.admin_grant import AdminGrantResult, AdminGrantService


async def seed_admin(email: str) -> AdminGrantResult:
    """Grant admin to the account registered with `email` and commit."""
    async with AsyncSessionLocal() as session:
        try:
            result = await AdminGrantService(session).seed_admin(email)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    return result


async def purge_expired(older_than_days: int) -> Tuple[int, int]:
    """Delete stale verification tokens and step-up challenges."""
    async with AsyncSessionLocal() as session:
        tokens = await VerificationTokenDAO(session).purge_expired(older_than_days)
        challenges = await StepUpChallengeDAO(session).purge_stale(older_than_days)
        await session.commit()
    return tokens, challenges


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="memodams.cli", description="MemoDams provisioning")
    subparsers = parser.add_subparsers(dest="command", required=True)

    seed = subparsers.add_parser("seed-admin", help="Grant admin to a registered account")
    seed.add_argument("email", help="Email address of the account")

    purge = subparsers.add_parser("purge-expired", help="Delete stale links and challenges")
    purge.add_argument("--days", type=int, default=7, help="Age in days past expiry")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "seed-admin":
        try:
            result = asyncio.run(seed_admin(args.email))
        except AppException as e:
            print(f"error: {e.message}", file=sys.stderr)
            return 1

        if result.already_admin:
            print(f"{result.target_email} is already an admin")
        else:
            print(f"{result.target_email} ({result.target_uid}) is now an admin")
        return 0

    if args.command == "purge-expired":
        tokens, challenges = asyncio.run(purge_expired(args.days))
        print(f"deleted {tokens} tokens and {challenges} challenges")
        return 0

    return 2


if __name__ == "__main__":
    sys.exit(main())
