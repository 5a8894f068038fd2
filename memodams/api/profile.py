"""
Profile document API endpoints.

WHAT: Read and merge-update the current account's profile document.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.deps import get_current_user
from memodams.core.exceptions import ValidationError
from memodams.dao.profile import ProfileDAO
from memodams.db.session import get_db
from memodams.models.user import User
from memodams.schemas.profile import ProfileResponse, ProfileUpdateRequest
from memodams.services.audit import AuditService


router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("", response_model=ProfileResponse, summary="Get profile")
async def get_profile(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    profile = await ProfileDAO(db).get_or_create(current_user.id)
    return ProfileResponse.model_validate(profile)


@router.patch("", response_model=ProfileResponse, summary="Update profile")
async def update_profile(
    data: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    """
    Merge the given fields into the profile document.

    Raises:
        ValidationError (400): Changing a birthday that is already set
    """
    dao = ProfileDAO(db)
    changes = data.model_dump(exclude_unset=True)

    profile = await dao.get_or_create(current_user.id)
    if (
        "birthday" in changes
        and profile.birthday is not None
        and changes["birthday"] != profile.birthday
    ):
        raise ValidationError(
            message="Birthday can only be set once",
            field="birthday",
        )

    profile = await dao.merge(current_user.id, changes)
    if changes:
        await AuditService(db).log_profile_updated(user_id=current_user.id, fields=list(changes))

    return ProfileResponse.model_validate(profile)
