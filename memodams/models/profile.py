"""
Profile document model.

WHAT: The per-account profile document (bio, avatar, birthday, phone).

WHY: Profile data is kept apart from the account row so that writes to
it are merge writes of user-editable fields and can never touch
authentication state.
"""

from sqlalchemy import Column, Integer, String, Text, Date, ForeignKey
from sqlalchemy.orm import relationship

from memodams.models.base import Base, TimestampMixin, PrimaryKeyMixin


class Profile(Base, PrimaryKeyMixin, TimestampMixin):
    """One profile document per account, created at sign-up."""

    __tablename__ = "profiles"

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )

    bio = Column(Text, nullable=True)
    avatar_url = Column(String(1024), nullable=True)
    # WHY: Birthday can only be set once; changes go through support
    birthday = Column(Date, nullable=True)
    # Phone number given at sign-up, offered as the default for SMS enrollment
    phone_number = Column(String(32), nullable=True)

    user = relationship("User", back_populates="profile")

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, user_id={self.user_id})>"
