"""
Federated identity model.

WHY: A Google identity is attached to an account by Google's stable
subject id (`sub`), not by email, since the address on either side can
change. Only the identity is kept: Google sign-in is used to prove who
the user is, never to call Google APIs on their behalf, so no provider
tokens are stored.
"""

import enum
from sqlalchemy import Column, Integer, String, Enum, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from memodams.models.base import Base, TimestampMixin, PrimaryKeyMixin


class OAuthProvider(str, enum.Enum):
    """Identity providers accepted for sign-in."""

    GOOGLE = "google"


class OAuthAccount(Base, PrimaryKeyMixin, TimestampMixin):
    """A provider identity linked to one account."""

    __tablename__ = "oauth_accounts"

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    provider = Column(Enum(OAuthProvider), nullable=False)
    # Google's `sub` claim
    provider_user_id = Column(String(255), nullable=False)

    # Display only, never used for lookup
    email = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    picture_url = Column(String(2048), nullable=True)

    user = relationship("User", back_populates="oauth_accounts")

    # One platform account per provider identity
    __table_args__ = (
        UniqueConstraint("provider", "provider_user_id", name="uq_oauth_provider_user"),
    )

    def __repr__(self) -> str:
        return (
            f"<OAuthAccount(id={self.id}, user_id={self.user_id}, "
            f"provider={self.provider})>"
        )
