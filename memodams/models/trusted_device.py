"""
Trusted device model.

WHAT: Records that an account answered its security question on a given
device, so later sign-ins from that device skip the question.

WHY: A flag stored only in the browser could not be listed or revoked
from another device. Server-side rows can be listed on the devices page
and revoked individually or all at once.
"""

from datetime import datetime, timedelta
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from memodams.models.base import Base, TimestampMixin, PrimaryKeyMixin


class TrustedDevice(Base, PrimaryKeyMixin, TimestampMixin):
    """One (account, device) verification flag."""

    __tablename__ = "trusted_devices"

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    device_id = Column(String(64), nullable=False, index=True)

    verified_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    revoked_at = Column(DateTime, nullable=True)
    last_seen_at = Column(DateTime, nullable=True)
    user_agent = Column(Text, nullable=True)

    user = relationship("User", back_populates="trusted_devices")

    __table_args__ = (
        UniqueConstraint("user_id", "device_id", name="uq_trusted_devices_user_device"),
    )

    def is_trusted(self, max_age_days: int = 0) -> bool:
        """
        Whether this flag still counts.

        Args:
            max_age_days: Lifetime of a verification, 0 for no limit
        """
        if self.revoked_at is not None:
            return False
        if max_age_days > 0:
            return datetime.utcnow() - self.verified_at <= timedelta(days=max_age_days)
        return True

    def __repr__(self) -> str:
        return (
            f"<TrustedDevice(id={self.id}, user_id={self.user_id}, "
            f"device_id={self.device_id}, revoked={self.revoked_at is not None})>"
        )
