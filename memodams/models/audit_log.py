"""
Audit Log Model.

WHAT: SQLAlchemy model for storing security audit events.

WHY: OWASP A09 (Security Logging and Monitoring) requires logging of
security-relevant events. For an access gate that means every sign-in
decision: failed passwords, step-up prompts, wrong codes and answers,
device trust changes and admin grants.

HOW: Immutable append-only table with request context (IP, user agent).
Uses JSON for flexible storage of changes and metadata.
"""

import enum
from sqlalchemy import Column, Integer, String, Enum, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship

from memodams.models.base import Base, TimestampMixin, PrimaryKeyMixin


class AuditAction(str, enum.Enum):
    """
    Enumeration of auditable actions.

    Categories:
    - Authentication: login, logout, password changes
    - Step-up: second factor and security-question outcomes
    - Devices: trust granted and revoked
    - Account: creation, verification, factor and question changes
    - Federated identity: Google accounts linked and unlinked
    - Authorization: admin grants
    """

    # Authentication events
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGOUT = "LOGOUT"
    PASSWORD_RESET_REQUEST = "PASSWORD_RESET_REQUEST"
    PASSWORD_RESET_COMPLETE = "PASSWORD_RESET_COMPLETE"
    TOKEN_REFRESH = "TOKEN_REFRESH"

    # Step-up events
    STEP_UP_REQUIRED = "STEP_UP_REQUIRED"
    SECOND_FACTOR_SUCCESS = "SECOND_FACTOR_SUCCESS"
    SECOND_FACTOR_FAILURE = "SECOND_FACTOR_FAILURE"
    SECURITY_QUESTION_SUCCESS = "SECURITY_QUESTION_SUCCESS"
    SECURITY_QUESTION_FAILURE = "SECURITY_QUESTION_FAILURE"
    STEP_UP_LOCKED = "STEP_UP_LOCKED"
    STEP_UP_ABORTED = "STEP_UP_ABORTED"

    # Device events
    DEVICE_TRUSTED = "DEVICE_TRUSTED"
    DEVICE_REVOKED = "DEVICE_REVOKED"

    # Account lifecycle events
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"
    EMAIL_VERIFICATION_SENT = "EMAIL_VERIFICATION_SENT"
    MFA_ENROLLED = "MFA_ENROLLED"
    MFA_UNENROLLED = "MFA_UNENROLLED"
    SECURITY_QUESTION_SET = "SECURITY_QUESTION_SET"
    PROFILE_UPDATED = "PROFILE_UPDATED"

    # Federated identity events
    OAUTH_ACCOUNT_LINKED = "OAUTH_ACCOUNT_LINKED"
    OAUTH_ACCOUNT_UNLINKED = "OAUTH_ACCOUNT_UNLINKED"

    # Authorization events
    ADMIN_GRANTED = "ADMIN_GRANTED"
    ADMIN_GRANT_DENIED = "ADMIN_GRANT_DENIED"


class AuditLog(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Immutable audit log entry for security event tracking.

    Fields:
    - actor_user_id: Who performed the action (nullable for failed logins)
    - action: What type of event occurred (AuditAction enum)
    - resource_type: Category of affected resource (e.g., "user", "device")
    - resource_id: Specific resource ID (nullable)
    - changes: Before/after values for mutations
    - extra_data: Additional context
    - ip_address / user_agent: Request context for forensics
    """

    __tablename__ = "audit_logs"

    # WHY: nullable because failed login attempts may not have a known user
    actor_user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    action = Column(Enum(AuditAction), nullable=False, index=True)

    resource_type = Column(String(100), nullable=False, index=True)
    resource_id = Column(Integer, nullable=True, index=True)

    # Example: {"admin": {"before": false, "after": true}}
    changes = Column(JSON, nullable=True)

    # NOTE: Named 'extra_data' because 'metadata' is reserved by SQLAlchemy
    extra_data = Column(JSON, nullable=True)

    ip_address = Column(String(45), nullable=True, index=True)  # IPv6 max length
    user_agent = Column(Text, nullable=True)

    actor = relationship("User", foreign_keys=[actor_user_id])

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, action={self.action.value}, "
            f"actor_user_id={self.actor_user_id}, resource_type={self.resource_type})>"
        )
