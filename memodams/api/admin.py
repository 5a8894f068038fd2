"""
Admin API endpoints.

WHAT: Admin grants, the account list and the security audit trail.

WHY: Administrators need to:
1. Promote other accounts to admin (Admin Authorization Gate)
2. See which accounts exist and their verification state
3. Review security events for compliance (OWASP A09)

HOW: The grant endpoint lets AdminGrantService decide on the caller's
token claims, so a bootstrap address can make the first grant. Listing
endpoints require the admin claim on the session token.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.deps import get_bearer_token, get_current_user, require_admin
from memodams.core.exceptions import ValidationError
from memodams.dao.audit_log import AuditLogDAO
from memodams.dao.user import UserDAO
from memodams.db.session import get_db
from memodams.models.audit_log import AuditAction
from memodams.models.user import User
from memodams.services.admin_grant import AdminGrantService


router = APIRouter(prefix="/admin", tags=["admin"])


# ============================================================================
# Schemas
# ============================================================================


class GrantAdminRequest(BaseModel):
    """Account to promote."""
    target_uid: str = Field(..., min_length=1, max_length=64, description="Account uid of the target")


class GrantAdminResponse(BaseModel):
    """
    Result of an admin grant.

    WHY: Claims live in session tokens, so the target sees the grant only
    after refreshing their token (POST /api/auth/refresh).
    """
    target_uid: str
    target_email: str
    granted_via: str
    already_admin: bool
    effective_after_token_refresh: bool
    message: str


class UserListItem(BaseModel):
    """User summary for list views."""
    id: int
    uid: str
    email: str
    name: Optional[str]
    is_active: bool
    email_verified: bool
    admin: bool
    created_at: datetime


class UserListResponse(BaseModel):
    """Paginated user list response."""
    items: List[UserListItem]
    total: int
    skip: int
    limit: int


class AuditLogItem(BaseModel):
    """Audit log entry for viewer."""
    id: int
    actor_user_id: Optional[int]
    action: str
    resource_type: str
    resource_id: Optional[int]
    changes: Optional[dict]
    extra_data: Optional[dict]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime


class AuditLogListResponse(BaseModel):
    items: List[AuditLogItem]
    total: int
    skip: int
    limit: int


# ============================================================================
# Admin grant
# ============================================================================


@router.post(
    "/grant-admin",
    response_model=GrantAdminResponse,
    status_code=status.HTTP_200_OK,
    summary="Grant admin",
    description="Set the admin claim on another account (admins and the bootstrap address only)",
)
async def grant_admin(
    data: GrantAdminRequest,
    current_user: User = Depends(get_current_user),
    token: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db),
) -> GrantAdminResponse:
    """
    Grant admin status.

    Raises:
        PermissionDeniedError (403): Caller is not allowed; target unchanged
        ResourceNotFoundError (404): No account with that uid
    """
    result = await AdminGrantService(db).grant_admin(token, data.target_uid)

    if result.already_admin:
        message = f"{result.target_email} is already an admin."
    else:
        message = (
            f"{result.target_email} is now an admin. "
            "The change applies after their session token is refreshed."
        )

    return GrantAdminResponse(
        target_uid=result.target_uid,
        target_email=result.target_email,
        granted_via=result.granted_via,
        already_admin=result.already_admin,
        effective_after_token_refresh=result.effective_after_token_refresh,
        message=message,
    )


# ============================================================================
# Accounts and audit trail
# ============================================================================


@router.get(
    "/users",
    response_model=UserListResponse,
    status_code=status.HTTP_200_OK,
    summary="List all users",
    description="Get paginated list of all accounts (admin claim required)",
)
async def list_users(
    skip: int = Query(default=0, ge=0, description="Number of items to skip"),
    limit: int = Query(default=20, ge=1, le=100, description="Maximum items to return"),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> UserListResponse:
    users = await UserDAO(User, db).list_users(skip=skip, limit=limit)
    total = await UserDAO(User, db).count()

    return UserListResponse(
        items=[
            UserListItem(
                id=u.id,
                uid=u.uid,
                email=u.email,
                name=u.name,
                is_active=u.is_active,
                email_verified=u.email_verified,
                admin=u.is_admin,
                created_at=u.created_at,
            )
            for u in users
        ],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/audit-logs",
    response_model=AuditLogListResponse,
    status_code=status.HTTP_200_OK,
    summary="View audit logs",
    description="Security events, newest first, optionally filtered by actor and action (admin claim required)",
)
async def list_audit_logs(
    user_id: Optional[int] = Query(default=None, description="Filter by actor"),
    action: Optional[str] = Query(default=None, description="Filter by action, e.g. ADMIN_GRANTED"),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AuditLogListResponse:
    """
    Both filters are optional and combine; with neither, every event is listed.

    Raises:
        ValidationError (400): Unknown action
    """
    audit_action = None
    if action is not None:
        try:
            audit_action = AuditAction(action)
        except ValueError:
            raise ValidationError(message=f"Unknown action: {action}", field="action")

    dao = AuditLogDAO(db)
    logs = await dao.list_entries(user_id, audit_action, skip=skip, limit=limit)
    total = await dao.count_entries(user_id, audit_action)

    return AuditLogListResponse(
        items=[
            AuditLogItem(
                id=log.id,
                actor_user_id=log.actor_user_id,
                action=log.action.value,
                resource_type=log.resource_type,
                resource_id=log.resource_id,
                changes=log.changes,
                extra_data=log.extra_data,
                ip_address=log.ip_address,
                user_agent=log.user_agent,
                created_at=log.created_at,
            )
            for log in logs
        ],
        total=total,
        skip=skip,
        limit=limit,
    )
