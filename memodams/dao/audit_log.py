"""
Audit Log Data Access Object (DAO).

WHAT: Append-only store for security events (sign-ins, step-up outcomes,
device trust changes, admin grants).

WHY: OWASP A09 (Security Logging and Monitoring). An audit trail that can
be edited after the fact proves nothing, so update and delete are refused.

HOW: BaseDAO over AuditLog; one filtered query serves both the listing and
the count of the admin audit viewer.
"""

from typing import Any, List, NoReturn, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.exceptions import AuditLogImmutableError
from memodams.dao.base import BaseDAO
from memodams.models.audit_log import AuditAction, AuditLog


class AuditLogDAO(BaseDAO[AuditLog]):
    """Data Access Object for audit log entries."""

    def __init__(self, session: AsyncSession):
        super().__init__(AuditLog, session)

    @staticmethod
    def _where(query, actor_user_id: Optional[int], action: Optional[AuditAction]):
        if actor_user_id is not None:
            query = query.where(AuditLog.actor_user_id == actor_user_id)
        if action is not None:
            query = query.where(AuditLog.action == action)
        return query

    async def list_entries(
        self,
        actor_user_id: Optional[int] = None,
        action: Optional[AuditAction] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AuditLog]:
        """
        Entries newest first, optionally narrowed to one actor and/or action.

        Args:
            actor_user_id: Account that performed the action
            action: Event type
            skip: Pagination offset
            limit: Page size
        """
        query = self._where(select(AuditLog), actor_user_id, action)
        result = await self.session.execute(
            query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_entries(
        self,
        actor_user_id: Optional[int] = None,
        action: Optional[AuditAction] = None,
    ) -> int:
        query = self._where(select(func.count(AuditLog.id)), actor_user_id, action)
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def update(self, id: int, **kwargs: Any) -> NoReturn:
        raise AuditLogImmutableError("Audit logs are immutable and cannot be updated.")

    async def delete(self, id: int) -> NoReturn:
        raise AuditLogImmutableError("Audit logs cannot be deleted.")
