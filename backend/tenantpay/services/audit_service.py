"""
Audit trail writer.

Writes are best-effort: they run after the change they describe has been
committed, and a failed audit write is logged and rolled back on its own.
"""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)


class AuditService:
    """Service for activity log entries."""

    @staticmethod
    async def record(
        db: AsyncSession,
        tenant_id: str,
        action: str,
        entity_type: str,
        description: str,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Optional[ActivityLog]:
        """
        Record an activity log entry and commit it.

        Args:
            db: Database session
            tenant_id: Tenant the change belongs to
            action: CREATE, UPDATE or DELETE
            entity_type: PAYMENT or PAYMENT_CONFIG
            description: Human-readable summary
            entity_id: Changed row id
            user_id: Acting or paying user

        Returns:
            The entry, or None if the write failed
        """
        entry = ActivityLog(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
        )
        try:
            db.add(entry)
            await db.commit()
            return entry
        except SQLAlchemyError as e:
            await db.rollback()
            logger.warning(
                f"Failed to write audit entry for {entity_type} {entity_id}: {e}",
                extra={"event": "audit_write_failed", "tenant_id": tenant_id}
            )
            return None
