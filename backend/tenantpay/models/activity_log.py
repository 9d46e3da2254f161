"""
Audit trail entries for payment state changes.
"""
from sqlalchemy import Column, String, DateTime, Text, Index

from tenantpay.models.base import Base, generate_uuid, utcnow


class ActivityLog(Base):
    """Activity log entry."""

    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False)
    user_id = Column(String(128), nullable=True)
    action = Column(String(50), nullable=False)  # CREATE, UPDATE, DELETE
    entity_type = Column(String(50), nullable=False)  # PAYMENT, PAYMENT_CONFIG
    entity_id = Column(String(36), nullable=True)
    description = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_activity_log_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self):
        return f"<ActivityLog(entity={self.entity_type}:{self.entity_id}, action={self.action})>"
