# app/models/audit_log.py
from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func

from app.core.database import Base

AUDIT_ACTIONS = (
    "course_created",
    "course_updated",
    "course_deleted",
    "course_deactivated",
    "course_reactivated",
    "course_archived",
    "course_unarchived",
    "course_access_granted",
    "course_access_revoked",
    "bundle_created",
    "bundle_updated",
    "bundle_deleted",
    "bundle_archived",
    "bundle_unarchived",
    "user_status_updated",
)
AUDIT_ENTITY_TYPES = ("course", "bundle", "user", "payment")


class AuditLog(Base):
    """Append-only record of administrative and destructive actions."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_action_timestamp", "action", "timestamp"),
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )

    id = Column(Integer, primary_key=True, index=True)

    action = Column(String(50), nullable=False)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(Integer, nullable=False)
    entity_title = Column(Text, nullable=False)

    performed_by = Column(String(255), nullable=False, index=True)
    performed_by_id = Column(Integer, nullable=True)

    details = Column(JSON, nullable=False, default=dict)
    deletion_summary = Column(JSON, nullable=True)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)

    timestamp = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
