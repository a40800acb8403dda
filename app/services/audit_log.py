# app/services/audit_log.py
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog
from app.utils.localized import display_text

logger = logging.getLogger(__name__)


@dataclass
class AuditActor:
    """Who performed an administrative action, and from where."""

    email: str = "admin"
    user_id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


SYSTEM_ACTOR = AuditActor(email="system")


class AuditLogService:
    """Append-only audit trail. Writing an entry never aborts the caller."""

    def __init__(self, db: Session):
        self.db = db

    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: int,
        entity_title: Any,
        performed_by: str,
        details: Optional[Dict[str, Any]] = None,
        deletion_summary: Optional[Dict[str, Any]] = None,
        performed_by_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """
        Stage an audit entry in the caller's transaction.

        The insert runs inside a savepoint so a failing write is rolled back on
        its own; the caller still owns the commit. Returns None on failure.
        """
        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_title=display_text(entity_title, default="Untitled"),
            performed_by=performed_by or "admin",
            performed_by_id=performed_by_id,
            details=details or {},
            deletion_summary=deletion_summary,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            with self.db.begin_nested():
                self.db.add(entry)
                self.db.flush()
        except Exception as e:
            logger.warning(f"⚠️ Failed to write audit log ({action} {entity_type}:{entity_id}): {e}")
            return None

        logger.info(f"📝 Audit: {action} {entity_type}:{entity_id} by {performed_by}")
        return entry

    def list_logs(
        self,
        page: int = 1,
        size: int = 20,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
    ) -> Tuple[List[AuditLog], dict]:
        query = self.db.query(AuditLog)

        if action:
            query = query.filter(AuditLog.action == action)
        if entity_type:
            query = query.filter(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.filter(AuditLog.entity_id == entity_id)

        total = query.count()
        offset = (page - 1) * size
        logs = (
            query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .offset(offset)
            .limit(size)
            .all()
        )

        pagination = {
            "total": total,
            "page": page,
            "size": size,
            "total_pages": math.ceil(total / size) if size > 0 else 0,
        }
        return logs, pagination

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: int,
        entity_title: Any,
        actor: Optional[AuditActor] = None,
        details: Optional[Dict[str, Any]] = None,
        deletion_summary: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        actor = actor or SYSTEM_ACTOR
        return self.log_action(
            action,
            entity_type,
            entity_id,
            entity_title,
            actor.email,
            details=details,
            deletion_summary=deletion_summary,
            performed_by_id=actor.user_id,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
        )
