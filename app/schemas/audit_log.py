# app/schemas/audit_log.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from app.schemas.common import Pagination


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    entity_type: str
    entity_id: int
    entity_title: str
    performed_by: str
    performed_by_id: Optional[int] = None
    details: Dict[str, Any] = {}
    deletion_summary: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime


class AuditLogListResponse(Pagination):
    logs: List[AuditLogResponse]


class ReconcileReport(BaseModel):
    missing_purchased_courses: List[Dict[str, int]] = []
    missing_purchased_bundles: List[Dict[str, int]] = []
    purchased_without_enrollment: List[Dict[str, int]] = []
    applied: bool = False
