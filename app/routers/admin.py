# app/routers/admin.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import get_admin_actor, get_current_admin
from app.models.user import User
from app.schemas.audit_log import AuditLogListResponse, AuditLogResponse, ReconcileReport
from app.schemas.common import APIResponse, ok
from app.schemas.user import (
    CourseAccessRequest,
    UpdateUserStatusRequest,
    UserCourseEnrollmentsResponse,
    UserListResponse,
    UserResponse,
)
from app.services.audit_log import AuditActor, AuditLogService
from app.services.course_enrollment import EnrollmentService
from app.services.user import UserService

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    responses={404: {"description": "Not found"}},
)


# ==================== Audit Logs ====================


@router.get("/audit-logs", response_model=APIResponse[AuditLogListResponse])
def list_audit_logs(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    action: Optional[str] = Query(None, description="Filter by action"),
    entity_type: Optional[str] = Query(None, description="course, bundle, user or payment"),
    entity_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    """
    Audit trail, newest first.
    """
    logs, pagination = AuditLogService(db).list_logs(
        page=page, size=size, action=action, entity_type=entity_type, entity_id=entity_id
    )
    return ok(
        {
            "logs": [AuditLogResponse.model_validate(log).model_dump() for log in logs],
            **pagination,
        },
        "Audit logs retrieved successfully",
    )


# ==================== Users ====================


@router.get("/users", response_model=APIResponse[UserListResponse])
def list_users(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, description="Search by email or name"),
    role: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    users, pagination = UserService(db).list_users(
        page=page, size=size, search=search, role=role, is_active=is_active
    )
    return ok(
        {"users": [UserResponse.model_validate(u).model_dump() for u in users], **pagination},
        "Users retrieved successfully",
    )


@router.patch("/users/{user_id}/status", response_model=APIResponse[UserResponse])
def update_user_status(
    user_id: int,
    request_in: UpdateUserStatusRequest,
    db: Session = Depends(get_db),
    actor: AuditActor = Depends(get_admin_actor),
):
    user = UserService(db).set_active(user_id, request_in.is_active, request_in.reason, actor)
    return ok(UserResponse.model_validate(user).model_dump(), "User status updated successfully")


# ==================== Course Access ====================


@router.get(
    "/users/{user_id}/course-enrollments",
    response_model=APIResponse[UserCourseEnrollmentsResponse],
)
def get_user_course_enrollments(
    user_id: int,
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    """
    Every course with this user's access details.
    """
    result = EnrollmentService(db).get_user_course_enrollments(user_id)
    return ok(result, "User enrollments retrieved successfully")


@router.post("/users/{user_id}/course-access")
def grant_course_access(
    user_id: int,
    request_in: CourseAccessRequest,
    db: Session = Depends(get_db),
    actor: AuditActor = Depends(get_admin_actor),
):
    result = EnrollmentService(db).grant_admin_access(user_id, request_in.course_id, actor)
    return ok(result, "Course access granted successfully")


@router.delete("/users/{user_id}/course-access/{course_id}")
def revoke_course_access(
    user_id: int,
    course_id: int,
    db: Session = Depends(get_db),
    actor: AuditActor = Depends(get_admin_actor),
):
    result = EnrollmentService(db).revoke_admin_access(user_id, course_id, actor)
    return ok(result, "Course access revoked successfully")


# ==================== Maintenance ====================


@router.post("/reconcile-entitlements", response_model=APIResponse[ReconcileReport])
def reconcile_entitlements(
    apply: bool = Query(False, description="Add missing purchased rows"),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    report = EnrollmentService(db).reconcile_entitlements(apply=apply)
    return ok(report, "Entitlements reconciled" if apply else "Entitlement report generated")
