"""
Test the audit trail
"""

from app.models import AuditLog, User
from app.services.audit_log import AuditActor, AuditLogService
from app.services.user import UserService
from conftest import ADMIN_ACTOR, auth_headers


def test_log_action_stores_entry(db):
    entry = AuditLogService(db).log_action(
        "course_updated",
        "course",
        7,
        {"en": "Crypto Basics", "tg": "Асосҳои крипто"},
        "admin@example.com",
        details={"updated_fields": ["price"]},
        ip_address="10.0.0.1",
    )
    db.commit()

    assert entry is not None
    stored = db.query(AuditLog).one()
    assert stored.entity_title == "Crypto Basics"
    assert stored.details == {"updated_fields": ["price"]}
    assert stored.ip_address == "10.0.0.1"


def test_failed_audit_write_does_not_abort_caller(db):
    """Test a rejected audit insert is dropped while the surrounding work still commits"""
    user = User(email="writer@example.com", first_name="Writer", role="student")
    db.add(user)

    entry = AuditLogService(db).log_action(
        "user_status_updated", "user", None, "Writer", "admin@example.com"
    )
    db.commit()

    assert entry is None
    assert db.query(AuditLog).count() == 0
    assert db.query(User).filter(User.email == "writer@example.com").count() == 1


def test_record_uses_actor_identity(db):
    actor = AuditActor(email="ops@example.com", user_id=3, ip_address="1.2.3.4", user_agent="curl")

    AuditLogService(db).record("bundle_deleted", "bundle", 5, "Pack", actor)
    db.commit()

    stored = db.query(AuditLog).one()
    assert stored.performed_by == "ops@example.com"
    assert stored.performed_by_id == 3
    assert stored.user_agent == "curl"


def test_record_without_actor_uses_system(db):
    AuditLogService(db).record("course_archived", "course", 1, "Old course")
    db.commit()

    assert db.query(AuditLog).one().performed_by == "system"


def test_user_status_change_is_audited(db, make_user):
    student = make_user()

    UserService(db).set_active(student.id, False, "Chargeback", ADMIN_ACTOR)

    entry = db.query(AuditLog).filter(AuditLog.action == "user_status_updated").one()
    assert entry.entity_id == student.id
    assert entry.details == {"from": True, "to": False, "reason": "Chargeback"}


def test_audit_log_api_lists_newest_first(client, make_user, make_course):
    admin = make_user(role="admin")
    first = make_course(title="First")
    second = make_course(title="Second")

    response = client.get("/admin/audit-logs", headers=auth_headers(admin))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 2
    assert [log["entity_id"] for log in data["logs"]] == [second.id, first.id]


def test_audit_log_api_filters_by_action(client, db, storage, make_user, make_course):
    from app.services.course import CourseService

    admin = make_user(role="admin")
    course = make_course()
    CourseService(db, storage).deactivate_course(course.id, None, ADMIN_ACTOR)

    response = client.get(
        "/admin/audit-logs",
        params={"action": "course_deactivated"},
        headers=auth_headers(admin),
    )

    logs = response.json()["data"]["logs"]
    assert len(logs) == 1
    assert logs[0]["details"]["reason"] == "Course deactivated by admin"
