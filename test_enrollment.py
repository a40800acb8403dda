"""
Test the entitlement store: enrollments, purchased mirrors, admin access and reconciliation
"""

import pytest

from app.core.exceptions import AlreadyEnrolledError, NotFoundError, ValidationError
from app.models import AuditLog, CourseEnrollment, PurchasedCourse
from app.services.course import CourseService
from app.services.course_enrollment import EnrollmentService
from conftest import ADMIN_ACTOR, auth_headers


def test_enroll_twice_raises_and_counts_once(db, make_user, make_course):
    student = make_user()
    course = make_course()
    service = EnrollmentService(db)

    enrollment = service.enroll_in_course(student.id, course.id)
    db.commit()
    assert enrollment.version_enrolled == 1
    assert enrollment.access_granted_by == "payment"

    with pytest.raises(AlreadyEnrolledError):
        service.enroll_in_course(student.id, course.id)

    db.refresh(course)
    assert course.total_enrollments == 1
    assert db.query(CourseEnrollment).count() == 1


def test_enrollment_records_current_version(db, storage, make_user, make_course):
    student = make_user()
    course = make_course()
    CourseService(db, storage).create_new_version(course.id, None, ADMIN_ACTOR)

    enrollment = EnrollmentService(db).enroll_in_course(student.id, course.id)

    assert enrollment.version_enrolled == 2


def test_enroll_rejects_full_course(db, make_user, make_course):
    course = make_course(max_enrollments=1)
    service = EnrollmentService(db)
    service.enroll_in_course(make_user().id, course.id)
    db.commit()

    with pytest.raises(ValidationError):
        service.enroll_in_course(make_user().id, course.id)


def test_enroll_rejects_archived_course(db, storage, make_user, make_course):
    course = make_course()
    CourseService(db, storage).archive_course(course.id, None, 6, ADMIN_ACTOR)

    with pytest.raises(ValidationError):
        EnrollmentService(db).enroll_in_course(make_user().id, course.id)


def test_grant_course_purchase_is_idempotent(db, make_user, make_course):
    student = make_user()
    course = make_course()
    service = EnrollmentService(db)

    first = service.grant_course_purchase(student.id, course.id)
    second = service.grant_course_purchase(student.id, course.id)
    db.commit()

    assert first == {"course_id": course.id, "mirrored": True, "enrolled": True}
    assert second == {"course_id": course.id, "mirrored": False, "enrolled": False}
    assert service.get_user_purchased_course_ids(student.id) == [course.id]
    db.refresh(course)
    assert course.total_enrollments == 1


def test_admin_grant_and_revoke_removes_mirror(db, make_user, make_course):
    student = make_user()
    course = make_course()
    service = EnrollmentService(db)

    result = service.grant_admin_access(student.id, course.id, ADMIN_ACTOR)

    assert result["access_granted_by"] == "admin"
    assert service.has_purchased_course(student.id, course.id)
    assert service.get_course_enrollment(student.id, course.id).access_granted_by == "admin"

    with pytest.raises(AlreadyEnrolledError) as exc_info:
        service.grant_admin_access(student.id, course.id, ADMIN_ACTOR)
    assert exc_info.value.status_code == 400

    revoked = service.revoke_admin_access(student.id, course.id, ADMIN_ACTOR)

    assert revoked["previous_access_granted_by"] == "admin"
    assert revoked["purchased_mirror_removed"] is True
    assert service.get_course_enrollment(student.id, course.id) is None
    assert not service.has_purchased_course(student.id, course.id)
    db.refresh(course)
    assert course.total_enrollments == 0

    actions = [a for (a,) in db.query(AuditLog.action).order_by(AuditLog.id).all()]
    assert actions[-2:] == ["course_access_granted", "course_access_revoked"]


def test_revoking_paid_access_keeps_purchase_mirror(db, make_user, make_course):
    student = make_user()
    course = make_course()
    service = EnrollmentService(db)
    service.grant_course_purchase(student.id, course.id)
    db.commit()

    revoked = service.revoke_admin_access(student.id, course.id, ADMIN_ACTOR)

    assert revoked["previous_access_granted_by"] == "payment"
    assert revoked["purchased_mirror_removed"] is False
    assert service.get_course_enrollment(student.id, course.id) is None
    assert service.has_purchased_course(student.id, course.id)


def test_revoke_without_access_raises(db, make_user, make_course):
    with pytest.raises(NotFoundError):
        EnrollmentService(db).revoke_admin_access(make_user().id, make_course().id)


def test_bundle_grant_survives_bundle_deletion(db, storage, make_user, make_course, make_bundle):
    from app.services.bundle import BundleService

    student = make_user()
    first = make_course(title="First")
    second = make_course(title="Second")
    first_id, second_id = first.id, second.id
    bundle = make_bundle([first_id, second_id])
    EnrollmentService(db).grant_bundle_purchase(student.id, bundle.id)
    db.commit()

    BundleService(db, storage).delete_bundle(bundle.id, ADMIN_ACTOR)

    service = EnrollmentService(db)
    assert sorted(service.get_user_purchased_course_ids(student.id)) == sorted([first_id, second_id])
    assert service.get_course_enrollment(student.id, first_id) is not None


def test_reconcile_reports_and_repairs_missing_mirror_rows(db, make_user, make_course):
    student = make_user()
    course = make_course()
    service = EnrollmentService(db)
    service.enroll_in_course(student.id, course.id)
    orphan_course = make_course(title="Orphan")
    db.add(PurchasedCourse(user_id=student.id, course_id=orphan_course.id))
    db.commit()

    report = service.reconcile_entitlements()

    assert report["applied"] is False
    assert report["missing_purchased_courses"] == [{"user_id": student.id, "course_id": course.id}]
    assert report["purchased_without_enrollment"] == [
        {"user_id": student.id, "course_id": orphan_course.id}
    ]
    assert not service.has_purchased_course(student.id, course.id)

    applied = service.reconcile_entitlements(apply=True)

    assert applied["applied"] is True
    assert service.has_purchased_course(student.id, course.id)
    # rows without an enrollment are never removed
    assert service.has_purchased_course(student.id, orphan_course.id)
    assert service.reconcile_entitlements()["missing_purchased_courses"] == []


def test_admin_course_access_api(client, db, make_user, make_course):
    admin = make_user(role="admin")
    student = make_user()
    course = make_course()
    headers = auth_headers(admin)

    granted = client.post(
        f"/admin/users/{student.id}/course-access",
        json={"course_id": course.id},
        headers=headers,
    )
    assert granted.status_code == 200
    assert granted.json()["data"]["access_granted_by"] == "admin"

    listing = client.get(f"/admin/users/{student.id}/course-enrollments", headers=headers)
    assert listing.status_code == 200
    items = listing.json()["data"]["enrollments"]
    assert [(i["course_id"], i["has_access"]) for i in items] == [(course.id, True)]

    revoked = client.delete(
        f"/admin/users/{student.id}/course-access/{course.id}", headers=headers
    )
    assert revoked.status_code == 200
    assert revoked.json()["data"]["purchased_mirror_removed"] is True


def test_profile_lists_owned_ids(client, db, make_user, make_course):
    student = make_user()
    course = make_course()
    EnrollmentService(db).grant_course_purchase(student.id, course.id)
    db.commit()

    response = client.get("/users/me", headers=auth_headers(student))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["purchased_course_ids"] == [course.id]
    assert data["purchased_bundle_ids"] == []


def test_reconcile_api_requires_admin(client, make_user):
    response = client.post("/admin/reconcile-entitlements", headers=auth_headers(make_user()))

    assert response.status_code == 403
