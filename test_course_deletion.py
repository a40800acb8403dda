"""
Test permanent course deletion: dependents, bundles, certificates and atomicity
"""

import asyncio

import pytest

from app.core.exceptions import TransactionError
from app.models import (
    AuditLog,
    Bundle,
    Certificate,
    Course,
    CourseEnrollment,
    CourseVersion,
    Material,
    Progress,
    PurchasedCourse,
    Video,
)
from app.services.course import CourseService
from app.services.course_content import CourseContentService
from app.services.course_enrollment import EnrollmentService
from conftest import ADMIN_ACTOR, auth_headers, make_upload


@pytest.fixture
def populated_course(db, storage, make_course, make_user):
    """A course with two versions, media, one enrolled student, progress and a certificate."""
    course = make_course(title="Stock Market Basics", category="stock-market")
    content = CourseContentService(db, storage)
    asyncio.run(content.upload_thumbnail(course.id, make_upload("cover.png", "image/png")))
    video = asyncio.run(content.upload_video(course.id, make_upload("one.mp4", "video/mp4")))
    asyncio.run(content.upload_material(course.id, make_upload("notes.pdf", "application/pdf")))
    CourseService(db, storage).create_new_version(course.id, None, ADMIN_ACTOR)

    student = make_user()
    EnrollmentService(db).grant_course_purchase(student.id, course.id)
    db.add(Progress(user_id=student.id, course_id=course.id, video_id=video.id, watched_duration=30))
    db.add(
        Certificate(
            user_id=student.id,
            course_id=course.id,
            certificate_number="CERT-0001",
            course_title="Stock Market Basics",
        )
    )
    db.commit()
    return course.id, student.id


def test_deletion_summary_is_read_only(db, storage, populated_course):
    course_id, _ = populated_course

    result = CourseService(db, storage).get_deletion_summary(course_id)

    summary = result["summary"]
    assert result["course_title"] == "Stock Market Basics"
    assert summary["versions"] == 2
    assert summary["videos"] == 1
    assert summary["materials"] == 1
    assert summary["certificates_preserved"] == 1
    assert summary["progress_records"] == 1
    assert summary["enrollments"] == 1
    assert summary["users_affected"] == 1
    assert summary["s3_files"] == 3

    assert db.query(Course).filter(Course.id == course_id).count() == 1
    assert db.query(Video).count() == 1
    assert db.query(CourseEnrollment).count() == 1


def test_delete_course_removes_dependents_and_keeps_certificates(
    db, storage, s3_client, populated_course
):
    course_id, student_id = populated_course

    result = CourseService(db, storage).delete_course(course_id, ADMIN_ACTOR)

    assert result["s3_files_failed"] == 0
    assert result["summary"]["videos"] == 1
    assert len(s3_client.deleted) == 3

    assert db.query(Course).filter(Course.id == course_id).count() == 0
    assert db.query(CourseVersion).filter(CourseVersion.course_id == course_id).count() == 0
    assert db.query(Video).filter(Video.course_id == course_id).count() == 0
    assert db.query(Material).filter(Material.course_id == course_id).count() == 0
    assert db.query(Progress).filter(Progress.course_id == course_id).count() == 0
    assert db.query(CourseEnrollment).filter(CourseEnrollment.course_id == course_id).count() == 0
    assert db.query(PurchasedCourse).filter(PurchasedCourse.user_id == student_id).count() == 0
    assert db.query(Certificate).filter(Certificate.course_id == course_id).count() == 1

    audit = db.query(AuditLog).filter(AuditLog.action == "course_deleted").one()
    assert audit.entity_id == course_id
    assert audit.deletion_summary["certificates_preserved"] == 1
    assert audit.deletion_summary["s3_files_deleted"] == 3


def test_delete_course_tolerates_storage_failures(db, storage, s3_client, populated_course):
    course_id, _ = populated_course
    s3_client.fail_deletes = True

    result = CourseService(db, storage).delete_course(course_id, ADMIN_ACTOR)

    assert result["s3_files_failed"] == 3
    assert db.query(Course).filter(Course.id == course_id).count() == 0


def test_delete_course_is_atomic(db, storage, populated_course, monkeypatch):
    """Test a failure late in the deletion leaves every row in place"""
    course_id, student_id = populated_course

    def broken_delete(self, course):
        raise RuntimeError("connection lost")

    monkeypatch.setattr(CourseService, "_delete_course_row", broken_delete)
    certificate = db.query(Certificate).filter(Certificate.course_id == course_id).one()
    certificate_before = (certificate.id, certificate.user_id, certificate.certificate_number)

    with pytest.raises(TransactionError):
        CourseService(db, storage).delete_course(course_id, ADMIN_ACTOR)

    certificates = db.query(Certificate).filter(Certificate.course_id == course_id).all()
    assert [(c.id, c.user_id, c.certificate_number) for c in certificates] == [certificate_before]

    assert db.query(Course).filter(Course.id == course_id).count() == 1
    assert db.query(CourseVersion).filter(CourseVersion.course_id == course_id).count() == 2
    assert db.query(Video).filter(Video.course_id == course_id).count() == 1
    assert db.query(Progress).count() == 1
    assert db.query(CourseEnrollment).count() == 1
    assert db.query(PurchasedCourse).filter(PurchasedCourse.user_id == student_id).count() == 1
    assert db.query(AuditLog).filter(AuditLog.action == "course_deleted").count() == 0


def test_delete_course_deactivates_bundle_left_empty(db, storage, make_course, make_bundle):
    solo = make_course(title="Solo")
    other = make_course(title="Other")
    solo_bundle = make_bundle([solo.id], title="Solo Pack")
    shared_bundle = make_bundle([solo.id, other.id], title="Shared Pack")
    solo_bundle_id, shared_bundle_id, solo_id, other_id = (
        solo_bundle.id,
        shared_bundle.id,
        solo.id,
        other.id,
    )

    summary = CourseService(db, storage).get_deletion_summary(solo_id)["summary"]
    flags = {b["id"]: b["will_become_inactive"] for b in summary["bundles"]}
    assert flags == {solo_bundle_id: True, shared_bundle_id: False}

    CourseService(db, storage).delete_course(solo_id, ADMIN_ACTOR)
    db.expire_all()

    emptied = db.query(Bundle).filter(Bundle.id == solo_bundle_id).one()
    assert emptied.course_ids == []
    assert emptied.status == "inactive"
    assert emptied.is_public is False

    shared = db.query(Bundle).filter(Bundle.id == shared_bundle_id).one()
    assert shared.course_ids == [other_id]
    assert shared.status == "active"


def test_delete_course_api(client, db, make_user, make_course):
    admin = make_user(role="admin")
    course_id = make_course().id

    response = client.delete(f"/courses/{course_id}", headers=auth_headers(admin))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["course_id"] == course_id
    assert db.query(Course).filter(Course.id == course_id).count() == 0


def test_delete_unknown_course_returns_404(client, make_user):
    admin = make_user(role="admin")

    response = client.delete("/courses/9999", headers=auth_headers(admin))

    assert response.status_code == 404
    assert response.json()["message"] == "Course not found"
