"""
Test course creation, versioning, media uploads and the archive lifecycle
"""

import asyncio
from io import BytesIO

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from app.core.exceptions import ConflictError, ValidationError
from app.models import AuditLog, Course, CourseVersion, Video
from app.schemas.course import CourseCreate, CourseUpdate
from app.services.course import CourseService
from app.services.course_content import CourseContentService
from app.utils import file_upload
from app.utils.file_upload import read_upload
from conftest import ADMIN_ACTOR, auth_headers, make_upload


def test_create_course_starts_at_version_one(db, storage, make_course):
    """Test a new course gets exactly one matching version row"""
    course = make_course(title="Intro to Trading", price=49.99)

    assert course.version == 1
    assert course.current_version == 1
    assert course.status == "active"
    assert course.slug == "intro-to-trading"

    versions = db.query(CourseVersion).filter(CourseVersion.course_id == course.id).all()
    assert len(versions) == 1
    assert versions[0].version_number == 1
    assert versions[0].title == "Intro to Trading"
    assert float(versions[0].price) == 49.99

    audit = db.query(AuditLog).filter(AuditLog.action == "course_created").one()
    assert audit.entity_id == course.id
    assert audit.performed_by == "admin@example.com"


def test_create_course_with_bilingual_title(db, make_course):
    course = make_course(title={"en": "Crypto Basics", "tg": "Асосҳои крипто"}, category="crypto")

    assert course.title == {"en": "Crypto Basics", "tg": "Асосҳои крипто"}
    assert course.slug == "crypto-basics"


def test_duplicate_titles_get_numbered_slugs(make_course):
    first = make_course(title="Options 101")
    second = make_course(title="Options 101")
    third = make_course(title="Options 101")

    assert [first.slug, second.slug, third.slug] == ["options-101", "options-101-1", "options-101-2"]


def test_create_course_rejects_values_outside_enums(db, storage):
    """Test invalid category and level are both reported and nothing is stored"""
    course_in = CourseCreate(
        title="Cooking", description="Not finance", price=10, category="cooking", level="expert"
    )

    with pytest.raises(ValidationError) as exc_info:
        CourseService(db, storage).create_course(course_in, ADMIN_ACTOR)

    assert exc_info.value.status_code == 400
    assert exc_info.value.errors == ["category", "level"]
    assert db.query(Course).count() == 0
    assert db.query(CourseVersion).count() == 0


def test_create_course_api_returns_400_envelope_for_bad_enum(client, db, make_user):
    admin = make_user(role="admin")

    response = client.post(
        "/courses/",
        json={
            "title": "Cooking",
            "description": "Not finance",
            "price": 10,
            "category": "cooking",
            "level": "beginner",
        },
        headers=auth_headers(admin),
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["errors"] == ["category"]
    assert db.query(Course).count() == 0


def test_create_course_api(client, db, make_user):
    admin = make_user(role="admin")

    response = client.post(
        "/courses/",
        json={
            "title": "Intro to Trading",
            "description": "Learn the basics",
            "price": 49.99,
            "category": "trading",
            "level": "beginner",
        },
        headers=auth_headers(admin),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["current_version"] == 1
    assert body["data"]["slug"] == "intro-to-trading"

    audit = db.query(AuditLog).filter(AuditLog.action == "course_created").one()
    assert audit.performed_by == admin.email
    assert audit.performed_by_id == admin.id


def test_new_version_starts_empty_and_keeps_old_media(db, storage, make_course):
    """Test create -> upload video -> new version scenario"""
    course = make_course(title="Intro to Trading", price=49.99, category="trading", level="beginner")
    content = CourseContentService(db, storage)

    video = asyncio.run(
        content.upload_video(course.id, make_upload("lesson1.mp4", "video/mp4"), title="Lesson 1")
    )
    assert video.course_version == 1

    version = CourseService(db, storage).create_new_version(course.id, "Refresh", ADMIN_ACTOR)
    db.refresh(course)

    assert version.version_number == 2
    assert course.current_version == 2
    assert course.version == 2
    assert content.get_version_videos(course.id, 2) == []
    assert [v.id for v in content.get_version_videos(course.id, 1)] == [video.id]

    v1 = CourseService(db, storage).get_version(course.id, 1)
    v2 = CourseService(db, storage).get_version(course.id, 2)
    assert v1.total_videos == 1
    assert v2.total_videos == 0


def test_upload_video_stores_blob_under_version_folder(db, storage, s3_client, make_course):
    course = make_course()

    video = asyncio.run(
        CourseContentService(db, storage).upload_video(
            course.id, make_upload("intro.mp4", "video/mp4", b"x" * 10)
        )
    )

    assert video.s3_key.startswith("course-platform/courses/Intro_to_Trading/v1/videos/")
    assert video.file_size == 10
    assert video.order == 1
    assert s3_client.objects[video.s3_key] == b"x" * 10


def test_upload_rejects_disallowed_type(db, storage, s3_client, make_course):
    course = make_course()

    with pytest.raises(ValidationError):
        asyncio.run(
            CourseContentService(db, storage).upload_video(
                course.id, make_upload("notes.txt", "text/plain")
            )
        )

    assert s3_client.objects == {}
    assert db.query(Video).count() == 0


class CountingBuffer(BytesIO):
    def __init__(self, contents: bytes):
        super().__init__(contents)
        self.bytes_read = 0

    def read(self, size=-1):
        data = super().read(size)
        self.bytes_read += len(data)
        return data


def test_upload_with_oversized_declared_size_is_not_read():
    buffer = CountingBuffer(b"x" * 64)
    upload = UploadFile(
        file=buffer,
        size=64,
        filename="big.mp4",
        headers=Headers({"content-type": "video/mp4"}),
    )

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(read_upload(upload, {"video/mp4"}, max_bytes=16))

    assert "exceeds" in exc_info.value.message
    assert buffer.bytes_read == 0


def test_upload_without_declared_size_stops_past_ceiling(monkeypatch):
    monkeypatch.setattr(file_upload, "CHUNK_SIZE", 8)
    buffer = CountingBuffer(b"x" * 64)
    upload = make_upload("big.mp4", "video/mp4")
    upload.file = buffer

    with pytest.raises(ValidationError):
        asyncio.run(read_upload(upload, {"video/mp4"}, max_bytes=16))

    assert buffer.bytes_read == 24


def test_thumbnail_on_current_version_is_mirrored_to_course(db, storage, make_course):
    course = make_course()

    version = asyncio.run(
        CourseContentService(db, storage).upload_thumbnail(
            course.id, make_upload("cover.png", "image/png")
        )
    )
    db.refresh(course)

    assert version.thumbnail_s3_key == course.thumbnail_s3_key
    assert "/thumbnails/" in course.thumbnail_s3_key


def test_delete_video_tolerates_storage_failure(db, storage, s3_client, make_course):
    course = make_course()
    content = CourseContentService(db, storage)
    video = asyncio.run(content.upload_video(course.id, make_upload("a.mp4", "video/mp4")))

    s3_client.fail_deletes = True
    result = content.delete_video(course.id, video.id)

    assert result["blob_deleted"] is False
    assert db.query(Video).count() == 0


def test_update_course_regenerates_slug_and_mirrors_current_version(db, storage, make_course):
    course = make_course(title="Stocks")

    updated = CourseService(db, storage).update_course(
        course.id, CourseUpdate(title="Stock Market Basics", price=19.5), ADMIN_ACTOR
    )

    assert updated.slug == "stock-market-basics"
    version = CourseService(db, storage).get_version(course.id, 1)
    assert version.title == "Stock Market Basics"
    assert float(version.price) == 19.5


def test_update_course_keeps_own_slug(db, storage, make_course):
    course = make_course(title="ETF Guide")

    updated = CourseService(db, storage).update_course(
        course.id, CourseUpdate(title="ETF Guide"), ADMIN_ACTOR
    )

    assert updated.slug == "etf-guide"


def test_deactivate_and_reactivate(db, storage, make_course):
    course = make_course()
    service = CourseService(db, storage)

    deactivated = service.deactivate_course(course.id, "Needs review", ADMIN_ACTOR)
    assert deactivated.status == "inactive"
    assert deactivated.deactivation_reason == "Needs review"
    assert deactivated.deactivated_at is not None

    with pytest.raises(ConflictError) as exc_info:
        service.deactivate_course(course.id, None, ADMIN_ACTOR)
    assert exc_info.value.status_code == 400

    reactivated = service.reactivate_course(course.id, ADMIN_ACTOR)
    assert reactivated.status == "active"
    assert reactivated.deactivated_at is None
    assert reactivated.deactivation_reason is None
    assert reactivated.archive_grace_period is None


def test_archive_unarchive_round_trip(db, storage, s3_client, make_course):
    """Test archive then unarchive restores the pre-archive state on course and versions"""
    course = make_course()
    service = CourseService(db, storage)
    asyncio.run(
        CourseContentService(db, storage).upload_video(course.id, make_upload("a.mp4", "video/mp4"))
    )
    service.create_new_version(course.id, None, ADMIN_ACTOR)

    result = service.archive_course(course.id, "Outdated", 6, ADMIN_ACTOR)

    archived = result["course"]
    assert archived.status == "archived"
    assert archived.archive_reason == "Outdated"
    assert archived.archived_at is not None
    assert archived.archive_grace_period is not None
    assert result["versions_archived"] == 2
    assert result["storage_objects_archived"] == 1
    assert result["storage_failed_versions"] == []
    assert any(dest.startswith("course-platform/archived-courses/") for _, dest in s3_client.copied)
    assert {v.status for v in service.get_versions(course.id)} == {"archived"}

    with pytest.raises(ConflictError):
        service.archive_course(course.id, "Again", 6, ADMIN_ACTOR)

    restored = service.unarchive_course(course.id, ADMIN_ACTOR)

    assert restored.status == "active"
    assert restored.archived_at is None
    assert restored.archive_reason is None
    assert restored.archive_grace_period is None
    for version in service.get_versions(course.id):
        assert version.status == "active"
        assert version.archived_at is None
        assert version.archive_reason is None


def test_archive_reports_storage_copy_failure(db, storage, s3_client, make_course):
    course = make_course()
    asyncio.run(
        CourseContentService(db, storage).upload_video(course.id, make_upload("a.mp4", "video/mp4"))
    )
    s3_client.fail_copies = True

    result = CourseService(db, storage).archive_course(course.id, None, 6, ADMIN_ACTOR)

    assert result["course"].status == "archived"
    assert result["storage_failed_versions"] == [1]


def test_public_listing_hides_inactive_and_private_courses(client, db, storage, make_course):
    visible = make_course(title="Visible")
    make_course(title="Private", is_public=False)
    hidden = make_course(title="Hidden")
    CourseService(db, storage).deactivate_course(hidden.id, None, ADMIN_ACTOR)

    response = client.get("/courses/")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    assert [c["id"] for c in data["courses"]] == [visible.id]


def test_course_detail_hides_media_urls_from_anonymous_users(client, db, storage, make_course):
    course = make_course()
    content = CourseContentService(db, storage)
    asyncio.run(content.upload_video(course.id, make_upload("paid.mp4", "video/mp4")))
    asyncio.run(
        content.upload_video(course.id, make_upload("free.mp4", "video/mp4"), is_free_preview=True)
    )

    response = client.get(f"/courses/{course.id}")

    assert response.status_code == 200
    videos = response.json()["data"]["videos"]
    assert [v["url"] is None for v in videos] == [True, False]
    assert videos[1]["url"].startswith("https://signed.example.com/")
