# app/services/course.py
import calendar
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import Text, cast, func, or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.decorator import db_exception
from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    TransactionError,
    ValidationError,
)
from app.models.bundle import Bundle, bundle_courses
from app.models.certificate import Certificate
from app.models.course import COURSE_CATEGORIES, COURSE_LEVELS, CONTENT_STATUSES, Course
from app.models.course_enrollment import CourseEnrollment
from app.models.course_version import CourseVersion
from app.models.material import Material
from app.models.progress import Progress
from app.models.purchase import PurchasedCourse
from app.models.video import Video
from app.schemas.course import CourseCreate, CourseUpdate
from app.services.audit_log import AuditActor, AuditLogService
from app.utils.localized import display_text, to_storage
from app.utils.slug import generate_unique_slug
from app.utils.storage import S3StorageService, get_storage

logger = logging.getLogger(__name__)

# Fields an update may touch; anything else in the payload is ignored
UPDATABLE_FIELDS = (
    "title",
    "description",
    "price",
    "category",
    "level",
    "tags",
    "is_public",
    "featured",
    "max_enrollments",
)
# Fields mirrored onto the current CourseVersion row
VERSION_MIRRORED_FIELDS = ("title", "description", "price", "category", "level", "is_public")


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CourseService:
    """Content lifecycle for courses: create, version, update, deactivate, archive, delete."""

    def __init__(self, db: Session, storage: Optional[S3StorageService] = None):
        self.db = db
        self.storage = storage or get_storage()
        self.audit = AuditLogService(db)

    # ==================== Helpers ====================

    def get_course_or_404(self, course_id: int) -> Course:
        course = self.db.query(Course).filter(Course.id == course_id).first()
        if not course:
            raise NotFoundError("Course not found")
        return course

    def get_version(self, course_id: int, version_number: int) -> Optional[CourseVersion]:
        return (
            self.db.query(CourseVersion)
            .filter(
                CourseVersion.course_id == course_id,
                CourseVersion.version_number == version_number,
            )
            .first()
        )

    @staticmethod
    def _validate_fields(values: Dict[str, Any]) -> None:
        """Collect every offending field before rejecting."""
        errors = []
        if "title" in values and not display_text(values["title"]).strip():
            errors.append("title")
        if "description" in values and not display_text(values["description"]).strip():
            errors.append("description")
        if "category" in values and values["category"] not in COURSE_CATEGORIES:
            errors.append("category")
        if "level" in values and values["level"] not in COURSE_LEVELS:
            errors.append("level")
        if errors:
            raise ValidationError(
                f"Invalid or missing fields: {', '.join(errors)}", errors=errors
            )

    def thumbnail_url(self, course: Course) -> Optional[str]:
        if course.thumbnail_s3_key:
            return self.storage.thumbnail_url(course.thumbnail_s3_key)
        return course.thumbnail_url

    # ==================== Create / Version ====================

    @db_exception
    def create_course(
        self, course_in: CourseCreate, actor: Optional[AuditActor] = None
    ) -> Course:
        """
        Persist a course at version 1 together with its CourseVersion(1).

        A failed version insert leaves the course in place; ``create_new_version``
        repairs the missing row later.
        """
        values = course_in.model_dump()
        self._validate_fields(values)

        created_by = actor.email if actor else "admin"
        title = to_storage(course_in.title)
        description = to_storage(course_in.description)

        course = Course(
            title=title,
            description=description,
            price=course_in.price,
            category=course_in.category,
            level=course_in.level,
            tags=course_in.tags,
            is_public=course_in.is_public,
            featured=course_in.featured,
            max_enrollments=course_in.max_enrollments,
            version=1,
            current_version=1,
            status="active",
            total_enrollments=0,
            slug=generate_unique_slug(self.db, Course, display_text(title)),
            created_by=created_by,
            last_modified_by=created_by,
        )
        self.db.add(course)
        self.db.flush()

        try:
            with self.db.begin_nested():
                self.db.add(self._snapshot_version(course, 1, "Initial version", created_by))
                self.db.flush()
        except Exception as e:
            logger.warning(
                f"⚠️ Course {course.id} created without its version 1 row: {e}"
            )

        self.audit.record(
            "course_created",
            "course",
            course.id,
            title,
            actor,
            details={
                "price": float(course.price),
                "category": course.category,
                "level": course.level,
            },
        )
        self.db.commit()
        self.db.refresh(course)

        logger.info(f"✅ Course created: {display_text(title)} (id={course.id})")
        return course

    def _snapshot_version(
        self, course: Course, version_number: int, change_log: Optional[str], created_by: str
    ) -> CourseVersion:
        return CourseVersion(
            course_id=course.id,
            version_number=version_number,
            title=course.title,
            description=course.description,
            price=course.price,
            category=course.category,
            level=course.level,
            is_public=course.is_public,
            status="active",
            thumbnail_url=course.thumbnail_url,
            thumbnail_s3_key=course.thumbnail_s3_key,
            s3_folder_path=self.storage.course_folder_path(course.title, version_number),
            change_log=change_log,
            created_by=created_by,
            total_videos=0,
            total_materials=0,
        )

    @db_exception
    def create_new_version(
        self,
        course_id: int,
        change_log: Optional[str] = None,
        actor: Optional[AuditActor] = None,
    ) -> CourseVersion:
        """Append version N+1 (N = highest existing, 0 if none). Media is not copied."""
        course = self.get_course_or_404(course_id)

        latest = (
            self.db.query(func.max(CourseVersion.version_number))
            .filter(CourseVersion.course_id == course_id)
            .scalar()
        )
        next_version = (latest or 0) + 1
        created_by = actor.email if actor else "admin"

        version = self._snapshot_version(
            course,
            next_version,
            change_log or f"Version {next_version}",
            created_by,
        )
        self.db.add(version)

        course.version = next_version
        course.current_version = next_version
        course.last_modified_by = created_by

        self.db.commit()
        self.db.refresh(version)

        logger.info(f"✅ Course {course_id} moved to version {next_version}")
        return version

    # ==================== Update ====================

    @db_exception
    def update_course(
        self,
        course_id: int,
        course_in: CourseUpdate,
        actor: Optional[AuditActor] = None,
    ) -> Course:
        """Whitelisted partial update; never creates a new version."""
        course = self.get_course_or_404(course_id)

        values = {
            key: value
            for key, value in course_in.model_dump(exclude_unset=True).items()
            if key in UPDATABLE_FIELDS and value is not None
        }
        self._validate_fields(values)

        # dumped BilingualText is already a plain dict
        for key, value in values.items():
            setattr(course, key, value)

        if "title" in values:
            course.slug = generate_unique_slug(
                self.db, Course, display_text(course.title), exclude_id=course.id
            )

        course.last_modified_by = actor.email if actor else "admin"

        current = self.get_version(course.id, course.current_version)
        if current:
            for key in VERSION_MIRRORED_FIELDS:
                if key in values:
                    setattr(current, key, values[key])

        self.audit.record(
            "course_updated",
            "course",
            course.id,
            course.title,
            actor,
            details={"updated_fields": sorted(values.keys())},
        )
        self.db.commit()
        self.db.refresh(course)
        return course

    # ==================== Deactivate / Reactivate ====================

    @db_exception
    def deactivate_course(
        self,
        course_id: int,
        reason: Optional[str] = None,
        actor: Optional[AuditActor] = None,
    ) -> Course:
        """Hide the course from listings; enrolled students keep access."""
        course = self.get_course_or_404(course_id)

        if course.status == "inactive":
            raise ConflictError("Course is already inactive", 400)
        if course.status == "archived":
            raise ConflictError("Archived courses cannot be deactivated", 400)

        now = datetime.now(timezone.utc)
        course.status = "inactive"
        course.deactivated_at = now
        course.deactivation_reason = reason or "Course deactivated by admin"
        # advisory only; nothing purges on this date
        course.archive_grace_period = add_months(now, settings.archive_grace_period_months)
        course.last_modified_by = actor.email if actor else "admin"

        self.audit.record(
            "course_deactivated",
            "course",
            course.id,
            course.title,
            actor,
            details={"reason": course.deactivation_reason},
        )
        self.db.commit()
        self.db.refresh(course)

        logger.info(f"✅ Course {course.id} deactivated")
        return course

    @db_exception
    def reactivate_course(
        self, course_id: int, actor: Optional[AuditActor] = None
    ) -> Course:
        course = self.get_course_or_404(course_id)

        if course.status == "active":
            raise ConflictError("Course is already active", 400)
        if course.status != "inactive":
            raise ConflictError("Only inactive courses can be reactivated", 400)

        course.status = "active"
        course.deactivated_at = None
        course.deactivation_reason = None
        course.archive_grace_period = None
        course.last_modified_by = actor.email if actor else "admin"

        self.audit.record("course_reactivated", "course", course.id, course.title, actor)
        self.db.commit()
        self.db.refresh(course)

        logger.info(f"✅ Course {course.id} reactivated")
        return course

    # ==================== Archive / Unarchive ====================

    def archive_course(
        self,
        course_id: int,
        reason: Optional[str] = None,
        grace_period_months: Optional[int] = None,
        actor: Optional[AuditActor] = None,
    ) -> Dict[str, Any]:
        """
        Archive the course and every version in one commit, then copy each
        version's blob folder to the archive area. Copy failures are logged only.
        """
        course = self.get_course_or_404(course_id)
        if course.status == "archived":
            raise ConflictError("Course is already archived", 400)

        if grace_period_months is None:
            grace_period_months = settings.archive_grace_period_months

        now = datetime.now(timezone.utc)
        grace = add_months(now, grace_period_months)
        existing_grace = _aware(course.archive_grace_period)
        if existing_grace and existing_grace > grace:
            grace = existing_grace

        reason = reason or "Course archived by admin"
        course.status = "archived"
        course.archived_at = now
        course.archive_reason = reason
        course.archive_grace_period = grace
        course.last_modified_by = actor.email if actor else "admin"

        versions = (
            self.db.query(CourseVersion)
            .filter(CourseVersion.course_id == course.id)
            .order_by(CourseVersion.version_number)
            .all()
        )
        for version in versions:
            version.status = "archived"
            version.archived_at = now
            version.archive_reason = reason

        self.audit.record(
            "course_archived",
            "course",
            course.id,
            course.title,
            actor,
            details={
                "reason": reason,
                "grace_period_months": grace_period_months,
                "versions_archived": len(versions),
            },
        )
        self._commit_or_rollback("archive course")

        archived_objects = 0
        failed_versions = []
        for version in versions:
            try:
                archived_objects += self.storage.archive_course_content(
                    course.title, version.version_number
                )
            except Exception as e:
                failed_versions.append(version.version_number)
                logger.warning(
                    f"⚠️ Failed to archive storage for course {course.id} v{version.version_number}: {e}"
                )

        self.db.refresh(course)
        logger.info(f"✅ Course {course.id} archived ({len(versions)} versions)")
        return {
            "course": course,
            "versions_archived": len(versions),
            "storage_objects_archived": archived_objects,
            "storage_failed_versions": failed_versions,
        }

    @db_exception
    def unarchive_course(
        self, course_id: int, actor: Optional[AuditActor] = None
    ) -> Course:
        course = self.get_course_or_404(course_id)
        if course.status != "archived":
            raise ConflictError("Course is not archived", 400)

        course.status = "active"
        course.archived_at = None
        course.archive_reason = None
        course.archive_grace_period = None
        course.deactivated_at = None
        course.deactivation_reason = None
        course.last_modified_by = actor.email if actor else "admin"

        versions = (
            self.db.query(CourseVersion)
            .filter(
                CourseVersion.course_id == course.id,
                CourseVersion.status == "archived",
            )
            .all()
        )
        for version in versions:
            version.status = "active"
            version.archived_at = None
            version.archive_reason = None

        self.audit.record(
            "course_unarchived",
            "course",
            course.id,
            course.title,
            actor,
            details={"versions_restored": len(versions)},
        )
        self.db.commit()
        self.db.refresh(course)

        logger.info(f"✅ Course {course.id} unarchived")
        return course

    # ==================== Deletion ====================

    def _collect_dependents(self, course: Course) -> Dict[str, Any]:
        course_id = course.id
        videos = self.db.query(Video).filter(Video.course_id == course_id).all()
        materials = self.db.query(Material).filter(Material.course_id == course_id).all()
        bundles = (
            self.db.query(Bundle)
            .join(bundle_courses, bundle_courses.c.bundle_id == Bundle.id)
            .filter(bundle_courses.c.course_id == course_id)
            .order_by(Bundle.id)
            .all()
        )

        purchaser_ids = {
            row[0]
            for row in self.db.query(PurchasedCourse.user_id)
            .filter(PurchasedCourse.course_id == course_id)
            .all()
        }
        enrolled_ids = {
            row[0]
            for row in self.db.query(CourseEnrollment.user_id)
            .filter(CourseEnrollment.course_id == course_id)
            .all()
        }

        s3_keys = []
        if course.thumbnail_s3_key:
            s3_keys.append(course.thumbnail_s3_key)
        s3_keys.extend(v.s3_key for v in videos if v.s3_key)
        s3_keys.extend(m.s3_key for m in materials if m.s3_key)

        return {
            "versions": self.db.query(CourseVersion)
            .filter(CourseVersion.course_id == course_id)
            .count(),
            "videos": videos,
            "materials": materials,
            "certificates": self.db.query(Certificate)
            .filter(Certificate.course_id == course_id)
            .count(),
            "progress": self.db.query(Progress)
            .filter(Progress.course_id == course_id)
            .count(),
            "enrollments": len(enrolled_ids),
            "users": purchaser_ids | enrolled_ids,
            "bundles": bundles,
            "s3_keys": s3_keys,
        }

    @staticmethod
    def _summary_counts(dependents: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "versions": dependents["versions"],
            "videos": len(dependents["videos"]),
            "materials": len(dependents["materials"]),
            "certificates_preserved": dependents["certificates"],
            "progress_records": dependents["progress"],
            "enrollments": dependents["enrollments"],
            "users_affected": len(dependents["users"]),
            "bundles_affected": len(dependents["bundles"]),
            "s3_files": len(dependents["s3_keys"]),
            "bundles": [
                {
                    "id": bundle.id,
                    "title": display_text(bundle.title, default="Untitled"),
                    "will_become_inactive": len(bundle.course_ids) == 1,
                }
                for bundle in dependents["bundles"]
            ],
        }

    def get_deletion_summary(self, course_id: int) -> Dict[str, Any]:
        """Read-only projection of what ``delete_course`` would remove."""
        course = self.get_course_or_404(course_id)
        dependents = self._collect_dependents(course)
        return {
            "course_id": course.id,
            "course_title": display_text(course.title, default="Untitled"),
            "price": float(course.price or 0),
            "total_enrollments": course.total_enrollments or 0,
            "summary": self._summary_counts(dependents),
        }

    def delete_course(
        self, course_id: int, actor: Optional[AuditActor] = None
    ) -> Dict[str, Any]:
        """
        Permanently delete a course.

        Blob objects (thumbnail, videos, materials) are removed first on a
        best-effort basis. Database rows are then removed in one transaction;
        any failure rolls everything back and raises ``TransactionError``.
        Certificates are never touched.
        """
        course = self.get_course_or_404(course_id)
        dependents = self._collect_dependents(course)
        counts = self._summary_counts(dependents)
        course_title = display_text(course.title, default="Untitled")

        logger.info(f"🗑️ Deleting course '{course_title}' (id={course.id})")

        s3_failed = 0
        for key in dependents["s3_keys"]:
            try:
                self.storage.delete(key)
            except Exception as e:
                s3_failed += 1
                logger.warning(f"⚠️ Failed to delete {key} from storage: {e}")

        details = {
            "course_price": float(course.price or 0),
            "total_enrollments": course.total_enrollments or 0,
            "category": course.category,
            "level": course.level,
        }

        try:
            self._delete_progress(course_id)
            self._delete_videos(course_id)
            self._delete_materials(course_id)
            self._delete_versions(course_id)
            self._delete_enrollments(course_id)
            self._detach_from_users(course_id)
            self._detach_from_bundles(course_id, dependents["bundles"])
            self._delete_course_row(course)
            self.audit.record(
                "course_deleted",
                "course",
                course_id,
                course_title,
                actor,
                details=details,
                deletion_summary={
                    "videos_deleted": counts["videos"],
                    "materials_deleted": counts["materials"],
                    "certificates_preserved": counts["certificates_preserved"],
                    "versions_deleted": counts["versions"],
                    "progress_records_deleted": counts["progress_records"],
                    "enrollments_deleted": counts["enrollments"],
                    "users_affected": counts["users_affected"],
                    "bundles_affected": counts["bundles_affected"],
                    "s3_files_deleted": counts["s3_files"] - s3_failed,
                },
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Course deletion rolled back for {course_id}: {e}", exc_info=True)
            raise TransactionError("Failed to delete course; no changes were saved")

        logger.info(f"🎉 Course '{course_title}' deleted")
        return {
            "course_id": course_id,
            "course_title": course_title,
            "price": details["course_price"],
            "total_enrollments": details["total_enrollments"],
            "summary": counts,
            "s3_files_failed": s3_failed,
        }

    def _delete_progress(self, course_id: int) -> int:
        return (
            self.db.query(Progress)
            .filter(Progress.course_id == course_id)
            .delete(synchronize_session=False)
        )

    def _delete_videos(self, course_id: int) -> int:
        return (
            self.db.query(Video)
            .filter(Video.course_id == course_id)
            .delete(synchronize_session=False)
        )

    def _delete_materials(self, course_id: int) -> int:
        return (
            self.db.query(Material)
            .filter(Material.course_id == course_id)
            .delete(synchronize_session=False)
        )

    def _delete_versions(self, course_id: int) -> int:
        return (
            self.db.query(CourseVersion)
            .filter(CourseVersion.course_id == course_id)
            .delete(synchronize_session=False)
        )

    def _delete_enrollments(self, course_id: int) -> int:
        return (
            self.db.query(CourseEnrollment)
            .filter(CourseEnrollment.course_id == course_id)
            .delete(synchronize_session=False)
        )

    def _detach_from_users(self, course_id: int) -> int:
        return (
            self.db.query(PurchasedCourse)
            .filter(PurchasedCourse.course_id == course_id)
            .delete(synchronize_session=False)
        )

    def _detach_from_bundles(self, course_id: int, bundles: List[Bundle]) -> None:
        for bundle in bundles:
            bundle.courses = [c for c in bundle.courses if c.id != course_id]
            if not bundle.courses:
                bundle.status = "inactive"
                bundle.is_public = False
                logger.warning(
                    f"⚠️ Bundle {bundle.id} has no courses left, marking as inactive"
                )
        self.db.flush()

    def _delete_course_row(self, course: Course) -> None:
        self.db.delete(course)
        self.db.flush()

    def _commit_or_rollback(self, operation: str) -> None:
        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to {operation}: {e}", exc_info=True)
            raise TransactionError(f"Failed to {operation}")

    # ==================== Reads ====================

    def get_courses(
        self,
        page: int = 1,
        size: int = 20,
        status: Optional[str] = None,
        category: Optional[str] = None,
        level: Optional[str] = None,
        search: Optional[str] = None,
        public_only: bool = True,
        featured: Optional[bool] = None,
    ) -> Tuple[List[Course], dict]:
        """
        Public listings only show active, public courses; admin listings may
        filter by any status.
        """
        query = self.db.query(Course)

        if public_only:
            query = query.filter(Course.status == "active", Course.is_public.is_(True))
        elif status:
            if status not in CONTENT_STATUSES:
                raise ValidationError("Invalid status filter", errors=["status"])
            query = query.filter(Course.status == status)

        if category:
            query = query.filter(Course.category == category)
        if level:
            query = query.filter(Course.level == level)
        if featured is not None:
            query = query.filter(Course.featured.is_(featured))
        if search:
            # JSON columns are searched through their serialized text
            pattern = f"%{search.lower()}%"
            query = query.filter(
                or_(
                    func.lower(Course.slug).like(pattern),
                    func.lower(cast(Course.title, Text)).like(pattern),
                )
            )

        total = query.count()
        offset = (page - 1) * size
        courses = (
            query.order_by(Course.featured.desc(), Course.created_at.desc(), Course.id.desc())
            .offset(offset)
            .limit(size)
            .all()
        )

        total_pages = math.ceil(total / size) if size > 0 else 0
        pagination = {
            "total": total,
            "page": page,
            "size": size,
            "total_pages": total_pages,
        }
        return courses, pagination

    def get_versions(self, course_id: int) -> List[CourseVersion]:
        self.get_course_or_404(course_id)
        return (
            self.db.query(CourseVersion)
            .filter(CourseVersion.course_id == course_id)
            .order_by(CourseVersion.version_number.desc())
            .all()
        )