# app/services/bundle.py
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import UploadFile
from sqlalchemy import Text, cast, func, or_
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.decorator import db_exception
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.bundle import Bundle, BundleEnrollment
from app.models.course import CONTENT_STATUSES, Course
from app.models.purchase import PurchasedBundle
from app.schemas.bundle import BundleCreate, BundleResponse, BundleUpdate
from app.services.audit_log import AuditActor, AuditLogService
from app.services.course import add_months
from app.utils.file_upload import ALLOWED_IMAGE_TYPES, MAX_IMAGE_SIZE, read_upload
from app.utils.localized import display_text, to_storage
from app.utils.slug import generate_unique_slug
from app.utils.storage import S3StorageService, get_storage

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "title",
    "description",
    "long_description",
    "price",
    "original_value",
    "category",
    "tags",
    "featured",
    "is_public",
    "status",
    "max_enrollments",
)


class BundleService:
    """Bundle lifecycle. Mirrors the course lifecycle without versions."""

    def __init__(self, db: Session, storage: Optional[S3StorageService] = None):
        self.db = db
        self.storage = storage or get_storage()
        self.audit = AuditLogService(db)

    def get_bundle_or_404(self, bundle_id: int) -> Bundle:
        bundle = self.db.query(Bundle).filter(Bundle.id == bundle_id).first()
        if not bundle:
            raise NotFoundError("Bundle not found")
        return bundle

    def _load_courses(self, course_ids: List[int]) -> List[Course]:
        unique_ids = list(dict.fromkeys(course_ids))
        courses = self.db.query(Course).filter(Course.id.in_(unique_ids)).all()
        if len(courses) != len(unique_ids):
            raise ValidationError(
                "One or more course IDs are invalid", errors=["course_ids"]
            )
        by_id = {course.id: course for course in courses}
        return [by_id[course_id] for course_id in unique_ids]

    def serialize(self, bundle: Bundle) -> Dict[str, Any]:
        data = BundleResponse.model_validate(bundle).model_dump()
        if bundle.thumbnail_s3_key:
            data["thumbnail_url"] = self.storage.thumbnail_url(bundle.thumbnail_s3_key)
        for course_data, course in zip(data["courses"], bundle.courses):
            if course.thumbnail_s3_key:
                course_data["thumbnail_url"] = self.storage.thumbnail_url(
                    course.thumbnail_s3_key
                )
        return data

    # ==================== Create / Update ====================

    @db_exception
    def create_bundle(
        self, bundle_in: BundleCreate, actor: Optional[AuditActor] = None
    ) -> Bundle:
        errors = []
        if not display_text(bundle_in.title).strip():
            errors.append("title")
        if not display_text(bundle_in.description).strip():
            errors.append("description")
        if errors:
            raise ValidationError(
                f"Invalid or missing fields: {', '.join(errors)}", errors=errors
            )

        courses = self._load_courses(bundle_in.course_ids)
        created_by = actor.email if actor else "admin"
        title = to_storage(bundle_in.title)

        bundle = Bundle(
            title=title,
            description=to_storage(bundle_in.description),
            long_description=to_storage(bundle_in.long_description),
            price=bundle_in.price,
            original_value=bundle_in.original_value,
            category=bundle_in.category,
            tags=bundle_in.tags,
            featured=bundle_in.featured,
            is_public=bundle_in.is_public,
            max_enrollments=bundle_in.max_enrollments,
            status="active",
            total_enrollments=0,
            slug=generate_unique_slug(self.db, Bundle, display_text(title)),
            created_by=created_by,
            last_modified_by=created_by,
        )
        bundle.courses = courses
        self.db.add(bundle)
        self.db.flush()

        self.audit.record(
            "bundle_created",
            "bundle",
            bundle.id,
            title,
            actor,
            details={"course_ids": bundle.course_ids, "price": float(bundle_in.price)},
        )
        self.db.commit()
        self.db.refresh(bundle)

        logger.info(f"✅ Bundle created: {display_text(title)} (id={bundle.id})")
        return bundle

    @db_exception
    def update_bundle(
        self,
        bundle_id: int,
        bundle_in: BundleUpdate,
        actor: Optional[AuditActor] = None,
    ) -> Bundle:
        bundle = self.get_bundle_or_404(bundle_id)

        payload = bundle_in.model_dump(exclude_unset=True)
        values = {
            key: value
            for key, value in payload.items()
            if key in UPDATABLE_FIELDS and value is not None
        }

        if "course_ids" in payload and payload["course_ids"] is not None:
            bundle.courses = self._load_courses(payload["course_ids"])

        target_status = values.get("status", bundle.status)
        if target_status == "active" and not bundle.courses:
            raise ValidationError(
                "An active bundle must contain at least one course",
                errors=["course_ids"],
            )

        for key, value in values.items():
            setattr(bundle, key, value)

        if "title" in values:
            bundle.slug = generate_unique_slug(
                self.db, Bundle, display_text(bundle.title), exclude_id=bundle.id
            )
        bundle.last_modified_by = actor.email if actor else "admin"

        self.audit.record(
            "bundle_updated",
            "bundle",
            bundle.id,
            bundle.title,
            actor,
            details={"updated_fields": sorted(set(values) | set(payload) & {"course_ids"})},
        )
        self.db.commit()
        self.db.refresh(bundle)
        return bundle

    async def upload_thumbnail(
        self, bundle_id: int, file: UploadFile, actor: Optional[AuditActor] = None
    ) -> Bundle:
        bundle = self.get_bundle_or_404(bundle_id)

        payload = await read_upload(file, ALLOWED_IMAGE_TYPES, MAX_IMAGE_SIZE)
        key = self.storage.generate_bundle_thumbnail_key(payload.filename, bundle.title)
        result = await run_in_threadpool(self.storage.upload, payload, key)

        old_key = bundle.thumbnail_s3_key
        bundle.thumbnail_url = result.public_url
        bundle.thumbnail_s3_key = result.s3_key
        bundle.last_modified_by = actor.email if actor else "admin"
        self.db.commit()
        self.db.refresh(bundle)

        if old_key and old_key != result.s3_key:
            try:
                self.storage.delete(old_key)
            except Exception as e:
                logger.warning(f"⚠️ Failed to delete old bundle thumbnail {old_key}: {e}")

        logger.info(f"✅ Thumbnail uploaded for bundle {bundle.id}")
        return bundle

    # ==================== Delete ====================

    @db_exception
    def delete_bundle(
        self, bundle_id: int, actor: Optional[AuditActor] = None
    ) -> Dict[str, Any]:
        """
        Remove the bundle and scrub it from every user's purchased bundles.
        Course enrollments made at purchase time are left alone.
        """
        bundle = self.get_bundle_or_404(bundle_id)
        title = display_text(bundle.title, default="Untitled")

        thumbnail_deleted = False
        if bundle.thumbnail_s3_key:
            try:
                self.storage.delete(bundle.thumbnail_s3_key)
                thumbnail_deleted = True
            except Exception as e:
                logger.warning(f"⚠️ Failed to delete bundle thumbnail: {e}")

        users_affected = (
            self.db.query(PurchasedBundle)
            .filter(PurchasedBundle.bundle_id == bundle_id)
            .delete(synchronize_session=False)
        )
        enrollments_removed = (
            self.db.query(BundleEnrollment)
            .filter(BundleEnrollment.bundle_id == bundle_id)
            .delete(synchronize_session=False)
        )
        course_ids = bundle.course_ids
        bundle.courses = []
        self.db.delete(bundle)

        self.audit.record(
            "bundle_deleted",
            "bundle",
            bundle_id,
            title,
            actor,
            details={"course_ids": course_ids, "price": float(bundle.price or 0)},
            deletion_summary={
                "users_affected": users_affected,
                "bundle_enrollments_deleted": enrollments_removed,
                "thumbnail_deleted": thumbnail_deleted,
            },
        )
        self.db.commit()

        logger.info(f"✅ Bundle deleted: {title}")
        return {
            "bundle_id": bundle_id,
            "bundle_title": title,
            "users_affected": users_affected,
            "bundle_enrollments_deleted": enrollments_removed,
        }

    # ==================== Archive ====================

    @db_exception
    def archive_bundle(
        self,
        bundle_id: int,
        reason: Optional[str] = None,
        grace_period_months: Optional[int] = None,
        actor: Optional[AuditActor] = None,
    ) -> Bundle:
        bundle = self.get_bundle_or_404(bundle_id)
        if bundle.status == "archived":
            raise ConflictError("Bundle is already archived", 400)

        if grace_period_months is None:
            grace_period_months = settings.archive_grace_period_months

        now = datetime.now(timezone.utc)
        bundle.status = "archived"
        bundle.archived_at = now
        bundle.archive_reason = reason or "Admin request"
        bundle.archive_grace_period = add_months(now, grace_period_months)
        bundle.last_modified_by = actor.email if actor else "admin"

        self.audit.record(
            "bundle_archived",
            "bundle",
            bundle.id,
            bundle.title,
            actor,
            details={
                "reason": bundle.archive_reason,
                "grace_period_months": grace_period_months,
            },
        )
        self.db.commit()
        self.db.refresh(bundle)
        return bundle

    @db_exception
    def unarchive_bundle(
        self, bundle_id: int, actor: Optional[AuditActor] = None
    ) -> Bundle:
        bundle = self.get_bundle_or_404(bundle_id)
        if bundle.status != "archived":
            raise ConflictError("Bundle is not archived", 400)

        # a bundle that lost all its courses cannot come back as active
        bundle.status = "active" if bundle.courses else "inactive"
        bundle.archived_at = None
        bundle.archive_reason = None
        bundle.archive_grace_period = None
        bundle.last_modified_by = actor.email if actor else "admin"

        self.audit.record("bundle_unarchived", "bundle", bundle.id, bundle.title, actor)
        self.db.commit()
        self.db.refresh(bundle)
        return bundle

    # ==================== Reads ====================

    def get_bundles(
        self,
        page: int = 1,
        size: int = 20,
        status: Optional[str] = None,
        category: Optional[str] = None,
        featured: Optional[bool] = None,
        search: Optional[str] = None,
        public_only: bool = True,
    ) -> Tuple[List[Bundle], dict]:
        query = self.db.query(Bundle)

        if public_only:
            query = query.filter(Bundle.status == "active", Bundle.is_public.is_(True))
        elif status and status != "all":
            if status not in CONTENT_STATUSES:
                raise ValidationError("Invalid status filter", errors=["status"])
            query = query.filter(Bundle.status == status)

        if category:
            query = query.filter(Bundle.category == category)
        if featured:
            query = query.filter(Bundle.featured.is_(True))
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            query = query.filter(
                or_(
                    func.lower(cast(Bundle.title, Text)).like(pattern),
                    func.lower(cast(Bundle.description, Text)).like(pattern),
                )
            )

        total = query.count()
        offset = (page - 1) * size
        bundles = (
            query.order_by(Bundle.created_at.desc(), Bundle.id.desc())
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
        return bundles, pagination

    def get_public_bundle(self, bundle_id: int, include_hidden: bool = False) -> Bundle:
        bundle = self.get_bundle_or_404(bundle_id)
        if not include_hidden and not bundle.is_available_for_purchase:
            raise NotFoundError("Bundle not found")
        return bundle

    def get_user_purchased_bundles(self, user_id: int) -> List[Bundle]:
        return (
            self.db.query(Bundle)
            .join(PurchasedBundle, PurchasedBundle.bundle_id == Bundle.id)
            .filter(PurchasedBundle.user_id == user_id)
            .order_by(PurchasedBundle.added_at.desc(), Bundle.id.desc())
            .all()
        )
