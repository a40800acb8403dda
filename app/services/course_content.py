# app/services/course_content.py
import logging
from typing import Any, Dict, List, Optional

from fastapi import UploadFile
from sqlalchemy import func
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.exceptions import NotFoundError, TransactionError
from app.models.course import Course
from app.models.course_version import CourseVersion
from app.models.material import Material
from app.models.user import User
from app.models.video import Video
from app.schemas.course import (
    CourseDetailResponse,
    CourseResponse,
    EnrollmentInfo,
    MaterialResponse,
    VideoResponse,
)
from app.services.audit_log import AuditActor
from app.services.course_enrollment import EnrollmentService
from app.utils.file_upload import (
    ALLOWED_IMAGE_TYPES,
    ALLOWED_MATERIAL_TYPES,
    ALLOWED_VIDEO_TYPES,
    MAX_IMAGE_SIZE,
    MAX_MATERIAL_SIZE,
    MAX_VIDEO_SIZE,
    read_upload,
)
from app.utils.localized import LocalizedText, to_storage
from app.utils.storage import S3StorageService, UploadResult, get_storage

logger = logging.getLogger(__name__)


class CourseContentService:
    """
    Thumbnails, videos and materials attached to a specific course version.

    Uploads target an explicit version (the current one by default) and never
    create a new version. Media uploaded to the current version is mirrored
    onto the course row.
    """

    def __init__(self, db: Session, storage: Optional[S3StorageService] = None):
        self.db = db
        self.storage = storage or get_storage()

    # ==================== Helpers ====================

    def _get_course(self, course_id: int) -> Course:
        course = self.db.query(Course).filter(Course.id == course_id).first()
        if not course:
            raise NotFoundError("Course not found")
        return course

    def _get_version(self, course: Course, version: Optional[int]) -> CourseVersion:
        version_number = version or course.current_version
        course_version = (
            self.db.query(CourseVersion)
            .filter(
                CourseVersion.course_id == course.id,
                CourseVersion.version_number == version_number,
            )
            .first()
        )
        if not course_version:
            raise NotFoundError(f"Course version {version_number} not found")
        return course_version

    def _commit_upload(self, result: UploadResult) -> None:
        """Commit rows for a finished upload; remove the blob again if the commit fails."""
        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to save upload {result.s3_key}: {e}", exc_info=True)
            try:
                self.storage.delete(result.s3_key)
            except Exception as cleanup_error:
                logger.warning(f"⚠️ Orphaned upload {result.s3_key}: {cleanup_error}")
            raise TransactionError("Failed to save uploaded file")

    def _next_order(self, model, course_id: int, version_number: int) -> int:
        current_max = (
            self.db.query(func.max(model.order))
            .filter(model.course_id == course_id, model.course_version == version_number)
            .scalar()
        )
        return (current_max or 0) + 1

    # ==================== Uploads ====================

    async def upload_thumbnail(
        self,
        course_id: int,
        file: UploadFile,
        version: Optional[int] = None,
        actor: Optional[AuditActor] = None,
    ) -> CourseVersion:
        course = self._get_course(course_id)
        course_version = self._get_version(course, version)

        payload = await read_upload(file, ALLOWED_IMAGE_TYPES, MAX_IMAGE_SIZE)
        result = await run_in_threadpool(
            self.storage.upload_course_file,
            payload,
            "thumbnail",
            course.title,
            course_version.version_number,
        )

        course_version.thumbnail_url = result.public_url
        course_version.thumbnail_s3_key = result.s3_key
        if course_version.version_number == course.current_version:
            course.thumbnail_url = result.public_url
            course.thumbnail_s3_key = result.s3_key
        course.last_modified_by = actor.email if actor else "admin"

        self._commit_upload(result)
        self.db.refresh(course_version)

        logger.info(
            f"✅ Thumbnail uploaded for course {course.id} v{course_version.version_number}"
        )
        return course_version

    async def upload_video(
        self,
        course_id: int,
        file: UploadFile,
        title: Optional[LocalizedText] = None,
        version: Optional[int] = None,
        order: Optional[int] = None,
        duration: int = 0,
        is_free_preview: bool = False,
        actor: Optional[AuditActor] = None,
    ) -> Video:
        course = self._get_course(course_id)
        course_version = self._get_version(course, version)

        payload = await read_upload(file, ALLOWED_VIDEO_TYPES, MAX_VIDEO_SIZE)
        result = await run_in_threadpool(
            self.storage.upload_course_file,
            payload,
            "video",
            course.title,
            course_version.version_number,
        )

        video = Video(
            title=to_storage(title) if title else payload.filename,
            s3_key=result.s3_key,
            course_id=course.id,
            course_version=course_version.version_number,
            order=order
            if order is not None
            else self._next_order(Video, course.id, course_version.version_number),
            duration=duration,
            file_size=payload.size,
            mime_type=payload.content_type,
            original_name=payload.filename,
            is_free_preview=is_free_preview,
            uploaded_by=actor.email if actor else "admin",
        )
        self.db.add(video)
        course_version.total_videos = (course_version.total_videos or 0) + 1
        course.last_modified_by = actor.email if actor else "admin"

        self._commit_upload(result)
        self.db.refresh(video)

        logger.info(
            f"✅ Video {video.id} uploaded to course {course.id} v{course_version.version_number}"
        )
        return video

    async def upload_material(
        self,
        course_id: int,
        file: UploadFile,
        title: Optional[LocalizedText] = None,
        description: Optional[LocalizedText] = None,
        version: Optional[int] = None,
        order: Optional[int] = None,
        actor: Optional[AuditActor] = None,
    ) -> Material:
        course = self._get_course(course_id)
        course_version = self._get_version(course, version)

        payload = await read_upload(file, ALLOWED_MATERIAL_TYPES, MAX_MATERIAL_SIZE)
        result = await run_in_threadpool(
            self.storage.upload_course_file,
            payload,
            "material",
            course.title,
            course_version.version_number,
        )

        material = Material(
            title=to_storage(title) if title else payload.filename,
            description=to_storage(description) if description else None,
            s3_key=result.s3_key,
            course_id=course.id,
            course_version=course_version.version_number,
            order=order
            if order is not None
            else self._next_order(Material, course.id, course_version.version_number),
            file_size=payload.size,
            mime_type=payload.content_type,
            original_name=payload.filename,
            file_extension=payload.extension,
            uploaded_by=actor.email if actor else "admin",
        )
        self.db.add(material)
        course_version.total_materials = (course_version.total_materials or 0) + 1
        course.last_modified_by = actor.email if actor else "admin"

        self._commit_upload(result)
        self.db.refresh(material)

        logger.info(
            f"✅ Material {material.id} uploaded to course {course.id} v{course_version.version_number}"
        )
        return material

    # ==================== Deletes ====================

    def _delete_blob(self, s3_key: Optional[str]) -> bool:
        if not s3_key:
            return True
        try:
            self.storage.delete(s3_key)
            return True
        except Exception as e:
            logger.warning(f"⚠️ Failed to delete {s3_key} from storage: {e}")
            return False

    def delete_video(self, course_id: int, video_id: int) -> Dict[str, Any]:
        """Blob first (best-effort), then the row."""
        video = (
            self.db.query(Video)
            .filter(Video.id == video_id, Video.course_id == course_id)
            .first()
        )
        if not video:
            raise NotFoundError("Video not found")

        blob_deleted = self._delete_blob(video.s3_key)

        course_version = (
            self.db.query(CourseVersion)
            .filter(
                CourseVersion.course_id == course_id,
                CourseVersion.version_number == video.course_version,
            )
            .first()
        )
        if course_version and course_version.total_videos:
            course_version.total_videos -= 1

        self.db.delete(video)
        self.db.commit()

        logger.info(f"✅ Video {video_id} deleted from course {course_id}")
        return {"video_id": video_id, "blob_deleted": blob_deleted}

    def delete_material(self, course_id: int, material_id: int) -> Dict[str, Any]:
        material = (
            self.db.query(Material)
            .filter(Material.id == material_id, Material.course_id == course_id)
            .first()
        )
        if not material:
            raise NotFoundError("Material not found")

        blob_deleted = self._delete_blob(material.s3_key)

        course_version = (
            self.db.query(CourseVersion)
            .filter(
                CourseVersion.course_id == course_id,
                CourseVersion.version_number == material.course_version,
            )
            .first()
        )
        if course_version and course_version.total_materials:
            course_version.total_materials -= 1

        self.db.delete(material)
        self.db.commit()

        logger.info(f"✅ Material {material_id} deleted from course {course_id}")
        return {"material_id": material_id, "blob_deleted": blob_deleted}

    # ==================== Reads ====================

    def get_version_videos(self, course_id: int, version: Optional[int] = None) -> List[Video]:
        course = self._get_course(course_id)
        version_number = version or course.current_version
        return (
            self.db.query(Video)
            .filter(Video.course_id == course_id, Video.course_version == version_number)
            .order_by(Video.order, Video.id)
            .all()
        )

    def get_version_materials(
        self, course_id: int, version: Optional[int] = None
    ) -> List[Material]:
        course = self._get_course(course_id)
        version_number = version or course.current_version
        return (
            self.db.query(Material)
            .filter(
                Material.course_id == course_id, Material.course_version == version_number
            )
            .order_by(Material.order, Material.id)
            .all()
        )

    def serialize_course(self, course: Course) -> Dict[str, Any]:
        data = CourseResponse.model_validate(course).model_dump()
        if course.thumbnail_s3_key:
            data["thumbnail_url"] = self.storage.thumbnail_url(course.thumbnail_s3_key)
        return data

    def serialize_video(self, video: Video, include_url: bool) -> Dict[str, Any]:
        data = VideoResponse.model_validate(video).model_dump()
        data["url"] = self.storage.sign_url(video.s3_key) if include_url else None
        return data

    def serialize_material(self, material: Material, include_url: bool) -> Dict[str, Any]:
        data = MaterialResponse.model_validate(material).model_dump()
        data["url"] = self.storage.sign_url(material.s3_key) if include_url else None
        return data

    def get_course_detail(
        self, course_id: int, user: Optional[User] = None
    ) -> Dict[str, Any]:
        """
        Course with its current-version media. Media URLs are signed only for
        admins, enrolled users and free previews.
        """
        course = self._get_course(course_id)

        enrollment = None
        has_purchased = False
        if user is not None:
            enrollments = EnrollmentService(self.db)
            enrollment = enrollments.get_course_enrollment(user.id, course.id)
            has_purchased = enrollments.has_purchased_course(user.id, course.id)

        is_admin = user is not None and user.is_admin
        if not is_admin and not (course.status == "active" and course.is_public):
            # hidden courses stay reachable for people who already have access
            if enrollment is None or not course.is_accessible_to_enrolled:
                raise NotFoundError("Course not found")

        has_access = is_admin or enrollment is not None
        videos = self.get_version_videos(course.id)
        materials = self.get_version_materials(course.id)

        data = self.serialize_course(course)
        data["videos"] = [
            self.serialize_video(v, has_access or v.is_free_preview) for v in videos
        ]
        data["materials"] = [self.serialize_material(m, has_access) for m in materials]
        data["enrollment"] = (
            EnrollmentInfo.model_validate(enrollment).model_dump() if enrollment else None
        )
        data["has_purchased"] = has_purchased
        return CourseDetailResponse.model_validate(data).model_dump()
