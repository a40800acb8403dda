# app/routers/courses.py
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import get_admin_actor, get_current_admin, get_optional_user
from app.models.user import User
from app.schemas.common import APIResponse, ok
from app.schemas.course import (
    ArchiveRequest,
    CourseCreate,
    CourseCreatedResponse,
    CourseDeletedResponse,
    CourseDetailResponse,
    CourseListResponse,
    CourseResponse,
    CourseUpdate,
    CourseVersionResponse,
    DeactivateRequest,
    DeletionSummaryResponse,
    MaterialResponse,
    NewVersionRequest,
    VideoResponse,
)
from app.services.audit_log import AuditActor
from app.services.course import CourseService
from app.services.course_content import CourseContentService
from app.utils.storage import S3StorageService, get_storage

router = APIRouter(
    prefix="/courses",
    tags=["Courses"],
    responses={404: {"description": "Not found"}},
)


# ==================== Public Endpoints ====================


@router.get("/", response_model=APIResponse[CourseListResponse])
def list_courses(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    category: Optional[str] = Query(None, description="Filter by category"),
    level: Optional[str] = Query(None, description="Filter by level"),
    search: Optional[str] = Query(None, description="Search by title or slug"),
    featured: Optional[bool] = Query(None, description="Only featured courses"),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
):
    """
    Active, public courses. Available to everyone.
    """
    courses, pagination = CourseService(db, storage).get_courses(
        page=page,
        size=size,
        category=category,
        level=level,
        search=search,
        featured=featured,
        public_only=True,
    )
    content = CourseContentService(db, storage)
    return ok(
        {"courses": [content.serialize_course(c) for c in courses], **pagination},
        "Courses retrieved successfully",
    )


@router.get("/admin/all", response_model=APIResponse[CourseListResponse])
def list_all_courses(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None, description="active, inactive or archived"),
    category: Optional[str] = Query(None),
    level: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    current_admin: User = Depends(get_current_admin),
):
    courses, pagination = CourseService(db, storage).get_courses(
        page=page,
        size=size,
        status=status,
        category=category,
        level=level,
        search=search,
        public_only=False,
    )
    content = CourseContentService(db, storage)
    return ok(
        {"courses": [content.serialize_course(c) for c in courses], **pagination},
        "Courses retrieved successfully",
    )


@router.get("/{course_id}", response_model=APIResponse[CourseDetailResponse])
def get_course(
    course_id: int,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    current_user: Optional[User] = Depends(get_optional_user),
):
    """
    Course with its current-version videos and materials.
    Media links are only included for admins, enrolled users and free previews.
    """
    detail = CourseContentService(db, storage).get_course_detail(course_id, current_user)
    return ok(detail, "Course retrieved successfully")


# ==================== Admin: Course CRUD ====================


@router.post("/", response_model=APIResponse[CourseCreatedResponse], status_code=201)
def create_course(
    course_in: CourseCreate,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    """
    Create a course at version 1. Only admins can create courses.
    """
    course = CourseService(db, storage).create_course(course_in, actor)
    return ok(
        CourseCreatedResponse.model_validate(course).model_dump(),
        "Course created successfully",
    )


@router.put("/{course_id}", response_model=APIResponse[CourseResponse])
def update_course(
    course_id: int,
    course_in: CourseUpdate,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    course = CourseService(db, storage).update_course(course_id, course_in, actor)
    return ok(
        CourseContentService(db, storage).serialize_course(course),
        "Course updated successfully",
    )


@router.get("/{course_id}/deletion-summary", response_model=APIResponse[DeletionSummaryResponse])
def get_deletion_summary(
    course_id: int,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    current_admin: User = Depends(get_current_admin),
):
    """
    What deleting this course would remove. Nothing is changed.
    """
    summary = CourseService(db, storage).get_deletion_summary(course_id)
    return ok(summary, "Deletion summary retrieved successfully")


@router.delete("/{course_id}", response_model=APIResponse[CourseDeletedResponse])
def delete_course(
    course_id: int,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    """
    Permanently delete a course with its versions, media, progress and
    enrollments. Certificates are kept.
    """
    result = CourseService(db, storage).delete_course(course_id, actor)
    return ok(result, "Course deleted successfully")


# ==================== Admin: Lifecycle ====================


@router.post("/{course_id}/deactivate", response_model=APIResponse[CourseResponse])
def deactivate_course(
    course_id: int,
    request_in: DeactivateRequest = DeactivateRequest(),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    course = CourseService(db, storage).deactivate_course(course_id, request_in.reason, actor)
    return ok(
        CourseContentService(db, storage).serialize_course(course),
        "Course deactivated successfully",
    )


@router.post("/{course_id}/reactivate", response_model=APIResponse[CourseResponse])
def reactivate_course(
    course_id: int,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    course = CourseService(db, storage).reactivate_course(course_id, actor)
    return ok(
        CourseContentService(db, storage).serialize_course(course),
        "Course reactivated successfully",
    )


@router.post("/{course_id}/archive")
def archive_course(
    course_id: int,
    request_in: ArchiveRequest = ArchiveRequest(),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    """
    Archive the course and all its versions, then copy stored content to the
    archive area. Storage copy failures are reported, not raised.
    """
    result = CourseService(db, storage).archive_course(
        course_id, request_in.reason, request_in.grace_period_months, actor
    )
    result["course"] = CourseContentService(db, storage).serialize_course(result["course"])
    return ok(result, "Course archived successfully")


@router.post("/{course_id}/unarchive", response_model=APIResponse[CourseResponse])
def unarchive_course(
    course_id: int,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    course = CourseService(db, storage).unarchive_course(course_id, actor)
    return ok(
        CourseContentService(db, storage).serialize_course(course),
        "Course unarchived successfully",
    )


# ==================== Admin: Versions ====================


@router.get("/{course_id}/versions")
def list_versions(
    course_id: int,
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    versions = CourseService(db).get_versions(course_id)
    return ok(
        [CourseVersionResponse.model_validate(v).model_dump() for v in versions],
        "Versions retrieved successfully",
    )


@router.post("/{course_id}/versions", response_model=APIResponse[CourseVersionResponse], status_code=201)
def create_version(
    course_id: int,
    request_in: NewVersionRequest = NewVersionRequest(),
    db: Session = Depends(get_db),
    actor: AuditActor = Depends(get_admin_actor),
):
    """
    Start a new empty version. Existing versions keep their media.
    """
    version = CourseService(db).create_new_version(course_id, request_in.change_log, actor)
    return ok(
        CourseVersionResponse.model_validate(version).model_dump(),
        "New version created successfully",
    )


@router.get("/{course_id}/versions/{version}/content")
def get_version_content(
    course_id: int,
    version: int,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    current_admin: User = Depends(get_current_admin),
):
    content = CourseContentService(db, storage)
    return ok(
        {
            "version": version,
            "videos": [
                content.serialize_video(v, True)
                for v in content.get_version_videos(course_id, version)
            ],
            "materials": [
                content.serialize_material(m, True)
                for m in content.get_version_materials(course_id, version)
            ],
        },
        "Version content retrieved successfully",
    )


# ==================== Admin: Media ====================


@router.post("/{course_id}/thumbnail", response_model=APIResponse[CourseVersionResponse])
async def upload_thumbnail(
    course_id: int,
    file: UploadFile = File(...),
    version: Optional[int] = Form(None),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    course_version = await CourseContentService(db, storage).upload_thumbnail(
        course_id, file, version, actor
    )
    return ok(
        CourseVersionResponse.model_validate(course_version).model_dump(),
        "Thumbnail uploaded successfully",
    )


@router.post("/{course_id}/videos", response_model=APIResponse[VideoResponse], status_code=201)
async def upload_video(
    course_id: int,
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    version: Optional[int] = Form(None),
    order: Optional[int] = Form(None),
    duration: int = Form(0),
    is_free_preview: bool = Form(False),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    content = CourseContentService(db, storage)
    video = await content.upload_video(
        course_id,
        file,
        title=title,
        version=version,
        order=order,
        duration=duration,
        is_free_preview=is_free_preview,
        actor=actor,
    )
    return ok(content.serialize_video(video, True), "Video uploaded successfully")


@router.delete("/{course_id}/videos/{video_id}")
def delete_video(
    course_id: int,
    video_id: int,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    current_admin: User = Depends(get_current_admin),
):
    result = CourseContentService(db, storage).delete_video(course_id, video_id)
    return ok(result, "Video deleted successfully")


@router.post("/{course_id}/materials", response_model=APIResponse[MaterialResponse], status_code=201)
async def upload_material(
    course_id: int,
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    version: Optional[int] = Form(None),
    order: Optional[int] = Form(None),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    content = CourseContentService(db, storage)
    material = await content.upload_material(
        course_id,
        file,
        title=title,
        description=description,
        version=version,
        order=order,
        actor=actor,
    )
    return ok(content.serialize_material(material, True), "Material uploaded successfully")


@router.delete("/{course_id}/materials/{material_id}")
def delete_material(
    course_id: int,
    material_id: int,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    current_admin: User = Depends(get_current_admin),
):
    result = CourseContentService(db, storage).delete_material(course_id, material_id)
    return ok(result, "Material deleted successfully")
