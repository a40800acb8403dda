# app/schemas/course.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.common import LocalizedValue, Pagination
from app.utils.localized import LocalizedText

# ==================== Course Schemas ====================


class CourseCreate(BaseModel):
    title: LocalizedText
    description: LocalizedText
    price: float = Field(..., ge=0)
    # Closed enums are checked by the service so every offending field is reported
    category: str
    level: str
    tags: List[str] = []
    is_public: bool = True
    featured: bool = False
    max_enrollments: Optional[int] = Field(None, ge=1)


class CourseUpdate(BaseModel):
    title: Optional[LocalizedText] = None
    description: Optional[LocalizedText] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    level: Optional[str] = None
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None
    featured: Optional[bool] = None
    max_enrollments: Optional[int] = Field(None, ge=1)


class CourseCreatedResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: LocalizedValue
    slug: Optional[str] = None
    status: str
    current_version: int


class CourseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: LocalizedValue
    description: LocalizedValue
    price: float
    category: str
    level: str
    tags: List[str] = []
    status: str
    version: int
    current_version: int
    slug: Optional[str] = None
    thumbnail_url: Optional[str] = None
    total_enrollments: int = 0
    is_public: bool = True
    featured: bool = False
    max_enrollments: Optional[int] = None
    deactivated_at: Optional[datetime] = None
    deactivation_reason: Optional[str] = None
    archived_at: Optional[datetime] = None
    archive_reason: Optional[str] = None
    archive_grace_period: Optional[datetime] = None
    created_by: str
    last_modified_by: str
    created_at: datetime
    updated_at: datetime


class CourseListResponse(Pagination):
    courses: List[CourseResponse]


class CourseVersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    course_id: int
    version_number: int
    title: LocalizedValue
    description: LocalizedValue
    price: float
    status: str
    thumbnail_url: Optional[str] = None
    s3_folder_path: Optional[str] = None
    change_log: Optional[str] = None
    created_by: str
    total_videos: int = 0
    total_materials: int = 0
    archived_at: Optional[datetime] = None
    archive_reason: Optional[str] = None
    created_at: datetime


class NewVersionRequest(BaseModel):
    change_log: Optional[str] = Field(None, max_length=2000)


class DeactivateRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ArchiveRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
    grace_period_months: int = Field(6, ge=0, le=120)


# ==================== Content Schemas ====================


class VideoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    course_id: int
    course_version: int
    title: LocalizedValue
    order: int
    duration: int
    file_size: int
    mime_type: Optional[str] = None
    original_name: Optional[str] = None
    is_free_preview: bool = False
    s3_key: str
    url: Optional[str] = None
    created_at: datetime


class MaterialResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    course_id: int
    course_version: int
    title: LocalizedValue
    description: Optional[LocalizedValue] = None
    order: int
    file_size: int
    mime_type: Optional[str] = None
    original_name: Optional[str] = None
    file_extension: Optional[str] = None
    s3_key: str
    url: Optional[str] = None
    created_at: datetime


class EnrollmentInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    access_granted_by: str
    version_enrolled: int
    progress: int = 0
    enrolled_at: datetime


class CourseDetailResponse(CourseResponse):
    videos: List[VideoResponse] = []
    materials: List[MaterialResponse] = []
    enrollment: Optional[EnrollmentInfo] = None
    has_purchased: bool = False


# ==================== Deletion Summary ====================


class AffectedBundle(BaseModel):
    id: int
    title: str
    will_become_inactive: bool


class DeletionCounts(BaseModel):
    versions: int
    videos: int
    materials: int
    certificates_preserved: int
    progress_records: int
    enrollments: int
    users_affected: int
    bundles_affected: int
    s3_files: int
    bundles: List[AffectedBundle] = []


class DeletionSummaryResponse(BaseModel):
    course_id: int
    course_title: str
    price: float
    total_enrollments: int
    summary: DeletionCounts


class CourseDeletedResponse(DeletionSummaryResponse):
    s3_files_failed: int = 0
