# app/schemas/bundle.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.common import LocalizedValue, Pagination
from app.utils.localized import LocalizedText


class BundleCreate(BaseModel):
    title: LocalizedText
    description: LocalizedText
    long_description: Optional[LocalizedText] = None
    price: float = Field(..., ge=0)
    original_value: Optional[float] = Field(None, ge=0)
    course_ids: List[int] = Field(..., min_length=1)
    category: Optional[str] = None
    tags: List[str] = []
    featured: bool = False
    is_public: bool = True
    max_enrollments: Optional[int] = Field(None, ge=1)


class BundleUpdate(BaseModel):
    title: Optional[LocalizedText] = None
    description: Optional[LocalizedText] = None
    long_description: Optional[LocalizedText] = None
    price: Optional[float] = Field(None, ge=0)
    original_value: Optional[float] = Field(None, ge=0)
    course_ids: Optional[List[int]] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    featured: Optional[bool] = None
    is_public: Optional[bool] = None
    status: Optional[str] = Field(None, pattern="^(active|inactive)$")
    max_enrollments: Optional[int] = Field(None, ge=1)


class BundleCourseSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: LocalizedValue
    price: float
    category: str
    level: str
    status: str
    thumbnail_url: Optional[str] = None
    total_enrollments: int = 0


class BundleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: LocalizedValue
    description: LocalizedValue
    long_description: Optional[LocalizedValue] = None
    price: float
    original_value: Optional[float] = None
    course_ids: List[int] = []
    courses: List[BundleCourseSummary] = []
    category: Optional[str] = None
    tags: List[str] = []
    featured: bool = False
    status: str
    is_public: bool = True
    slug: Optional[str] = None
    thumbnail_url: Optional[str] = None
    total_enrollments: int = 0
    max_enrollments: Optional[int] = None
    archived_at: Optional[datetime] = None
    archive_reason: Optional[str] = None
    archive_grace_period: Optional[datetime] = None
    created_by: str
    last_modified_by: str
    created_at: datetime
    updated_at: datetime


class BundleListResponse(Pagination):
    bundles: List[BundleResponse]


class BundleDetailResponse(BundleResponse):
    has_purchased: bool = False
