# app/schemas/user.py

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.common import Pagination


class UserResponse(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: Optional[str] = None
    full_name: str
    role: str
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserProfileResponse(UserResponse):
    """Current user's profile with the ids of everything they own"""

    purchased_course_ids: List[int] = []
    purchased_bundle_ids: List[int] = []


class UserListResponse(Pagination):
    users: List[UserResponse]


class UpdateUserStatusRequest(BaseModel):
    is_active: bool
    reason: Optional[str] = Field(None, max_length=500)


class CourseAccessRequest(BaseModel):
    """Admin grant/revoke of a single course for a single user"""

    course_id: int = Field(..., ge=1)


class CourseAccessItem(BaseModel):
    course_id: int
    course_title: str
    has_access: bool
    access_granted_by: Optional[str] = None
    granted_at: Optional[datetime] = None
    enrolled_at: Optional[datetime] = None
    status: Optional[str] = None
    version_enrolled: Optional[int] = None


class UserCourseEnrollmentsResponse(BaseModel):
    user_id: int
    user_name: str
    user_email: str
    enrollments: List[CourseAccessItem]
