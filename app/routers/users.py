# app/routers/users.py

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import get_current_user
from app.models.user import User
from app.schemas.common import APIResponse, ok
from app.schemas.user import UserProfileResponse
from app.services.bundle import BundleService
from app.services.course import CourseService
from app.services.course_content import CourseContentService
from app.services.course_enrollment import EnrollmentService
from app.services.user import UserService
from app.utils.storage import S3StorageService, get_storage

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    responses={404: {"description": "Not found"}},
)


@router.get("/me", response_model=APIResponse[UserProfileResponse])
def get_current_user_profile(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get current user's profile with owned course and bundle ids.
    """
    return ok(UserService(db).get_profile(current_user), "Profile retrieved successfully")


@router.get("/me/courses")
def get_my_courses(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
):
    """
    Courses the current user owns, in purchase order, with enrollment status.
    """
    enrollments = EnrollmentService(db)
    course_service = CourseService(db, storage)
    content = CourseContentService(db, storage)

    courses = []
    for course_id in enrollments.get_user_purchased_course_ids(current_user.id):
        course = course_service.get_course_or_404(course_id)
        data = content.serialize_course(course)
        enrollment = enrollments.get_course_enrollment(current_user.id, course_id)
        data["enrollment_status"] = enrollment.status if enrollment else None
        data["access_granted_by"] = enrollment.access_granted_by if enrollment else None
        courses.append(data)

    return ok(courses, "Purchased courses retrieved successfully")


@router.get("/me/bundles")
def get_my_bundles(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
):
    service = BundleService(db, storage)
    bundles = service.get_user_purchased_bundles(current_user.id)
    return ok([service.serialize(b) for b in bundles], "Purchased bundles retrieved successfully")
