"""
Models package initialization
Import all models so the metadata knows every table
"""

from .audit_log import AuditLog
from .bundle import Bundle, BundleEnrollment, bundle_courses
from .certificate import Certificate
from .course import Course
from .course_enrollment import CourseEnrollment
from .course_version import CourseVersion
from .material import Material
from .payment import Payment
from .progress import Progress
from .purchase import PurchasedBundle, PurchasedCourse
from .user import User
from .video import Video

# Make models available at package level
__all__ = [
    "AuditLog",
    "Bundle",
    "BundleEnrollment",
    "Certificate",
    "Course",
    "CourseEnrollment",
    "CourseVersion",
    "Material",
    "Payment",
    "Progress",
    "PurchasedBundle",
    "PurchasedCourse",
    "User",
    "Video",
    "bundle_courses",
]
