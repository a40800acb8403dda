# app/services/course_enrollment.py
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    AlreadyEnrolledError,
    NotFoundError,
    ValidationError,
)
from app.models.bundle import Bundle, BundleEnrollment
from app.models.course import Course
from app.models.course_enrollment import CourseEnrollment
from app.models.purchase import PurchasedBundle, PurchasedCourse
from app.models.user import User
from app.services.audit_log import AuditActor, AuditLogService
from app.utils.localized import display_text

logger = logging.getLogger(__name__)


class EnrollmentService:
    """
    Entitlement store: authoritative enrollment rows plus the denormalized
    purchased-course / purchased-bundle mirrors.

    The low-level grant methods only flush; the operation that composes them
    owns the commit so a purchase is granted in one transaction.
    """

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogService(db)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def _get_user(self, user_id: int) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found")
        return user

    def _get_course(self, course_id: int) -> Course:
        course = self.db.query(Course).filter(Course.id == course_id).first()
        if not course:
            raise NotFoundError("Course not found")
        return course

    def _get_bundle(self, bundle_id: int) -> Bundle:
        bundle = self.db.query(Bundle).filter(Bundle.id == bundle_id).first()
        if not bundle:
            raise NotFoundError("Bundle not found")
        return bundle

    def get_course_enrollment(
        self, user_id: int, course_id: int
    ) -> Optional[CourseEnrollment]:
        return (
            self.db.query(CourseEnrollment)
            .filter(
                and_(
                    CourseEnrollment.user_id == user_id,
                    CourseEnrollment.course_id == course_id,
                )
            )
            .first()
        )

    def get_bundle_enrollment(
        self, user_id: int, bundle_id: int
    ) -> Optional[BundleEnrollment]:
        return (
            self.db.query(BundleEnrollment)
            .filter(
                and_(
                    BundleEnrollment.user_id == user_id,
                    BundleEnrollment.bundle_id == bundle_id,
                )
            )
            .first()
        )

    def has_purchased_course(self, user_id: int, course_id: int) -> bool:
        """Fast-path ownership check against the denormalized mirror only."""
        return (
            self.db.query(PurchasedCourse)
            .filter(
                PurchasedCourse.user_id == user_id,
                PurchasedCourse.course_id == course_id,
            )
            .first()
            is not None
        )

    def has_purchased_bundle(self, user_id: int, bundle_id: int) -> bool:
        return (
            self.db.query(PurchasedBundle)
            .filter(
                PurchasedBundle.user_id == user_id,
                PurchasedBundle.bundle_id == bundle_id,
            )
            .first()
            is not None
        )

    # ------------------------------------------------------------------
    # Enrollment (authoritative)
    # ------------------------------------------------------------------
    def enroll_in_course(
        self,
        user_id: int,
        course_id: int,
        access_granted_by: str = "payment",
    ) -> CourseEnrollment:
        """
        Create the (course, user) enrollment and bump ``total_enrollments``.

        Raises:
            NotFoundError: Unknown course
            ValidationError: Course is archived or full
            AlreadyEnrolledError: An enrollment already exists
        """
        course = self._get_course(course_id)

        if course.status not in ("active", "inactive"):
            raise ValidationError("Course is not available for enrollment")
        if course.has_reached_max_enrollments:
            raise ValidationError("Course has reached maximum enrollment limit")

        if self.get_course_enrollment(user_id, course_id):
            raise AlreadyEnrolledError("User is already enrolled in this course")

        now = datetime.now(timezone.utc)
        enrollment = CourseEnrollment(
            user_id=user_id,
            course_id=course_id,
            version_enrolled=course.current_version,
            status="active",
            access_granted_by=access_granted_by,
            enrolled_at=now,
            granted_at=now,
            last_accessed_at=now,
        )
        try:
            # Unique (course_id, user_id) catches a concurrent writer
            with self.db.begin_nested():
                self.db.add(enrollment)
                self.db.flush()
        except IntegrityError:
            raise AlreadyEnrolledError("User is already enrolled in this course")

        course.total_enrollments = (course.total_enrollments or 0) + 1
        self.db.flush()
        return enrollment

    def enroll_in_bundle(self, user_id: int, bundle_id: int) -> BundleEnrollment:
        bundle = self._get_bundle(bundle_id)

        if bundle.has_reached_max_enrollments:
            raise ValidationError("Bundle has reached maximum enrollment limit")
        if self.get_bundle_enrollment(user_id, bundle_id):
            raise AlreadyEnrolledError("User is already enrolled in this bundle")

        enrollment = BundleEnrollment(
            user_id=user_id,
            bundle_id=bundle_id,
            status="active",
            enrolled_at=datetime.now(timezone.utc),
        )
        try:
            with self.db.begin_nested():
                self.db.add(enrollment)
                self.db.flush()
        except IntegrityError:
            raise AlreadyEnrolledError("User is already enrolled in this bundle")

        bundle.total_enrollments = (bundle.total_enrollments or 0) + 1
        self.db.flush()
        return enrollment

    # ------------------------------------------------------------------
    # Denormalized mirrors (set semantics)
    # ------------------------------------------------------------------
    def add_purchased_course(self, user_id: int, course_id: int) -> bool:
        """Set-add; returns False when the id was already present."""
        if self.has_purchased_course(user_id, course_id):
            return False
        try:
            with self.db.begin_nested():
                self.db.add(PurchasedCourse(user_id=user_id, course_id=course_id))
                self.db.flush()
        except IntegrityError:
            return False
        return True

    def add_purchased_bundle(self, user_id: int, bundle_id: int) -> bool:
        if self.has_purchased_bundle(user_id, bundle_id):
            return False
        try:
            with self.db.begin_nested():
                self.db.add(PurchasedBundle(user_id=user_id, bundle_id=bundle_id))
                self.db.flush()
        except IntegrityError:
            return False
        return True

    # ------------------------------------------------------------------
    # Idempotent purchase grants
    # ------------------------------------------------------------------
    def grant_course_purchase(self, user_id: int, course_id: int) -> Dict[str, Any]:
        """
        Grant a paid course. Safe to repeat: the mirror is a set-add and an
        existing enrollment is a no-op.
        """
        added = self.add_purchased_course(user_id, course_id)
        enrolled = False
        try:
            self.enroll_in_course(user_id, course_id, access_granted_by="payment")
            enrolled = True
        except AlreadyEnrolledError:
            logger.info(f"User {user_id} already enrolled in course {course_id}, skipping")
        except ValidationError as e:
            logger.warning(f"⚠️ Could not enroll user {user_id} in course {course_id}: {e.message}")

        return {"course_id": course_id, "mirrored": added, "enrolled": enrolled}

    def grant_bundle_purchase(self, user_id: int, bundle_id: int) -> Dict[str, Any]:
        """
        Grant a paid bundle, then mirror and enroll every member course
        individually so access survives the bundle being deleted later.
        """
        bundle = self._get_bundle(bundle_id)

        self.add_purchased_bundle(user_id, bundle_id)
        try:
            self.enroll_in_bundle(user_id, bundle_id)
        except AlreadyEnrolledError:
            logger.info(f"User {user_id} already enrolled in bundle {bundle_id}, skipping")
        except ValidationError as e:
            logger.warning(f"⚠️ Could not enroll user {user_id} in bundle {bundle_id}: {e.message}")

        course_results = [
            self.grant_course_purchase(user_id, course_id)
            for course_id in bundle.course_ids
        ]
        return {"bundle_id": bundle_id, "courses": course_results}

    # ------------------------------------------------------------------
    # Admin access management
    # ------------------------------------------------------------------
    def grant_admin_access(
        self, user_id: int, course_id: int, actor: Optional[AuditActor] = None
    ) -> Dict[str, Any]:
        user = self._get_user(user_id)
        course = self._get_course(course_id)

        existing = self.get_course_enrollment(user_id, course_id)
        if existing:
            raise AlreadyEnrolledError("User already has access to this course", 400)

        enrollment = self.enroll_in_course(user_id, course_id, access_granted_by="admin")
        # kept for compatibility with purchase checks
        self.add_purchased_course(user_id, course_id)

        course_title = display_text(course.title, default="Untitled")
        self.audit.record(
            "course_access_granted",
            "course",
            course.id,
            course_title,
            actor,
            details={
                "user_id": user.id,
                "user_email": user.email,
                "user_name": user.full_name,
                "access_granted_by": "admin",
            },
        )
        self.db.commit()

        logger.info(f"✅ Admin granted course access: {user.email} -> {course_title}")
        return {
            "user_id": user.id,
            "course_id": course.id,
            "course_title": course_title,
            "access_granted_by": "admin",
            "granted_at": enrollment.granted_at,
        }

    def revoke_admin_access(
        self, user_id: int, course_id: int, actor: Optional[AuditActor] = None
    ) -> Dict[str, Any]:
        """
        Remove an enrollment of any provenance. The purchased mirror is only
        removed when the access was admin-granted.
        """
        user = self._get_user(user_id)
        course = self._get_course(course_id)

        enrollment = self.get_course_enrollment(user_id, course_id)
        if not enrollment:
            raise NotFoundError("User does not have access to this course")

        granted_by = enrollment.access_granted_by
        self.db.delete(enrollment)
        if course.total_enrollments and course.total_enrollments > 0:
            course.total_enrollments -= 1

        mirror_removed = False
        if granted_by == "admin":
            mirror_removed = (
                self.db.query(PurchasedCourse)
                .filter(
                    PurchasedCourse.user_id == user_id,
                    PurchasedCourse.course_id == course_id,
                )
                .delete(synchronize_session=False)
                > 0
            )

        course_title = display_text(course.title, default="Untitled")
        self.audit.record(
            "course_access_revoked",
            "course",
            course.id,
            course_title,
            actor,
            details={
                "user_id": user.id,
                "user_email": user.email,
                "previous_access_granted_by": granted_by,
            },
        )
        self.db.commit()

        logger.info(f"✅ Admin revoked course access: {user.email} -> {course_title}")
        return {
            "user_id": user.id,
            "course_id": course.id,
            "course_title": course_title,
            "previous_access_granted_by": granted_by,
            "purchased_mirror_removed": mirror_removed,
        }

    def get_user_course_enrollments(self, user_id: int) -> Dict[str, Any]:
        """Every course with this user's access details (null when no access)."""
        user = self._get_user(user_id)

        enrollments = {
            e.course_id: e
            for e in self.db.query(CourseEnrollment)
            .filter(CourseEnrollment.user_id == user_id)
            .all()
        }
        courses = self.db.query(Course).order_by(Course.id).all()

        items = []
        for course in courses:
            enrollment = enrollments.get(course.id)
            items.append(
                {
                    "course_id": course.id,
                    "course_title": display_text(course.title, default="Untitled"),
                    "has_access": enrollment is not None,
                    "access_granted_by": enrollment.access_granted_by if enrollment else None,
                    "granted_at": enrollment.granted_at if enrollment else None,
                    "enrolled_at": enrollment.enrolled_at if enrollment else None,
                    "status": enrollment.status if enrollment else None,
                    "version_enrolled": enrollment.version_enrolled if enrollment else None,
                }
            )

        return {
            "user_id": user.id,
            "user_name": user.full_name,
            "user_email": user.email,
            "enrollments": items,
        }

    # ------------------------------------------------------------------
    # Mirror reconciliation
    # ------------------------------------------------------------------
    def reconcile_entitlements(self, apply: bool = False) -> Dict[str, Any]:
        """
        Find enrollments whose purchased-course / purchased-bundle mirror row
        is missing. With ``apply`` the missing rows are set-added. Mirror rows
        without an enrollment are reported but never removed.
        """
        missing_courses = (
            self.db.query(CourseEnrollment.user_id, CourseEnrollment.course_id)
            .outerjoin(
                PurchasedCourse,
                and_(
                    PurchasedCourse.user_id == CourseEnrollment.user_id,
                    PurchasedCourse.course_id == CourseEnrollment.course_id,
                ),
            )
            .filter(PurchasedCourse.user_id.is_(None))
            .order_by(CourseEnrollment.user_id, CourseEnrollment.course_id)
            .all()
        )
        missing_bundles = (
            self.db.query(BundleEnrollment.user_id, BundleEnrollment.bundle_id)
            .outerjoin(
                PurchasedBundle,
                and_(
                    PurchasedBundle.user_id == BundleEnrollment.user_id,
                    PurchasedBundle.bundle_id == BundleEnrollment.bundle_id,
                ),
            )
            .filter(PurchasedBundle.user_id.is_(None))
            .order_by(BundleEnrollment.user_id, BundleEnrollment.bundle_id)
            .all()
        )
        orphaned_courses = (
            self.db.query(PurchasedCourse.user_id, PurchasedCourse.course_id)
            .outerjoin(
                CourseEnrollment,
                and_(
                    CourseEnrollment.user_id == PurchasedCourse.user_id,
                    CourseEnrollment.course_id == PurchasedCourse.course_id,
                ),
            )
            .filter(CourseEnrollment.id.is_(None))
            .order_by(PurchasedCourse.user_id, PurchasedCourse.course_id)
            .all()
        )

        report = {
            "missing_purchased_courses": [
                {"user_id": u, "course_id": c} for u, c in missing_courses
            ],
            "missing_purchased_bundles": [
                {"user_id": u, "bundle_id": b} for u, b in missing_bundles
            ],
            "purchased_without_enrollment": [
                {"user_id": u, "course_id": c} for u, c in orphaned_courses
            ],
            "applied": False,
        }

        if apply and (missing_courses or missing_bundles):
            for user_id, course_id in missing_courses:
                self.add_purchased_course(user_id, course_id)
            for user_id, bundle_id in missing_bundles:
                self.add_purchased_bundle(user_id, bundle_id)
            self.db.commit()
            report["applied"] = True
            logger.info(
                f"✅ Reconciled {len(missing_courses)} course and {len(missing_bundles)} bundle mirror rows"
            )

        return report

    def get_user_purchased_course_ids(self, user_id: int) -> List[int]:
        rows = (
            self.db.query(PurchasedCourse.course_id)
            .filter(PurchasedCourse.user_id == user_id)
            .order_by(PurchasedCourse.course_id)
            .all()
        )
        return [row[0] for row in rows]
