# app/models/course_enrollment.py
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class CourseEnrollment(Base):
    """
    Authoritative record of a user's access to a course.
    At most one row per (course, user).
    """

    __tablename__ = "course_enrollments"
    __table_args__ = (
        UniqueConstraint("course_id", "user_id", name="uq_course_enrollment"),
    )

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)

    version_enrolled = Column(Integer, nullable=False, default=1)
    status = Column(
        String(20), nullable=False, default="active"
    )  # 'active', 'completed', 'cancelled'

    # Provenance: 'payment' or 'admin'
    access_granted_by = Column(String(20), nullable=False, default="payment")
    progress = Column(Integer, nullable=False, default=0)  # percent

    enrolled_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    granted_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_accessed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User")
    course = relationship("Course")

    def __repr__(self):
        return f"<CourseEnrollment(id={self.id}, user_id={self.user_id}, course_id={self.course_id}, by={self.access_granted_by})>"
