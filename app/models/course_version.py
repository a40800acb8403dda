# app/models/course_version.py
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class CourseVersion(Base):
    """
    Snapshot of a course at a version number.
    Versions are append-only: a new version never rewrites an older one.
    """

    __tablename__ = "course_versions"
    __table_args__ = (
        UniqueConstraint("course_id", "version_number", name="uq_course_version"),
    )

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)

    title = Column(JSON, nullable=False)
    description = Column(JSON, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    category = Column(String(50), nullable=True)
    level = Column(String(20), nullable=True)
    is_public = Column(Boolean, nullable=False, default=True)

    status = Column(String(20), nullable=False, default="active")

    thumbnail_url = Column(Text, nullable=True)
    thumbnail_s3_key = Column(Text, nullable=True)
    s3_folder_path = Column(Text, nullable=True)

    change_log = Column(Text, nullable=True)
    created_by = Column(String(255), nullable=False, default="admin")

    total_videos = Column(Integer, nullable=False, default=0)
    total_materials = Column(Integer, nullable=False, default=0)

    archived_at = Column(DateTime(timezone=True), nullable=True)
    archive_reason = Column(Text, nullable=True)

    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    course = relationship("Course")

    def __repr__(self):
        return f"<CourseVersion(course_id={self.course_id}, version={self.version_number}, status='{self.status}')>"
