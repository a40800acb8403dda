# app/models/course.py
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.sql import func

from app.core.database import Base

COURSE_CATEGORIES = (
    "crypto",
    "investing",
    "trading",
    "stock-market",
    "etf",
    "option-trading",
    "other",
)
COURSE_LEVELS = ("beginner", "intermediate", "advanced")
CONTENT_STATUSES = ("active", "inactive", "archived")


class Course(Base):
    __tablename__ = "courses"
    __table_args__ = (
        Index("ix_courses_status_current_version", "status", "current_version"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Localized text: plain string or {"en": ..., "tg": ...}
    title = Column(JSON, nullable=False)
    description = Column(JSON, nullable=False)

    price = Column(Numeric(10, 2), nullable=False, default=0)
    category = Column(String(50), nullable=False, index=True)
    level = Column(String(20), nullable=False)
    tags = Column(JSON, nullable=False, default=list)

    # Versioning
    version = Column(Integer, nullable=False, default=1)
    current_version = Column(Integer, nullable=False, default=1)

    status = Column(String(20), nullable=False, default="active", index=True)

    # Mirrors of the current version's thumbnail
    thumbnail_url = Column(Text, nullable=True)
    thumbnail_s3_key = Column(Text, nullable=True)

    total_enrollments = Column(Integer, nullable=False, default=0)

    # Deactivation / archive tracking
    deactivated_at = Column(DateTime(timezone=True), nullable=True)
    deactivation_reason = Column(Text, nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True, index=True)
    archive_reason = Column(Text, nullable=True)
    archive_grace_period = Column(DateTime(timezone=True), nullable=True)

    slug = Column(String(255), unique=True, nullable=True, index=True)

    created_by = Column(String(255), nullable=False, default="admin")
    last_modified_by = Column(String(255), nullable=False, default="admin")

    is_public = Column(Boolean, nullable=False, default=True)
    max_enrollments = Column(Integer, nullable=True)
    featured = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    @property
    def is_available_for_enrollment(self) -> bool:
        return self.status == "active" and self.is_public

    @property
    def has_reached_max_enrollments(self) -> bool:
        if not self.max_enrollments:
            return False
        return self.total_enrollments >= self.max_enrollments

    @property
    def is_accessible_to_enrolled(self) -> bool:
        if self.status in ("active", "inactive"):
            return True
        if self.status == "archived" and self.archive_grace_period:
            grace = self.archive_grace_period
            if grace.tzinfo is None:
                grace = grace.replace(tzinfo=timezone.utc)
            return datetime.now(timezone.utc) < grace
        return False

    def __repr__(self):
        return f"<Course(id={self.id}, slug='{self.slug}', status='{self.status}')>"
