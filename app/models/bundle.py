# app/models/bundle.py
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base

# Non-owning reference set: removing a row never touches the course itself
bundle_courses = Table(
    "bundle_courses",
    Base.metadata,
    Column("bundle_id", Integer, ForeignKey("bundles.id"), primary_key=True),
    Column("course_id", Integer, ForeignKey("courses.id"), primary_key=True),
)


class Bundle(Base):
    __tablename__ = "bundles"

    id = Column(Integer, primary_key=True, index=True)

    title = Column(JSON, nullable=False)
    description = Column(JSON, nullable=False)
    long_description = Column(JSON, nullable=True)

    price = Column(Numeric(10, 2), nullable=False, default=0)
    original_value = Column(Numeric(10, 2), nullable=True)

    thumbnail_url = Column(Text, nullable=True)
    thumbnail_s3_key = Column(Text, nullable=True)

    category = Column(String(50), nullable=True, index=True)
    tags = Column(JSON, nullable=False, default=list)
    featured = Column(Boolean, nullable=False, default=False)

    status = Column(String(20), nullable=False, default="active", index=True)
    total_enrollments = Column(Integer, nullable=False, default=0)

    slug = Column(String(255), unique=True, nullable=True, index=True)

    created_by = Column(String(255), nullable=False, default="admin")
    last_modified_by = Column(String(255), nullable=False, default="admin")

    is_public = Column(Boolean, nullable=False, default=True)
    max_enrollments = Column(Integer, nullable=True)

    archived_at = Column(DateTime(timezone=True), nullable=True)
    archive_reason = Column(Text, nullable=True)
    archive_grace_period = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    courses = relationship("Course", secondary=bundle_courses, order_by="Course.id")

    @property
    def course_ids(self):
        return [course.id for course in self.courses]

    @property
    def is_available_for_purchase(self) -> bool:
        return self.status == "active" and self.is_public

    @property
    def has_reached_max_enrollments(self) -> bool:
        if not self.max_enrollments:
            return False
        return self.total_enrollments >= self.max_enrollments

    def __repr__(self):
        return f"<Bundle(id={self.id}, slug='{self.slug}', status='{self.status}')>"


class BundleEnrollment(Base):
    __tablename__ = "bundle_enrollments"
    __table_args__ = (
        UniqueConstraint("bundle_id", "user_id", name="uq_bundle_enrollment"),
    )

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    bundle_id = Column(Integer, ForeignKey("bundles.id"), nullable=False, index=True)

    status = Column(String(20), nullable=False, default="active")
    enrolled_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_accessed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<BundleEnrollment(user_id={self.user_id}, bundle_id={self.bundle_id})>"
