# app/models/purchase.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer
from sqlalchemy.sql import func

from app.core.database import Base


class PurchasedCourse(Base):
    """
    Read-optimized mirror of a user's course entitlements.
    The composite primary key gives set semantics: a course id appears at most
    once per user.
    """

    __tablename__ = "user_purchased_courses"

    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    course_id = Column(
        Integer, ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True
    )
    added_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self):
        return f"<PurchasedCourse(user_id={self.user_id}, course_id={self.course_id})>"


class PurchasedBundle(Base):
    __tablename__ = "user_purchased_bundles"

    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    bundle_id = Column(
        Integer, ForeignKey("bundles.id", ondelete="CASCADE"), primary_key=True
    )
    added_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self):
        return f"<PurchasedBundle(user_id={self.user_id}, bundle_id={self.bundle_id})>"
