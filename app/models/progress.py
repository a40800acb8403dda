# app/models/progress.py
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from app.core.database import Base


class Progress(Base):
    """Per-video watch progress of a user inside a course."""

    __tablename__ = "progress"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", "video_id", name="uq_progress_video"),
    )

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    video_id = Column(Integer, ForeignKey("videos.id"), nullable=False)

    watched_duration = Column(Integer, nullable=False, default=0)  # seconds
    total_duration = Column(Integer, nullable=False, default=0)
    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    last_watched_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self):
        return f"<Progress(user_id={self.user_id}, video_id={self.video_id}, completed={self.is_completed})>"
