# app/models/video.py
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func

from app.core.database import Base


class Video(Base):
    __tablename__ = "videos"
    __table_args__ = (Index("ix_videos_course_version", "course_id", "course_version"),)

    id = Column(Integer, primary_key=True, index=True)

    title = Column(JSON, nullable=False)
    s3_key = Column(Text, nullable=False)

    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    course_version = Column(Integer, nullable=False, default=1)

    order = Column(Integer, nullable=False, default=0)
    duration = Column(Integer, nullable=False, default=0)  # seconds
    file_size = Column(BigInteger, nullable=False, default=0)  # bytes
    mime_type = Column(String(100), nullable=True)
    original_name = Column(String(255), nullable=True)
    is_free_preview = Column(Boolean, nullable=False, default=False)

    uploaded_by = Column(String(255), nullable=False)

    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self):
        return f"<Video(id={self.id}, course_id={self.course_id}, v={self.course_version})>"
