# app/models/certificate.py
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from app.core.database import Base


class Certificate(Base):
    """
    A user's proof of completion.
    course_id is a weak reference with no foreign key: certificates outlive
    the course they were issued for.
    """

    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, nullable=False, index=True)

    certificate_number = Column(String(64), unique=True, nullable=False)
    course_title = Column(JSON, nullable=False)  # snapshot at issue time
    s3_key = Column(Text, nullable=True)

    issued_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self):
        return f"<Certificate(id={self.id}, number='{self.certificate_number}')>"
