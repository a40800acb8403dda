# app/models/payment.py
from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.sql import func

from app.core.database import Base


class Payment(Base):
    """
    Payment ledger row, keyed by the provider's checkout session id.
    course_id / bundle_id carry no foreign key so the ledger survives the
    item being deleted.
    """

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint(
            "(course_id IS NULL) <> (bundle_id IS NULL)",
            name="ck_payment_single_item",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, nullable=True, index=True)
    bundle_id = Column(Integer, nullable=True, index=True)

    stripe_session_id = Column(String(255), unique=True, nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(10), nullable=False, default="usd")
    status = Column(
        String(20), nullable=False, default="pending"
    )  # 'completed', 'pending', 'failed'
    payment_method = Column(String(50), nullable=False, default="card")

    # Title/email snapshot at purchase time ("metadata" is reserved on the class)
    payment_metadata = Column("metadata", JSON, nullable=False, default=dict)

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
    def item_type(self) -> str:
        return "bundle" if self.bundle_id is not None else "course"

    def __repr__(self):
        return f"<Payment(id={self.id}, session='{self.stripe_session_id}', status='{self.status}')>"
