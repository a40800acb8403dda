# app/schemas/payment.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CheckoutRequest(BaseModel):
    course_id: Optional[int] = Field(None, ge=1)
    bundle_id: Optional[int] = Field(None, ge=1)


class CheckoutResponse(BaseModel):
    session_id: str
    url: Optional[str] = None
    item_type: str
    item_id: int
    dev_mode: bool = False


class PurchaseStatus(BaseModel):
    course_id: int
    has_purchased: bool


class WebhookAck(BaseModel):
    received: bool = True
    event_type: Optional[str] = None
    processed: bool = False


class ReceiptResponse(BaseModel):
    receipt_number: str
    item_type: str
    item_id: int
    item_title: str
    amount: float
    currency: str
    purchase_date: datetime
    payment_method: str
    status: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    transaction_id: str


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    course_id: Optional[int] = None
    bundle_id: Optional[int] = None
    stripe_session_id: str
    amount: float
    currency: str
    status: str
    payment_method: str
    created_at: datetime


class PaymentConfigResponse(BaseModel):
    publishable_key: Optional[str] = None
    currency: str
    dev_mode: bool
