# app/routers/payments.py
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.dependencies import get_current_user
from app.core.limiter import limiter
from app.models.user import User
from app.schemas.common import APIResponse, ok
from app.schemas.payment import (
    CheckoutRequest,
    CheckoutResponse,
    PaymentConfigResponse,
    PurchaseStatus,
    ReceiptResponse,
    WebhookAck,
)
from app.services.payment import PaymentService
from app.utils.stripe_gateway import StripeGateway, get_payment_gateway

router = APIRouter(
    prefix="/payments",
    tags=["Payments"],
    responses={404: {"description": "Not found"}},
)


@router.post("/checkout", response_model=APIResponse[CheckoutResponse])
@limiter.limit(settings.checkout_rate_limit)
def create_checkout_session(
    request: Request,
    checkout_in: CheckoutRequest,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    """
    Start a purchase of exactly one course or bundle.
    In development mode (no payment provider configured) access is granted immediately.
    """
    session = PaymentService(db, gateway).create_checkout_session(
        current_user, course_id=checkout_in.course_id, bundle_id=checkout_in.bundle_id
    )
    message = (
        "Purchase completed in development mode"
        if session["dev_mode"]
        else "Checkout session created successfully"
    )
    return ok(session, message)


@router.post("/webhook", response_model=WebhookAck)
@limiter.exempt
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """
    Payment provider callback. The raw body is needed for signature verification.
    """
    payload = await request.body()
    return PaymentService(db, gateway).handle_webhook(payload, stripe_signature)


@router.get("/success")
def payment_success(
    session_id: Optional[str] = Query(None),
    course_id: Optional[int] = Query(None),
    bundle_id: Optional[int] = Query(None),
):
    item = "bundle" if bundle_id else "course"
    return ok(
        {"session_id": session_id, "course_id": course_id, "bundle_id": bundle_id},
        f"Payment successful! You now have access to the {item}.",
    )


@router.get("/cancel")
def payment_cancel(
    course_id: Optional[int] = Query(None),
    bundle_id: Optional[int] = Query(None),
):
    return ok(
        {"course_id": course_id, "bundle_id": bundle_id},
        "Payment was cancelled. You can try again anytime.",
    )


@router.get("/config", response_model=APIResponse[PaymentConfigResponse])
def payment_config(gateway: StripeGateway = Depends(get_payment_gateway)):
    return ok(
        {
            "publishable_key": settings.stripe_publishable_key or None,
            "currency": settings.payment_currency,
            "dev_mode": not gateway.is_configured,
        },
        "Payment configuration retrieved successfully",
    )


@router.get("/check-purchase/{course_id}", response_model=APIResponse[PurchaseStatus])
def check_purchase(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    result = PaymentService(db).check_purchase(current_user.id, course_id)
    return ok(result, "Purchase status retrieved successfully")


# ==================== Receipts ====================


@router.get("/receipt/course/{course_id}", response_model=APIResponse[ReceiptResponse])
def get_course_receipt(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    receipt = PaymentService(db).get_receipt(current_user, course_id)
    return ok(receipt, "Receipt retrieved successfully")


@router.get("/receipt/bundle/{bundle_id}", response_model=APIResponse[ReceiptResponse])
def get_bundle_receipt(
    bundle_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    receipt = PaymentService(db).get_bundle_receipt(current_user, bundle_id)
    return ok(receipt, "Receipt retrieved successfully")


@router.get("/receipt/course/{course_id}/download")
def download_course_receipt(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    pdf, filename = PaymentService(db).download_receipt(current_user, course_id)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/receipt/bundle/{bundle_id}/download")
def download_bundle_receipt(
    bundle_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    pdf, filename = PaymentService(db).download_bundle_receipt(current_user, bundle_id)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
