# app/services/payment.py
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
    WebhookError,
)
from app.models.bundle import Bundle
from app.models.course import Course
from app.models.payment import Payment
from app.models.user import User
from app.services.course_enrollment import EnrollmentService
from app.utils.localized import display_text
from app.utils.receipt_pdf import build_receipt_pdf
from app.utils.stripe_gateway import StripeGateway, get_payment_gateway

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"

# Ledger rows written without a provider charge behind them
DEV_SESSION_PREFIX = "dev_session_"
FALLBACK_SESSION_PREFIX = "fallback_"
SYNTHETIC_SESSION_PREFIXES = (DEV_SESSION_PREFIX, FALLBACK_SESSION_PREFIX)


class PaymentService:
    """
    Checkout and entitlement reconciliation.

    Entitlement is granted either directly (no payment provider configured)
    or from a verified ``checkout.session.completed`` webhook. Both paths are
    idempotent and upsert the ledger row by session id.
    """

    def __init__(self, db: Session, gateway: Optional[StripeGateway] = None):
        self.db = db
        self.gateway = gateway or get_payment_gateway()
        self.enrollments = EnrollmentService(db)

    # ==================== Checkout ====================

    @staticmethod
    def _check_single_item(course_id: Optional[int], bundle_id: Optional[int]) -> None:
        if course_id and bundle_id:
            raise ValidationError(
                "Cannot purchase both course and bundle in one session",
                errors=["course_id", "bundle_id"],
            )
        if not course_id and not bundle_id:
            raise ValidationError(
                "Either course_id or bundle_id is required",
                errors=["course_id", "bundle_id"],
            )

    def _resolve_item(
        self, course_id: Optional[int], bundle_id: Optional[int]
    ) -> Tuple[str, Any]:
        self._check_single_item(course_id, bundle_id)
        if course_id:
            course = self.db.query(Course).filter(Course.id == course_id).first()
            if not course:
                raise NotFoundError("Course not found")
            return "course", course

        bundle = self.db.query(Bundle).filter(Bundle.id == bundle_id).first()
        if not bundle:
            raise NotFoundError("Bundle not found")
        return "bundle", bundle

    def _checkout_urls(self, item_type: str, item_id: int) -> Tuple[str, str]:
        base = settings.checkout_base_url
        query = f"{item_type}_id={item_id}"
        return (
            f"{base}/checkout/success?{query}&session_id={{CHECKOUT_SESSION_ID}}",
            f"{base}/checkout/cancel?{query}",
        )

    def create_checkout_session(
        self,
        user: User,
        course_id: Optional[int] = None,
        bundle_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Start a purchase. Without a configured provider the purchase completes
        immediately; otherwise the provider's hosted checkout URL is returned
        and entitlement waits for the webhook.
        """
        self._check_single_item(course_id, bundle_id)

        if course_id and self.enrollments.has_purchased_course(user.id, course_id):
            raise ConflictError("You already own this course", 400)
        if bundle_id and self.enrollments.has_purchased_bundle(user.id, bundle_id):
            raise ConflictError("You already own this bundle", 400)

        item_type, item = self._resolve_item(course_id, bundle_id)

        if item_type == "course":
            if not item.is_available_for_enrollment:
                raise ValidationError("Course is not available for purchase")
            if item.has_reached_max_enrollments:
                raise ValidationError("Course has reached maximum enrollment limit")
        else:
            if not item.is_available_for_purchase:
                raise ValidationError("Bundle is not available for purchase")
            if item.has_reached_max_enrollments:
                raise ValidationError("Bundle has reached maximum enrollment limit")

        title = display_text(item.title, default="Untitled")

        if not self.gateway.is_configured:
            logger.warning(
                f"⚠️ Payment provider not configured - granting {item_type} {item.id} in development mode"
            )
            session_id = f"{DEV_SESSION_PREFIX}{uuid.uuid4().hex}"
            self._grant(user.id, item_type, item.id)
            self._upsert_payment(
                session_id=session_id,
                user_id=user.id,
                item_type=item_type,
                item_id=item.id,
                amount=item.price,
                currency=settings.payment_currency,
                metadata={"user_email": user.email, "item_title": title},
            )
            self.db.commit()
            success_url, _ = self._checkout_urls(item_type, item.id)
            return {
                "session_id": session_id,
                "url": success_url.replace("{CHECKOUT_SESSION_ID}", session_id),
                "item_type": item_type,
                "item_id": item.id,
                "dev_mode": True,
            }

        success_url, cancel_url = self._checkout_urls(item_type, item.id)
        metadata = {
            "user_id": str(user.id),
            "user_email": user.email,
            "item_type": item_type,
            f"{item_type}_id": str(item.id),
        }
        session = self.gateway.create_checkout_session(
            item_name=title,
            item_description=display_text(item.description, default=title),
            amount=item.price,
            customer_email=user.email,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            image_url=item.thumbnail_url,
        )
        logger.info(f"✅ Checkout session {session.id} created for user {user.id}")
        return {
            "session_id": session.id,
            "url": session.url,
            "item_type": item_type,
            "item_id": item.id,
            "dev_mode": False,
        }

    def _grant(self, user_id: int, item_type: str, item_id: int) -> Dict[str, Any]:
        if item_type == "bundle":
            return self.enrollments.grant_bundle_purchase(user_id, item_id)
        return self.enrollments.grant_course_purchase(user_id, item_id)

    # ==================== Ledger ====================

    def _find_completed_payment(
        self, user_id: int, item_type: str, item_id: int
    ) -> Optional[Payment]:
        query = self.db.query(Payment).filter(
            Payment.user_id == user_id, Payment.status == "completed"
        )
        if item_type == "bundle":
            query = query.filter(Payment.bundle_id == item_id)
        else:
            query = query.filter(Payment.course_id == item_id)
        return query.order_by(Payment.id).first()

    def _find_synthetic_payment(
        self, user_id: int, item_type: str, item_id: int
    ) -> Optional[Payment]:
        query = self.db.query(Payment).filter(
            Payment.user_id == user_id,
            Payment.status == "completed",
            or_(
                *(
                    Payment.stripe_session_id.startswith(prefix)
                    for prefix in SYNTHETIC_SESSION_PREFIXES
                )
            ),
        )
        if item_type == "bundle":
            query = query.filter(Payment.bundle_id == item_id)
        else:
            query = query.filter(Payment.course_id == item_id)
        return query.order_by(Payment.id).first()

    def _upsert_payment(
        self,
        *,
        session_id: str,
        user_id: int,
        item_type: str,
        item_id: int,
        amount: Any,
        currency: str,
        metadata: Dict[str, Any],
        status: str = "completed",
        payment_method: str = "card",
    ) -> Payment:
        """
        Insert or update the ledger row for ``session_id``.

        Replays of a session update its own row. A dev-mode or fallback row
        for the same (user, item) is taken over instead of adding a second
        one; rows of real provider sessions are never rewritten, so two
        charges always leave two rows.
        """
        payment = (
            self.db.query(Payment).filter(Payment.stripe_session_id == session_id).first()
        )
        if payment is None:
            payment = self._find_synthetic_payment(user_id, item_type, item_id)

        values = {
            "stripe_session_id": session_id,
            "user_id": user_id,
            "course_id": item_id if item_type == "course" else None,
            "bundle_id": item_id if item_type == "bundle" else None,
            "amount": Decimal(str(amount or 0)),
            "currency": (currency or settings.payment_currency).lower(),
            "status": status,
            "payment_method": payment_method,
        }
        snapshot = {**metadata, "payment_date": datetime.now(timezone.utc).isoformat()}

        if payment is not None:
            for key, value in values.items():
                setattr(payment, key, value)
            payment.payment_metadata = {**(payment.payment_metadata or {}), **snapshot}
            self.db.flush()
            return payment

        payment = Payment(**values, payment_metadata=snapshot)
        try:
            with self.db.begin_nested():
                self.db.add(payment)
                self.db.flush()
        except IntegrityError:
            # a concurrent delivery inserted the same session first
            payment = (
                self.db.query(Payment)
                .filter(Payment.stripe_session_id == session_id)
                .one()
            )
            for key, value in values.items():
                setattr(payment, key, value)
            self.db.flush()
        return payment

    # ==================== Webhook ====================

    def handle_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and process a provider event. Signature failures raise a 400
        with no state change; processing failures raise ``WebhookError`` so the
        provider retries.
        """
        event = self.gateway.verify_webhook(payload, signature)
        event_type = event.get("type")
        logger.info(f"✅ Webhook verified: {event_type}")

        if event_type != CHECKOUT_COMPLETED:
            logger.info(f"Unhandled webhook event type: {event_type}")
            return {"received": True, "event_type": event_type, "processed": False}

        session = (event.get("data") or {}).get("object") or {}
        try:
            self._handle_checkout_completed(session)
            self.db.commit()
        except WebhookError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Error processing checkout completion: {e}", exc_info=True)
            raise WebhookError(f"Webhook processing failed: {e}")

        return {"received": True, "event_type": event_type, "processed": True}

    def _handle_checkout_completed(self, session: Dict[str, Any]) -> Payment:
        metadata = session.get("metadata") or {}
        session_id = session.get("id")
        user_id = metadata.get("user_id")
        course_id = metadata.get("course_id")
        bundle_id = metadata.get("bundle_id")

        if not session_id or not user_id or not (course_id or bundle_id):
            raise WebhookError(
                "Missing user_id or item id (course_id/bundle_id) in session metadata"
            )

        item_type = metadata.get("item_type") or ("bundle" if bundle_id else "course")
        try:
            user_id = int(user_id)
            item_id = int(bundle_id if item_type == "bundle" else course_id)
        except (TypeError, ValueError):
            raise WebhookError("Malformed identifiers in session metadata")

        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise WebhookError(f"User not found: {user_id}")

        if item_type == "bundle":
            item = self.db.query(Bundle).filter(Bundle.id == item_id).first()
        else:
            item = self.db.query(Course).filter(Course.id == item_id).first()
        if not item:
            raise WebhookError(f"{item_type.capitalize()} not found: {item_id}")

        self._grant(user_id, item_type, item_id)

        amount_total = session.get("amount_total")
        amount = (
            Decimal(amount_total) / 100 if amount_total is not None else item.price
        )
        payment = self._upsert_payment(
            session_id=session_id,
            user_id=user_id,
            item_type=item_type,
            item_id=item_id,
            amount=amount,
            currency=session.get("currency") or settings.payment_currency,
            metadata={
                "user_email": metadata.get("user_email") or user.email,
                "item_title": display_text(item.title, default="Untitled"),
            },
        )

        logger.info(
            f"✅ {item_type.capitalize()} access granted: user {user_id} -> {item_type} {item_id} (session {session_id})"
        )
        return payment

    # ==================== Purchases / Receipts ====================

    def check_purchase(self, user_id: int, course_id: int) -> Dict[str, Any]:
        """Reads the denormalized mirror only."""
        return {
            "course_id": course_id,
            "has_purchased": self.enrollments.has_purchased_course(user_id, course_id),
        }

    def _get_or_create_receipt_payment(
        self, user: User, item_type: str, item_id: int
    ) -> Tuple[Payment, Any]:
        payment = self._find_completed_payment(user.id, item_type, item_id)
        model = Bundle if item_type == "bundle" else Course
        item = self.db.query(model).filter(model.id == item_id).first()

        if payment is not None:
            return payment, item

        owns = (
            self.enrollments.has_purchased_bundle(user.id, item_id)
            if item_type == "bundle"
            else self.enrollments.has_purchased_course(user.id, item_id)
        )
        if not owns:
            raise NotFoundError(
                f"Payment not found. The {item_type} may not have been purchased yet or the payment is still processing."
            )
        if item is None:
            raise NotFoundError(f"{item_type.capitalize()} not found")

        # owned without a ledger row (dev mode or a lost webhook): self-heal
        logger.info(
            f"User {user.id} owns {item_type} {item_id} without a payment record - creating fallback"
        )
        payment = self._upsert_payment(
            session_id=f"{FALLBACK_SESSION_PREFIX}{uuid.uuid4().hex}",
            user_id=user.id,
            item_type=item_type,
            item_id=item_id,
            amount=item.price,
            currency=settings.payment_currency,
            metadata={
                "user_email": user.email,
                "item_title": display_text(item.title, default="Untitled"),
                "fallback": True,
            },
        )
        self.db.commit()
        self.db.refresh(payment)
        return payment, item

    def _format_receipt(self, payment: Payment, item: Any, user: User) -> Dict[str, Any]:
        metadata = payment.payment_metadata or {}
        title = (
            display_text(item.title, default="Untitled")
            if item is not None
            else display_text(metadata.get("item_title"), default="Untitled")
        )
        return {
            "receipt_number": f"{payment.id:08d}",
            "item_type": payment.item_type,
            "item_id": payment.bundle_id or payment.course_id,
            "item_title": title,
            "amount": float(payment.amount),
            "currency": payment.currency.upper(),
            "purchase_date": payment.created_at,
            "payment_method": payment.payment_method,
            "status": payment.status,
            "customer_email": user.email or metadata.get("user_email"),
            "customer_name": user.full_name,
            "transaction_id": payment.stripe_session_id,
        }

    def get_receipt(self, user: User, course_id: int) -> Dict[str, Any]:
        payment, course = self._get_or_create_receipt_payment(user, "course", course_id)
        return self._format_receipt(payment, course, user)

    def get_bundle_receipt(self, user: User, bundle_id: int) -> Dict[str, Any]:
        payment, bundle = self._get_or_create_receipt_payment(user, "bundle", bundle_id)
        return self._format_receipt(payment, bundle, user)

    def download_receipt(self, user: User, course_id: int) -> Tuple[bytes, str]:
        receipt = self.get_receipt(user, course_id)
        return build_receipt_pdf(receipt), f"receipt-{receipt['transaction_id']}.pdf"

    def download_bundle_receipt(self, user: User, bundle_id: int) -> Tuple[bytes, str]:
        receipt = self.get_bundle_receipt(user, bundle_id)
        return build_receipt_pdf(receipt), f"receipt-{receipt['transaction_id']}.pdf"
