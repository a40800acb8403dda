"""
Test checkout, webhook reconciliation and receipts
"""

import pytest

from app.core.exceptions import ConflictError, ValidationError, WebhookError
from app.models import (
    BundleEnrollment,
    CourseEnrollment,
    Payment,
    PurchasedBundle,
    PurchasedCourse,
)
from app.services.course_enrollment import EnrollmentService
from app.services.payment import PaymentService
from conftest import auth_headers, checkout_completed_event, sign_payload


def post_webhook(client, payload, signature=None):
    return client.post(
        "/payments/webhook",
        content=payload,
        headers={
            "stripe-signature": signature or sign_payload(payload),
            "content-type": "application/json",
        },
    )


# ==================== Checkout ====================


def test_dev_mode_checkout_grants_course_immediately(db, gateway, make_user, make_course):
    student = make_user()
    course = make_course(price=49.99)

    result = PaymentService(db, gateway).create_checkout_session(student, course_id=course.id)

    assert result["dev_mode"] is True
    assert result["session_id"].startswith("dev_session_")
    assert result["item_type"] == "course"
    assert f"course_id={course.id}" in result["url"]

    assert EnrollmentService(db).has_purchased_course(student.id, course.id)
    enrollment = db.query(CourseEnrollment).one()
    assert enrollment.access_granted_by == "payment"
    db.refresh(course)
    assert course.total_enrollments == 1

    payment = db.query(Payment).one()
    assert payment.stripe_session_id == result["session_id"]
    assert payment.status == "completed"
    assert float(payment.amount) == 49.99


def test_dev_mode_bundle_checkout_grants_every_member_course(
    db, gateway, make_user, make_course, make_bundle
):
    student = make_user()
    first = make_course(title="First")
    second = make_course(title="Second")
    bundle = make_bundle([first.id, second.id])

    result = PaymentService(db, gateway).create_checkout_session(student, bundle_id=bundle.id)

    assert result["item_type"] == "bundle"
    assert db.query(PurchasedBundle).filter(PurchasedBundle.user_id == student.id).count() == 1
    assert db.query(BundleEnrollment).count() == 1
    assert sorted(EnrollmentService(db).get_user_purchased_course_ids(student.id)) == sorted(
        [first.id, second.id]
    )
    assert db.query(CourseEnrollment).filter(CourseEnrollment.user_id == student.id).count() == 2
    payment = db.query(Payment).one()
    assert payment.bundle_id == bundle.id
    assert payment.course_id is None


def test_checkout_rejects_both_or_neither_item(db, gateway, make_user, make_course, make_bundle):
    student = make_user()
    course = make_course()
    bundle = make_bundle([course.id])
    service = PaymentService(db, gateway)

    with pytest.raises(ValidationError) as exc_info:
        service.create_checkout_session(student, course_id=course.id, bundle_id=bundle.id)
    assert exc_info.value.message == "Cannot purchase both course and bundle in one session"

    with pytest.raises(ValidationError):
        service.create_checkout_session(student)

    assert db.query(Payment).count() == 0


def test_checkout_rejects_already_owned_course(db, gateway, make_user, make_course):
    student = make_user()
    course = make_course()
    service = PaymentService(db, gateway)
    service.create_checkout_session(student, course_id=course.id)

    with pytest.raises(ConflictError) as exc_info:
        service.create_checkout_session(student, course_id=course.id)

    assert exc_info.value.status_code == 400
    assert db.query(Payment).count() == 1


def test_checkout_rejects_unavailable_course(db, gateway, make_user, make_course):
    student = make_user()
    course = make_course(is_public=False)

    with pytest.raises(ValidationError):
        PaymentService(db, gateway).create_checkout_session(student, course_id=course.id)

    assert db.query(CourseEnrollment).count() == 0


def test_configured_checkout_defers_grant_to_webhook(db, stripe_gateway, make_user, make_course):
    student = make_user()
    course = make_course(price=49.99)

    result = PaymentService(db, stripe_gateway).create_checkout_session(
        student, course_id=course.id
    )

    assert result["dev_mode"] is False
    assert result["session_id"] == "cs_test_1"
    assert result["url"] == "https://checkout.stripe.test/cs_test_1"

    sent = stripe_gateway.sessions[0]
    assert sent["metadata"] == {
        "user_id": str(student.id),
        "user_email": student.email,
        "item_type": "course",
        "course_id": str(course.id),
    }
    assert sent["amount"] == course.price
    assert "{CHECKOUT_SESSION_ID}" in sent["success_url"]

    assert not EnrollmentService(db).has_purchased_course(student.id, course.id)
    assert db.query(Payment).count() == 0


def test_checkout_api_both_ids_returns_400(client, make_user, make_course, make_bundle):
    student = make_user()
    course = make_course()
    bundle = make_bundle([course.id])

    response = client.post(
        "/payments/checkout",
        json={"course_id": course.id, "bundle_id": bundle.id},
        headers=auth_headers(student),
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


# ==================== Webhook ====================


def test_webhook_grants_course_once_when_replayed(client, db, make_user, make_course):
    """Test delivering the same completed session twice leaves one payment and one entitlement"""
    student = make_user()
    course = make_course(price=49.99)
    payload = checkout_completed_event("cs_test_42", student.id, course_id=course.id)

    first = post_webhook(client, payload)
    second = post_webhook(client, payload)

    assert first.status_code == 200
    assert first.json() == {
        "received": True,
        "event_type": "checkout.session.completed",
        "processed": True,
    }
    assert second.status_code == 200

    assert db.query(Payment).count() == 1
    assert db.query(PurchasedCourse).count() == 1
    assert db.query(CourseEnrollment).count() == 1

    payment = db.query(Payment).one()
    assert payment.stripe_session_id == "cs_test_42"
    assert float(payment.amount) == 49.99
    assert payment.currency == "usd"


def test_webhook_after_dev_purchase_reuses_payment_row(
    client, db, gateway, make_user, make_course
):
    student = make_user()
    course = make_course()
    PaymentService(db, gateway).create_checkout_session(student, course_id=course.id)

    response = post_webhook(
        client, checkout_completed_event("cs_live_1", student.id, course_id=course.id)
    )

    assert response.status_code == 200
    payments = db.query(Payment).all()
    assert len(payments) == 1
    assert payments[0].stripe_session_id == "cs_live_1"


def test_webhooks_for_two_sessions_keep_both_payments(client, db, make_user, make_course):
    """Test two charged sessions for the same course stay as two ledger rows"""
    student = make_user()
    course = make_course(price=49.99)

    first = post_webhook(
        client, checkout_completed_event("cs_live_A", student.id, course_id=course.id)
    )
    second = post_webhook(
        client, checkout_completed_event("cs_live_B", student.id, course_id=course.id)
    )

    assert first.status_code == 200
    assert second.status_code == 200

    sessions = [p.stripe_session_id for p in db.query(Payment).order_by(Payment.id)]
    assert sessions == ["cs_live_A", "cs_live_B"]
    assert db.query(PurchasedCourse).count() == 1
    assert db.query(CourseEnrollment).count() == 1


def test_webhook_for_bundle(client, db, make_user, make_course, make_bundle):
    student = make_user()
    course = make_course()
    bundle = make_bundle([course.id], price=79.0)

    response = post_webhook(
        client,
        checkout_completed_event("cs_bundle_1", student.id, bundle_id=bundle.id, amount_total=7900),
    )

    assert response.status_code == 200
    assert db.query(PurchasedBundle).count() == 1
    assert EnrollmentService(db).has_purchased_course(student.id, course.id)
    assert float(db.query(Payment).one().amount) == 79.0


def test_webhook_rejects_bad_signature(client, db, make_user, make_course):
    student = make_user()
    course = make_course()
    payload = checkout_completed_event("cs_test_bad", student.id, course_id=course.id)

    response = post_webhook(client, payload, signature=sign_payload(payload, secret="whsec_wrong"))

    assert response.status_code == 400
    assert db.query(Payment).count() == 0
    assert db.query(PurchasedCourse).count() == 0


def test_webhook_rejects_non_utf8_body(client, db):
    response = client.post(
        "/payments/webhook",
        content=b"\xff\xfe{}",
        headers={"stripe-signature": "t=1,v1=abc", "content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert "UTF-8" in response.json()["message"]
    assert db.query(Payment).count() == 0


def test_webhook_without_signature_header(client):
    response = client.post("/payments/webhook", content="{}")

    assert response.status_code == 400


def test_webhook_ignores_other_event_types(client, db):
    payload = '{"id": "evt_1", "type": "payment_intent.created", "data": {"object": {}}}'

    response = post_webhook(client, payload)

    assert response.status_code == 200
    assert response.json()["processed"] is False
    assert db.query(Payment).count() == 0


def test_webhook_missing_metadata_returns_500(client, db):
    payload = (
        '{"id": "evt_2", "type": "checkout.session.completed",'
        ' "data": {"object": {"id": "cs_test_7", "metadata": {}}}}'
    )

    response = post_webhook(client, payload)

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert db.query(Payment).count() == 0


def test_webhook_unknown_user_raises(db, gateway, make_course):
    course = make_course()
    payload = checkout_completed_event("cs_test_8", 999, course_id=course.id)

    with pytest.raises(WebhookError):
        PaymentService(db, gateway).handle_webhook(payload.encode("utf-8"), sign_payload(payload))

    assert db.query(Payment).count() == 0


# ==================== Purchase status ====================


def test_check_purchase_reflects_webhook(client, make_user, make_course):
    student = make_user()
    course = make_course()
    headers = auth_headers(student)

    before = client.get(f"/payments/check-purchase/{course.id}", headers=headers)
    assert before.json()["data"] == {"course_id": course.id, "has_purchased": False}

    post_webhook(client, checkout_completed_event("cs_test_9", student.id, course_id=course.id))

    after = client.get(f"/payments/check-purchase/{course.id}", headers=headers)
    assert after.json()["data"] == {"course_id": course.id, "has_purchased": True}


def test_payment_config_reports_dev_mode(client):
    response = client.get("/payments/config")

    assert response.status_code == 200
    assert response.json()["data"]["dev_mode"] is True


# ==================== Receipts ====================


def test_receipt_for_webhook_purchase(client, make_user, make_course):
    student = make_user()
    course = make_course(title="Option Trading", category="option-trading", price=25)
    post_webhook(
        client,
        checkout_completed_event("cs_test_10", student.id, course_id=course.id, amount_total=2500),
    )

    response = client.get(f"/payments/receipt/course/{course.id}", headers=auth_headers(student))

    assert response.status_code == 200
    receipt = response.json()["data"]
    assert receipt["item_title"] == "Option Trading"
    assert receipt["amount"] == 25.0
    assert receipt["currency"] == "USD"
    assert receipt["transaction_id"] == "cs_test_10"
    assert receipt["customer_email"] == student.email
    assert len(receipt["receipt_number"]) == 8


def test_receipt_creates_fallback_payment_for_admin_granted_course(
    db, make_user, make_course
):
    student = make_user()
    course = make_course()
    EnrollmentService(db).grant_admin_access(student.id, course.id)

    receipt = PaymentService(db).get_receipt(student, course.id)

    assert receipt["transaction_id"].startswith("fallback_")
    payment = db.query(Payment).one()
    assert payment.payment_metadata["fallback"] is True

    again = PaymentService(db).get_receipt(student, course.id)
    assert again["transaction_id"] == receipt["transaction_id"]
    assert db.query(Payment).count() == 1


def test_receipt_not_found_when_not_owned(client, make_user, make_course):
    student = make_user()
    course = make_course()

    response = client.get(f"/payments/receipt/course/{course.id}", headers=auth_headers(student))

    assert response.status_code == 404
    assert response.json()["message"].startswith("Payment not found")


def test_download_receipt_pdf(client, db, gateway, make_user, make_course):
    student = make_user()
    course = make_course()
    session = PaymentService(db, gateway).create_checkout_session(student, course_id=course.id)

    response = client.get(
        f"/payments/receipt/course/{course.id}/download", headers=auth_headers(student)
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")
    assert f'filename="receipt-{session["session_id"]}.pdf"' in response.headers[
        "content-disposition"
    ]
