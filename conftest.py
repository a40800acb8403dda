"""
Shared pytest fixtures.

The database URL has to point at SQLite before anything under ``app`` is
imported, because settings and the engine are created at import time.
"""

import hashlib
import hmac
import json
import os
import time
from io import BytesIO

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["AWS_S3_BUCKET"] = "test-bucket"
os.environ["AWS_S3_ENDPOINT_URL"] = ""
os.environ["RATE_LIMIT_STORAGE_URI"] = "memory://"
os.environ["DEBUG"] = "false"

import pytest
from botocore.exceptions import ClientError
from fastapi import UploadFile
from fastapi.testclient import TestClient
from starlette.datastructures import Headers

from app.core.database import Base, SessionLocal, engine, get_db
from app.core.limiter import limiter
from app.core.security import jwt_manager
from app.models import Bundle, Course, User
from app.schemas.bundle import BundleCreate
from app.schemas.course import CourseCreate
from app.services.audit_log import AuditActor
from app.services.bundle import BundleService
from app.services.course import CourseService
from app.utils.storage import S3StorageService, get_storage
from app.utils.stripe_gateway import CheckoutSession, StripeGateway, get_payment_gateway

WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_ACTOR = AuditActor(email="admin@example.com", user_id=None, ip_address="127.0.0.1")


# ==================== Fakes ====================


def _client_error(operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "500", "Message": f"{operation} failed"}}, operation)


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client."""

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.copied = []
        self.fail_uploads = False
        self.fail_deletes = False
        self.fail_copies = False

    def put_object(self, Bucket, Key, Body, ContentType=None, Metadata=None):
        if self.fail_uploads:
            raise _client_error("PutObject")
        self.objects[Key] = Body

    def delete_object(self, Bucket, Key):
        if self.fail_deletes:
            raise _client_error("DeleteObject")
        self.objects.pop(Key, None)
        self.deleted.append(Key)

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn):
        return f"https://signed.example.com/{Params['Key']}?expires={ExpiresIn}"

    def list_objects_v2(self, Bucket, Prefix):
        return {"Contents": [{"Key": key} for key in sorted(self.objects) if key.startswith(Prefix)]}

    def copy_object(self, Bucket, CopySource, Key):
        if self.fail_copies:
            raise _client_error("CopyObject")
        self.objects[Key] = self.objects.get(CopySource["Key"], b"")
        self.copied.append((CopySource["Key"], Key))


class FakeCheckoutGateway(StripeGateway):
    """Configured gateway that records sessions instead of calling Stripe."""

    def __init__(self):
        super().__init__(secret_key="sk_test_fake", webhook_secret=WEBHOOK_SECRET)
        self.sessions = []

    def create_checkout_session(self, **kwargs):
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({"id": session_id, **kwargs})
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/{session_id}")


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_completed_event(
    session_id: str,
    user_id: int,
    course_id: int = None,
    bundle_id: int = None,
    amount_total: int = 4999,
) -> str:
    metadata = {"user_id": str(user_id), "item_type": "bundle" if bundle_id else "course"}
    if course_id:
        metadata["course_id"] = str(course_id)
    if bundle_id:
        metadata["bundle_id"] = str(bundle_id)
    return json.dumps(
        {
            "id": f"evt_{session_id}",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session_id,
                    "amount_total": amount_total,
                    "currency": "usd",
                    "metadata": metadata,
                }
            },
        }
    )


def make_upload(filename: str, content_type: str, contents: bytes = b"data") -> UploadFile:
    return UploadFile(
        file=BytesIO(contents),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


# ==================== Database ====================


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def storage(s3_client):
    return S3StorageService(client=s3_client, bucket="test-bucket")


@pytest.fixture
def gateway():
    """Unconfigured checkout (development mode) with webhook verification enabled."""
    return StripeGateway(secret_key="", webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def stripe_gateway():
    return FakeCheckoutGateway()


# ==================== Factories ====================


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(role: str = "student", email: str = None, is_active: bool = True) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            first_name=f"User{counter['n']}",
            last_name="Test",
            role=role,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_course(db, storage):
    def _make_course(
        title="Intro to Trading",
        price=49.99,
        category="trading",
        level="beginner",
        **kwargs,
    ) -> Course:
        course_in = CourseCreate(
            title=title,
            description=kwargs.pop("description", "Learn the basics"),
            price=price,
            category=category,
            level=level,
            **kwargs,
        )
        return CourseService(db, storage).create_course(course_in, ADMIN_ACTOR)

    return _make_course


@pytest.fixture
def make_bundle(db, storage):
    def _make_bundle(course_ids, title="Starter Pack", price=79.0, **kwargs) -> Bundle:
        bundle_in = BundleCreate(
            title=title,
            description=kwargs.pop("description", "Everything to get started"),
            price=price,
            course_ids=course_ids,
            **kwargs,
        )
        return BundleService(db, storage).create_bundle(bundle_in, ADMIN_ACTOR)

    return _make_bundle


# ==================== HTTP ====================


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {jwt_manager.create_access_token(user)}"}


@pytest.fixture
def client(db, storage, gateway):
    from main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    limiter.reset()

    yield TestClient(app)

    app.dependency_overrides.clear()
