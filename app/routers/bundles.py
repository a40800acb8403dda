# app/routers/bundles.py
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import get_admin_actor, get_current_admin, get_optional_user
from app.models.user import User
from app.schemas.bundle import (
    BundleCreate,
    BundleDetailResponse,
    BundleListResponse,
    BundleResponse,
    BundleUpdate,
)
from app.schemas.common import APIResponse, ok
from app.schemas.course import ArchiveRequest
from app.services.audit_log import AuditActor
from app.services.bundle import BundleService
from app.services.course_enrollment import EnrollmentService
from app.utils.storage import S3StorageService, get_storage

router = APIRouter(
    prefix="/bundles",
    tags=["Bundles"],
    responses={404: {"description": "Not found"}},
)


@router.get("/", response_model=APIResponse[BundleListResponse])
def list_bundles(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    category: Optional[str] = Query(None),
    featured: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
):
    """
    Active, public bundles. Available to everyone.
    """
    service = BundleService(db, storage)
    bundles, pagination = service.get_bundles(
        page=page, size=size, category=category, featured=featured, search=search
    )
    return ok(
        {"bundles": [service.serialize(b) for b in bundles], **pagination},
        "Bundles retrieved successfully",
    )


@router.get("/admin/all", response_model=APIResponse[BundleListResponse])
def list_all_bundles(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query("all", description="all, active, inactive or archived"),
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    current_admin: User = Depends(get_current_admin),
):
    service = BundleService(db, storage)
    bundles, pagination = service.get_bundles(
        page=page,
        size=size,
        status=status,
        category=category,
        search=search,
        public_only=False,
    )
    return ok(
        {"bundles": [service.serialize(b) for b in bundles], **pagination},
        "Bundles retrieved successfully",
    )


@router.get("/{bundle_id}", response_model=APIResponse[BundleDetailResponse])
def get_bundle(
    bundle_id: int,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    current_user: Optional[User] = Depends(get_optional_user),
):
    service = BundleService(db, storage)
    is_admin = current_user is not None and current_user.is_admin
    has_purchased = current_user is not None and EnrollmentService(db).has_purchased_bundle(
        current_user.id, bundle_id
    )

    # owners can still open a bundle that was hidden after they bought it
    bundle = service.get_public_bundle(bundle_id, include_hidden=is_admin or has_purchased)
    data = service.serialize(bundle)
    data["has_purchased"] = has_purchased
    return ok(data, "Bundle retrieved successfully")


@router.post("/", response_model=APIResponse[BundleResponse], status_code=201)
def create_bundle(
    bundle_in: BundleCreate,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    service = BundleService(db, storage)
    bundle = service.create_bundle(bundle_in, actor)
    return ok(service.serialize(bundle), "Bundle created successfully")


@router.put("/{bundle_id}", response_model=APIResponse[BundleResponse])
def update_bundle(
    bundle_id: int,
    bundle_in: BundleUpdate,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    service = BundleService(db, storage)
    bundle = service.update_bundle(bundle_id, bundle_in, actor)
    return ok(service.serialize(bundle), "Bundle updated successfully")


@router.post("/{bundle_id}/thumbnail", response_model=APIResponse[BundleResponse])
async def upload_bundle_thumbnail(
    bundle_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    service = BundleService(db, storage)
    bundle = await service.upload_thumbnail(bundle_id, file, actor)
    return ok(service.serialize(bundle), "Thumbnail uploaded successfully")


@router.post("/{bundle_id}/archive", response_model=APIResponse[BundleResponse])
def archive_bundle(
    bundle_id: int,
    request_in: ArchiveRequest = ArchiveRequest(),
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    service = BundleService(db, storage)
    bundle = service.archive_bundle(
        bundle_id, request_in.reason, request_in.grace_period_months, actor
    )
    return ok(service.serialize(bundle), "Bundle archived successfully")


@router.post("/{bundle_id}/unarchive", response_model=APIResponse[BundleResponse])
def unarchive_bundle(
    bundle_id: int,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    service = BundleService(db, storage)
    bundle = service.unarchive_bundle(bundle_id, actor)
    return ok(service.serialize(bundle), "Bundle unarchived successfully")


@router.delete("/{bundle_id}")
def delete_bundle(
    bundle_id: int,
    db: Session = Depends(get_db),
    storage: S3StorageService = Depends(get_storage),
    actor: AuditActor = Depends(get_admin_actor),
):
    """
    Delete a bundle. Its courses, and enrollments in them, are not affected.
    """
    result = BundleService(db, storage).delete_bundle(bundle_id, actor)
    return ok(result, "Bundle deleted successfully")
