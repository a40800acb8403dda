# app/utils/storage.py
"""
S3-compatible blob store used for thumbnails, videos and materials.

Layout under the configured root prefix:

    courses/<course>/thumbnails/<ts>_<file>      (shared by all versions)
    courses/<course>/v<N>/videos/<ts>_<file>
    courses/<course>/v<N>/materials/<ts>_<file>
    archived-courses/<course>/v<N>/...           (copies made on archive)
    bundles/<bundle>/thumbnails/<ts>_<file>
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.core.exceptions import DependencyError
from app.utils.file_upload import FilePayload
from app.utils.localized import display_text

logger = logging.getLogger(__name__)


def _sanitize(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", name)


@dataclass
class UploadResult:
    s3_key: str
    public_url: str


class S3StorageService:
    """Key-addressed blob store backed by boto3."""

    def __init__(self, client: Any = None, bucket: Optional[str] = None):
        self._client = client
        self.bucket = bucket if bucket is not None else settings.aws_s3_bucket
        self.region = settings.aws_region
        self.root_prefix = settings.s3_root_prefix.strip("/")

    # ------------------------------------------------------------------
    # Client
    # ------------------------------------------------------------------
    @property
    def is_configured(self) -> bool:
        if self._client is not None:
            return True
        return bool(
            self.bucket
            and settings.aws_access_key_id
            and settings.aws_secret_access_key
        )

    @property
    def client(self):
        if self._client is None:
            if not self.is_configured:
                raise DependencyError("Object storage is not configured")
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.aws_s3_endpoint_url or None,
                region_name=self.region,
                aws_access_key_id=settings.aws_access_key_id,
                aws_secret_access_key=settings.aws_secret_access_key,
                config=Config(signature_version="s3v4"),
            )
        return self._client

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------
    def course_folder_path(self, course_title: Any, version: int = 1) -> str:
        name = _sanitize(display_text(course_title, default="course"))
        return f"{self.root_prefix}/courses/{name}/v{version}"

    def archive_folder_path(self, course_title: Any, version: int = 1) -> str:
        name = _sanitize(display_text(course_title, default="course"))
        return f"{self.root_prefix}/archived-courses/{name}/v{version}"

    def generate_course_file_key(
        self, file_type: str, filename: str, course_title: Any, version: int = 1
    ) -> str:
        timestamp = int(time.time() * 1000)
        file_name = _sanitize(filename)
        name = _sanitize(display_text(course_title, default="course"))

        if file_type == "thumbnail":
            return f"{self.root_prefix}/courses/{name}/thumbnails/{timestamp}_{file_name}"
        if file_type == "video":
            folder = "videos"
        elif file_type == "material":
            folder = "materials"
        else:
            folder = "misc"
        return f"{self.root_prefix}/courses/{name}/v{version}/{folder}/{timestamp}_{file_name}"

    def generate_bundle_thumbnail_key(self, filename: str, bundle_title: Any) -> str:
        timestamp = int(time.time() * 1000)
        name = _sanitize(display_text(bundle_title, default="bundle"))
        return f"{self.root_prefix}/bundles/{name}/thumbnails/{timestamp}_{_sanitize(filename)}"

    def public_url(self, s3_key: Optional[str]) -> Optional[str]:
        if not s3_key:
            return None
        if settings.aws_s3_endpoint_url:
            return f"{settings.aws_s3_endpoint_url.rstrip('/')}/{self.bucket}/{s3_key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{s3_key}"

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def upload(self, payload: FilePayload, s3_key: str) -> UploadResult:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=s3_key,
                Body=payload.contents,
                ContentType=payload.content_type,
                Metadata={"original-name": _sanitize(payload.filename)},
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"❌ Upload failed for {s3_key}: {e}")
            raise DependencyError(f"Failed to upload file: {e}")

        logger.info(f"✓ Uploaded {payload.size} bytes to {s3_key}")
        return UploadResult(s3_key=s3_key, public_url=self.public_url(s3_key))

    def upload_course_file(
        self, payload: FilePayload, file_type: str, course_title: Any, version: int = 1
    ) -> UploadResult:
        key = self.generate_course_file_key(
            file_type, payload.filename, course_title, version
        )
        return self.upload(payload, key)

    def delete(self, s3_key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=s3_key)
        except (BotoCoreError, ClientError) as e:
            raise DependencyError(f"Failed to delete {s3_key}: {e}")
        logger.info(f"✓ Deleted object {s3_key}")

    def sign_url(self, s3_key: Optional[str], expires_in: Optional[int] = None) -> Optional[str]:
        """Presigned GET URL; falls back to the public URL when signing fails."""
        if not s3_key:
            return None
        try:
            return self.client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": s3_key},
                ExpiresIn=expires_in or settings.signed_url_expiration,
            )
        except Exception as e:
            logger.warning(f"⚠️ Could not sign URL for {s3_key}, using public URL: {e}")
            return self.public_url(s3_key)

    def thumbnail_url(self, s3_key: Optional[str]) -> Optional[str]:
        return self.sign_url(s3_key, settings.thumbnail_url_expiration)

    def archive_course_content(self, course_title: Any, version: int = 1) -> int:
        """Copy a version folder to the archive area. Returns the number of objects copied."""
        source = self.course_folder_path(course_title, version)
        destination = self.archive_folder_path(course_title, version)
        try:
            listing = self.client.list_objects_v2(Bucket=self.bucket, Prefix=f"{source}/")
            objects = listing.get("Contents", [])
            for obj in objects:
                source_key = obj["Key"]
                self.client.copy_object(
                    Bucket=self.bucket,
                    CopySource={"Bucket": self.bucket, "Key": source_key},
                    Key=source_key.replace(source, destination, 1),
                )
        except (BotoCoreError, ClientError) as e:
            raise DependencyError(f"Failed to archive course content: {e}")
        return len(objects)


storage_service = S3StorageService()


def get_storage() -> S3StorageService:
    return storage_service
