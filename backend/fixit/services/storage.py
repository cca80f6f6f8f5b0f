"""Media registry with provider interface (GCS/S3)."""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from fixit.core.config import StorageProvider, get_settings
from fixit.core.errors import ExternalDependencyError, ValidationError

logger = logging.getLogger(__name__)

settings = get_settings()

THUMBNAIL_MIME_PREFIX = "image/"


@dataclass(frozen=True)
class MediaHandle:
    """What the registry returns for a stored blob. ``url`` is opaque to callers."""

    url: str
    public_id: str
    size: int
    thumbnail_url: Optional[str] = None


class StorageProviderInterface(ABC):
    """Abstract interface for storage providers."""

    @abstractmethod
    async def put_object(self, object_path: str, data: bytes, mime_type: str, metadata: dict[str, str]) -> str:
        """Store bytes and return the object's canonical URL."""
        pass

    @abstractmethod
    async def generate_presigned_download_url(
        self,
        object_path: str,
        ttl_seconds: int,
        download_name: Optional[str] = None,
    ) -> str:
        """Generate a presigned GET URL for download."""
        pass

    @abstractmethod
    async def delete_object(self, object_path: str) -> bool:
        """Delete an object from storage."""
        pass


class GCSStorageProvider(StorageProviderInterface):
    """Google Cloud Storage provider."""

    def __init__(self, bucket_name: str, project_id: Optional[str] = None):
        self.bucket_name = bucket_name
        self.project_id = project_id
        self._client = None

    @property
    def client(self):
        if self._client is None:
            from google.cloud import storage
            self._client = storage.Client(project=self.project_id)
        return self._client

    @property
    def bucket(self):
        return self.client.bucket(self.bucket_name)

    async def put_object(self, object_path: str, data: bytes, mime_type: str, metadata: dict[str, str]) -> str:
        blob = self.bucket.blob(object_path)
        blob.metadata = metadata
        await asyncio.to_thread(blob.upload_from_string, data, content_type=mime_type)
        return f"https://storage.googleapis.com/{self.bucket_name}/{object_path}"

    async def generate_presigned_download_url(
        self,
        object_path: str,
        ttl_seconds: int,
        download_name: Optional[str] = None,
    ) -> str:
        blob = self.bucket.blob(object_path)
        kwargs: dict[str, Any] = {}
        if download_name:
            kwargs["response_disposition"] = f'attachment; filename="{download_name}"'
        return blob.generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=ttl_seconds),
            method="GET",
            **kwargs,
        )

    async def delete_object(self, object_path: str) -> bool:
        from google.api_core.exceptions import NotFound

        blob = self.bucket.blob(object_path)
        try:
            await asyncio.to_thread(blob.delete)
            return True
        except NotFound:
            return False


class S3StorageProvider(StorageProviderInterface):
    """AWS S3 storage provider."""

    def __init__(
        self,
        bucket_name: str,
        region: str,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
    ):
        self.bucket_name = bucket_name
        self.region = region
        self._client = None
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key

    @property
    def client(self):
        if self._client is None:
            import boto3
            self._client = boto3.client(
                "s3",
                region_name=self.region,
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
            )
        return self._client

    async def put_object(self, object_path: str, data: bytes, mime_type: str, metadata: dict[str, str]) -> str:
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket_name,
            Key=object_path,
            Body=data,
            ContentType=mime_type,
            Metadata=metadata,
        )
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{object_path}"

    async def generate_presigned_download_url(
        self,
        object_path: str,
        ttl_seconds: int,
        download_name: Optional[str] = None,
    ) -> str:
        params = {"Bucket": self.bucket_name, "Key": object_path}
        if download_name:
            params["ResponseContentDisposition"] = f'attachment; filename="{download_name}"'
        return self.client.generate_presigned_url("get_object", Params=params, ExpiresIn=ttl_seconds)

    async def delete_object(self, object_path: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket_name, Key=object_path)
            return True
        except ClientError as e:
            logger.warning(f"[STORAGE] S3 delete failed for {object_path}: {e}")
            return False


class MediaRegistry:
    """Owns the mapping from logical media handles to transport URLs.

    Every provider call runs under the upload deadline; a timeout surfaces as
    a retryable ExternalDependencyError.
    """

    ALLOWED_MIME_TYPES = {
        "image/jpeg",
        "image/png",
        "image/webp",
        "image/gif",
        "image/heic",
        "video/mp4",
        "video/quicktime",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }

    def __init__(self, provider: StorageProviderInterface, timeout_seconds: Optional[int] = None):
        self.provider = provider
        self.timeout = timeout_seconds or settings.upload_timeout_seconds

    def generate_object_path(self, folder: str, file_name: str) -> str:
        """Generate a unique object path inside ``folder``."""
        file_uuid = uuid.uuid4()
        ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else "bin"
        return f"{folder.strip('/')}/{file_uuid}.{ext}"

    def validate(self, mime_type: str, size: int) -> None:
        if mime_type not in self.ALLOWED_MIME_TYPES:
            raise ValidationError(f"Unsupported mime type: {mime_type}")
        if size > settings.max_upload_size_bytes:
            raise ValidationError(f"File size exceeds maximum of {settings.max_upload_size_mb}MB")
        if size == 0:
            raise ValidationError("File is empty")

    async def _call(self, description: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"[STORAGE] {description} timed out after {self.timeout}s")
            raise ExternalDependencyError("Blob store timed out", retryable=True)
        except (ExternalDependencyError, ValidationError):
            raise
        except Exception as e:
            logger.error(f"[STORAGE] {description} failed: {e}")
            raise ExternalDependencyError(f"Blob store error: {e}")

    async def upload(
        self,
        data: bytes,
        mime_type: str,
        original_name: str,
        folder: str,
        meta: Optional[dict[str, Any]] = None,
    ) -> MediaHandle:
        self.validate(mime_type, len(data))
        object_path = self.generate_object_path(folder, original_name)
        metadata = {str(k): str(v) for k, v in (meta or {}).items()}
        metadata.setdefault("original_name", original_name)

        url = await self._call(f"upload {object_path}", self.provider.put_object(object_path, data, mime_type, metadata))
        thumbnail_url = None
        if mime_type.startswith(THUMBNAIL_MIME_PREFIX):
            thumbnail_url = await self.url_for(object_path, "thumbnail")

        logger.info(f"[STORAGE] Stored {object_path} ({len(data)} bytes)")
        return MediaHandle(url=url, public_id=object_path, size=len(data), thumbnail_url=thumbnail_url)

    async def delete(self, public_id: str) -> bool:
        deleted = await self._call(f"delete {public_id}", self.provider.delete_object(public_id))
        logger.info(f"[STORAGE] Deleted {public_id} (existed={deleted})")
        return deleted

    async def url_for(self, public_id: str, transform: Optional[str] = None) -> str:
        """Signed URL for a handle. ``transform="download"`` forces an attachment."""
        download_name = public_id.rsplit("/", 1)[-1] if transform == "download" else None
        return await self._call(
            f"sign {public_id}",
            self.provider.generate_presigned_download_url(public_id, settings.presign_ttl_seconds, download_name),
        )


_registry: Optional[MediaRegistry] = None


def get_media_registry() -> MediaRegistry:
    """Factory returning the process-wide registry for the configured provider."""
    global _registry
    if _registry is None:
        if settings.storage_provider == StorageProvider.GCS:
            provider = GCSStorageProvider(
                bucket_name=settings.bucket_name,
                project_id=settings.gcs_project_id,
            )
        else:
            provider = S3StorageProvider(
                bucket_name=settings.bucket_name,
                region=settings.aws_region or "us-east-1",
                access_key_id=settings.aws_access_key_id,
                secret_access_key=settings.aws_secret_access_key,
            )
        _registry = MediaRegistry(provider)
    return _registry
