import asyncio
import io
import logging
import uuid
from typing import Optional
from urllib.parse import urlparse
from minio import Minio
from PIL import Image
from pydantic import BaseModel
from app.config import settings
from app.core.logging_utils import sanitize_log_message

logger = logging.getLogger(__name__)

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}
DEFAULT_EXTENSION = ".bin"

THUMBNAIL_SIZE = (300, 400)
THUMBNAIL_QUALITY = 80
THUMBNAIL_PREFIX = "thumbnails"

# Sent as a request header by minio; objects are never publicly readable
PRIVATE_OBJECT_METADATA = {"x-amz-acl": "private"}


class StorageGatewayError(Exception):
    """Raised when the object store rejects an upload or a primary delete."""


class UploadResult(BaseModel):
    file_url: str
    thumbnail_url: Optional[str] = None
    file_size: int


def extension_for(mime_type: str) -> str:
    return MIME_EXTENSIONS.get((mime_type or "").lower(), DEFAULT_EXTENSION)


def make_thumbnail(data: bytes) -> bytes:
    """
    Render a JPEG thumbnail that fits inside 300x400.

    Aspect ratio is preserved and smaller images are never enlarged.
    """
    with Image.open(io.BytesIO(data)) as image:
        thumb = image.convert("RGB")
    thumb.thumbnail(THUMBNAIL_SIZE, Image.Resampling.LANCZOS)
    buffer = io.BytesIO()
    thumb.save(buffer, format="JPEG", quality=THUMBNAIL_QUALITY)
    return buffer.getvalue()


class StorageGateway:
    """
    Document storage on an S3 compatible object store (AWS S3 or MinIO).

    Keys are namespaced by owner: ``{owner_id}/{uuid}{ext}`` for documents and
    ``{owner_id}/thumbnails/{uuid}_thumb.jpg`` for thumbnails. URLs are
    path-style ``{base_url}/{key}``; callers never get a public link.
    """

    def __init__(
        self,
        client: Optional[Minio] = None,
        bucket: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self._client = client
        self.bucket = bucket or settings.S3_BUCKET_NAME
        self.base_url = (base_url or settings.get_storage_base_url()).rstrip("/")

    @property
    def client(self) -> Minio:
        if self._client is None:
            self._client = Minio(
                settings.S3_ENDPOINT,
                access_key=settings.S3_ACCESS_KEY,
                secret_key=settings.S3_SECRET_KEY,
                secure=settings.S3_SECURE,
                region=settings.S3_REGION,
            )
        return self._client

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def key_from_url(self, url: str) -> str:
        """Recover the object key from a URL produced by url_for()."""
        prefix = f"{self.base_url}/"
        if url.startswith(prefix):
            return url[len(prefix):]
        # Stored under a different endpoint: drop the leading /bucket/ segment
        path = urlparse(url).path.lstrip("/")
        bucket_prefix = f"{self.bucket}/"
        return path[len(bucket_prefix):] if path.startswith(bucket_prefix) else path

    def _put_object(self, key: str, data: bytes, content_type: str) -> None:
        self.client.put_object(
            self.bucket,
            key,
            io.BytesIO(data),
            length=len(data),
            content_type=content_type,
            metadata=PRIVATE_OBJECT_METADATA,
        )

    def _remove_object(self, key: str) -> None:
        self.client.remove_object(self.bucket, key)

    async def upload(self, data: bytes, mime_type: str, owner_id: str) -> UploadResult:
        """
        Store a document and, for images, a thumbnail.

        Returns:
            UploadResult with the stored object's URL and size

        Raises:
            StorageGatewayError: If the primary upload fails
        """
        key = f"{owner_id}/{uuid.uuid4()}{extension_for(mime_type)}"

        try:
            await asyncio.to_thread(self._put_object, key, data, mime_type)
        except Exception as e:
            logger.error(
                sanitize_log_message("Document upload to object storage failed", Key=key, Error=str(e))
            )
            raise StorageGatewayError(f"Failed to upload document: {e}") from e

        thumbnail_url = None
        if (mime_type or "").lower().startswith("image/"):
            thumbnail_url = await self._upload_thumbnail(data, owner_id)

        logger.info(
            sanitize_log_message(
                "Document stored",
                Key=key,
                Size=len(data),
                Thumbnail=thumbnail_url is not None
            )
        )
        return UploadResult(file_url=self.url_for(key), thumbnail_url=thumbnail_url, file_size=len(data))

    async def _upload_thumbnail(self, data: bytes, owner_id: str) -> Optional[str]:
        """Thumbnail failures are logged and reported as None; the document upload stands."""
        key = f"{owner_id}/{THUMBNAIL_PREFIX}/{uuid.uuid4()}_thumb.jpg"
        try:
            thumbnail = await asyncio.to_thread(make_thumbnail, data)
            await asyncio.to_thread(self._put_object, key, thumbnail, "image/jpeg")
        except Exception as e:
            logger.warning(sanitize_log_message("Thumbnail generation failed", Key=key, Error=str(e)))
            return None
        return self.url_for(key)

    async def delete_document(self, url: str) -> None:
        """
        Delete a primary document object.

        Raises:
            StorageGatewayError: If the object store rejects the delete
        """
        key = self.key_from_url(url)
        try:
            await asyncio.to_thread(self._remove_object, key)
        except Exception as e:
            logger.error(sanitize_log_message("Document delete failed", Key=key, Error=str(e)))
            raise StorageGatewayError(f"Failed to delete document: {e}") from e
        logger.info(sanitize_log_message("Document object deleted", Key=key))

    async def delete_thumbnail(self, url: str) -> None:
        """Best-effort thumbnail delete; errors are logged, never raised."""
        key = self.key_from_url(url)
        try:
            await asyncio.to_thread(self._remove_object, key)
        except Exception as e:
            logger.warning(sanitize_log_message("Thumbnail delete failed", Key=key, Error=str(e)))
