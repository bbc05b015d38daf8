import logging
from typing import Any, Dict, List, Optional
from fastapi import UploadFile
from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from app.config import settings
from app.core.exceptions import (
    ExternalServiceException,
    FileTooLargeException,
    NotFoundException,
    StorageQuotaExceededException,
    UnsupportedFileTypeException,
    ValidationFailedException,
)
from app.core.logging_utils import sanitize_log_message
from app.external.storage_gateway import StorageGateway, StorageGatewayError, UploadResult
from app.models.document import Document, DocumentStatus, DocumentType, OcrStatus
from app.models.user import User
from app.schemas.document import DocumentUploadOptions
from app.services.enrichment_queue import EnrichmentQueue
from app.services.enrichment_service import EnrichmentJob, EnrichmentKind

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_TITLE = "Untitled Document"
FILE_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


def format_file_size(size: int) -> str:
    """
    Human readable size: 0 -> "0 Bytes", 6291456 -> "6 MB", 1536 -> "1.5 KB".
    """
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    exponent = 0
    while value >= 1024 and exponent < len(FILE_SIZE_UNITS) - 1:
        value /= 1024
        exponent += 1
    return f"{round(value, 2):g} {FILE_SIZE_UNITS[exponent]}"


def quota_exceeded_message(used: int, quota: int) -> str:
    remaining = max(quota - used, 0)
    return (
        f"Storage quota exceeded. You have {format_file_size(remaining)} remaining "
        f"of your {format_file_size(quota)} quota."
    )


class DocumentService:
    """Document upload, retrieval, update and deletion with per-user storage accounting."""

    def __init__(self, storage: StorageGateway, queue: Optional[EnrichmentQueue] = None):
        self.storage = storage
        self.queue = queue
        self.allowed_types = settings.ALLOWED_FILE_TYPES
        self.max_file_size = settings.MAX_FILE_SIZE

    async def _get_user(self, db: AsyncSession, user_id: str) -> User:
        # Counters are changed with SQL updates, so reload instead of trusting the identity map
        user = await db.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFoundException(detail="User not found")
        return user

    async def _reserve_storage(self, db: AsyncSession, user_id: str, size: int) -> bool:
        """
        Atomically add ``size`` to storage_used if it stays within the quota.

        Returns False when the conditional update matched no row.
        """
        result = await db.execute(
            update(User)
            .where(User.id == user_id, User.storage_used + size <= User.storage_quota)
            .values(storage_used=User.storage_used + size)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _release_storage(self, db: AsyncSession, user_id: str, size: int) -> None:
        """Subtract ``size`` from storage_used, never going below zero."""
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                storage_used=case(
                    (User.storage_used > size, User.storage_used - size),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )

    async def _discard_uploaded(self, upload: UploadResult) -> None:
        """Remove objects whose database row was never committed."""
        try:
            await self.storage.delete_document(upload.file_url)
        except StorageGatewayError as e:
            logger.error(
                sanitize_log_message("Orphaned document object left in storage", URL=upload.file_url, Error=str(e))
            )
        if upload.thumbnail_url:
            await self.storage.delete_thumbnail(upload.thumbnail_url)

    async def upload_document(
        self,
        db: AsyncSession,
        user_id: str,
        file: UploadFile,
        options: DocumentUploadOptions,
    ) -> Document:
        """
        Validate, store and record a document, then queue requested enrichment.

        Args:
            db: Database session
            user_id: Owner of the document
            file: Uploaded file
            options: Type, title, description and enrichment flags

        Returns:
            Created Document record

        Raises:
            FileTooLargeException, UnsupportedFileTypeException,
            StorageQuotaExceededException, NotFoundException,
            ExternalServiceException
        """
        content = await file.read()
        file_size = len(content)
        mime_type = (file.content_type or "").lower()

        if file_size == 0:
            raise ValidationFailedException(detail="No file provided")

        if file_size > self.max_file_size:
            raise FileTooLargeException(
                detail=f"File size ({format_file_size(file_size)}) exceeds "
                       f"{format_file_size(self.max_file_size)} limit"
            )

        if mime_type not in self.allowed_types:
            raise UnsupportedFileTypeException()

        user = await self._get_user(db, user_id)
        used, quota = user.storage_used, user.storage_quota
        if used + file_size > quota:
            logger.info(
                sanitize_log_message("Upload rejected by storage quota", UserID=user_id, Size=file_size, Used=used, Quota=quota)
            )
            raise StorageQuotaExceededException(detail=quota_exceeded_message(used, quota))

        try:
            upload = await self.storage.upload(content, mime_type, user_id)
        except StorageGatewayError as e:
            raise ExternalServiceException(detail="Failed to upload document") from e

        try:
            document = Document(
                user_id=user_id,
                type=options.type or DocumentType.OTHER,
                title=(options.title or "").strip() or DEFAULT_DOCUMENT_TITLE,
                description=(options.description or "").strip() or None,
                file_url=upload.file_url,
                thumbnail_url=upload.thumbnail_url,
                file_size=upload.file_size,
                mime_type=mime_type,
                status=DocumentStatus.PENDING_PROCESSING,
                ocr_status=OcrStatus.PENDING if options.process_with_ocr else None,
                analysis=None,
            )
            db.add(document)
            await db.flush()

            # Charged with the stored size, which is what delete will release
            if not await self._reserve_storage(db, user_id, upload.file_size):
                # Another upload won the race; report the counter as it is now
                user = await self._get_user(db, user_id)
                raise StorageQuotaExceededException(
                    detail=quota_exceeded_message(user.storage_used, user.storage_quota)
                )

            await db.commit()
        except Exception:
            await db.rollback()
            await self._discard_uploaded(upload)
            raise

        logger.info(
            sanitize_log_message(
                "Document uploaded",
                DocumentID=document.id,
                UserID=user_id,
                Size=document.file_size,
                MimeType=mime_type,
                OCR=options.process_with_ocr,
                AI=options.process_with_ai
            )
        )

        if options.process_with_ocr:
            await self._enqueue(db, document, content, EnrichmentKind.OCR)
        if options.process_with_ai:
            await self._enqueue(db, document, content, EnrichmentKind.AI)

        return document

    async def _enqueue(self, db: AsyncSession, document: Document, content: bytes, kind: EnrichmentKind) -> None:
        job = EnrichmentJob(kind=kind, document_id=document.id, data=content, mime_type=document.mime_type)
        if self.queue is not None and self.queue.submit(job):
            return

        logger.warning(
            sanitize_log_message("Enrichment not queued, marking failed", DocumentID=document.id, Kind=kind.value)
        )
        if kind == EnrichmentKind.OCR:
            document.ocr_status = OcrStatus.FAILED
        else:
            document.status = DocumentStatus.FAILED
        await db.commit()

    async def get_user_documents(self, db: AsyncSession, user_id: str) -> List[Document]:
        """All documents of a user, newest first, with their analysis."""
        result = await db.execute(
            select(Document)
            .where(Document.user_id == user_id)
            .order_by(Document.uploaded_at.desc())
        )
        return list(result.scalars().all())

    async def get_document(self, db: AsyncSession, document_id: str, user_id: str) -> Document:
        """
        Fetch a document owned by ``user_id``.

        Raises:
            NotFoundException: Missing, or owned by someone else
        """
        result = await db.execute(
            select(Document).where(Document.id == document_id, Document.user_id == user_id)
        )
        document = result.scalar_one_or_none()
        if document is None:
            raise NotFoundException(detail="Document not found")
        return document

    async def update_document(
        self,
        db: AsyncSession,
        document_id: str,
        user_id: str,
        changes: Dict[str, Any],
    ) -> Document:
        """Apply the provided fields only; with no fields the current state is returned."""
        document = await self.get_document(db, document_id, user_id)

        # title and type cannot be cleared
        changes = {
            field: value for field, value in changes.items()
            if value is not None or field not in ("title", "type")
        }
        if not changes:
            return document

        for field, value in changes.items():
            setattr(document, field, value)
        await db.commit()

        logger.info(
            sanitize_log_message("Document updated", DocumentID=document_id, Fields=sorted(changes))
        )
        return document

    async def delete_document(self, db: AsyncSession, document_id: str, user_id: str) -> None:
        """
        Delete the stored objects, the row (analysis cascades) and release its quota.

        Raises:
            NotFoundException: Missing, or owned by someone else
            ExternalServiceException: The primary object could not be deleted
        """
        document = await self.get_document(db, document_id, user_id)
        file_size = document.file_size

        try:
            await self.storage.delete_document(document.file_url)
        except StorageGatewayError as e:
            await db.rollback()
            raise ExternalServiceException(detail="Failed to delete document") from e

        if document.thumbnail_url:
            await self.storage.delete_thumbnail(document.thumbnail_url)

        await db.delete(document)
        await self._release_storage(db, user_id, file_size)
        await db.commit()

        logger.info(sanitize_log_message("Document deleted", DocumentID=document_id, UserID=user_id, Size=file_size))

    async def get_storage_info(self, db: AsyncSession, user_id: str) -> Dict[str, Any]:
        """Storage counters as stored on the user; no recomputation."""
        user = await self._get_user(db, user_id)
        used, quota = user.storage_used, user.storage_quota
        return {
            "used": used,
            "quota": quota,
            "remaining": quota - used,
            "used_percentage": (used / quota * 100) if quota else 0.0,
        }

    async def reconcile_storage_usage(self, db: AsyncSession, user_id: str) -> Dict[str, int]:
        """
        Recompute storage_used as the sum of the user's document sizes.

        Returns:
            {"previous": counter before, "actual": recomputed sum, "drift": previous - actual}
        """
        user = await self._get_user(db, user_id)
        previous = user.storage_used

        actual = await db.scalar(
            select(func.coalesce(func.sum(Document.file_size), 0)).where(Document.user_id == user_id)
        )
        actual = int(actual or 0)
        drift = previous - actual

        if drift:
            await db.execute(
                update(User)
                .where(User.id == user_id)
                .values(storage_used=actual)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            logger.warning(
                sanitize_log_message(
                    "Storage usage drift corrected", UserID=user_id, Previous=previous, Actual=actual, Drift=drift
                )
            )
        return {"previous": previous, "actual": actual, "drift": drift}

    async def reconcile_all_storage_usage(self, db: AsyncSession) -> Dict[str, Dict[str, int]]:
        """Reconcile every user; only users with drift are returned."""
        user_ids = (await db.execute(select(User.id))).scalars().all()
        drifted = {}
        for user_id in user_ids:
            outcome = await self.reconcile_storage_usage(db, user_id)
            if outcome["drift"]:
                drifted[user_id] = outcome
        return drifted
