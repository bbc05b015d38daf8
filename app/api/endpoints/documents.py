from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession
from app.api.deps import get_current_user_id, get_document_service
from app.core.exceptions import ValidationFailedException
from app.database import get_db
from app.middleware.rate_limit import rate_limit_uploads
from app.models.document import DocumentType
from app.schemas.common import ApiResponse
from app.schemas.document import (
    DocumentResponse,
    DocumentUpdateRequest,
    DocumentUploadOptions,
    StorageInfoResponse,
    StorageReconcileResponse,
)
from app.services.document_service import DocumentService


router = APIRouter()


@router.post("/upload", response_model=ApiResponse[DocumentResponse], status_code=status.HTTP_201_CREATED)
@rate_limit_uploads()
async def upload_document(
    request: Request,
    file: Optional[UploadFile] = File(None),
    document_type: DocumentType = Form(DocumentType.OTHER, alias="type"),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    process_with_ai: bool = Form(False, alias="processWithAI"),
    process_with_ocr: bool = Form(False, alias="processWithOCR"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    document_service: DocumentService = Depends(get_document_service)
):
    """
    Upload a medical document (JPEG, PNG, GIF or PDF, up to 5 MB).

    OCR and AI analysis run after the response is sent; poll the document
    to observe ocrStatus and status.
    """
    if file is None:
        raise ValidationFailedException(detail="No file provided")

    document = await document_service.upload_document(
        db,
        user_id=user_id,
        file=file,
        options=DocumentUploadOptions(
            type=document_type,
            title=title,
            description=description,
            process_with_ai=process_with_ai,
            process_with_ocr=process_with_ocr,
        ),
    )
    return ApiResponse[DocumentResponse](data=DocumentResponse.model_validate(document))


@router.get("/my-documents", response_model=ApiResponse[List[DocumentResponse]])
async def get_my_documents(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    document_service: DocumentService = Depends(get_document_service)
):
    """All of the current user's documents, newest first."""
    documents = await document_service.get_user_documents(db, user_id)
    return ApiResponse[List[DocumentResponse]](
        data=[DocumentResponse.model_validate(doc) for doc in documents]
    )


@router.get("/storage/info", response_model=ApiResponse[StorageInfoResponse])
async def get_storage_info(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    document_service: DocumentService = Depends(get_document_service)
):
    """Storage used, quota, remaining bytes and percentage used."""
    info = await document_service.get_storage_info(db, user_id)
    return ApiResponse[StorageInfoResponse](data=StorageInfoResponse(**info))


@router.post("/storage/reconcile", response_model=ApiResponse[StorageReconcileResponse])
async def reconcile_storage(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    document_service: DocumentService = Depends(get_document_service)
):
    """Recompute the storage counter from the user's documents."""
    outcome = await document_service.reconcile_storage_usage(db, user_id)
    return ApiResponse[StorageReconcileResponse](data=StorageReconcileResponse(**outcome))


@router.get("/{document_id}", response_model=ApiResponse[DocumentResponse])
async def get_document(
    document_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    document_service: DocumentService = Depends(get_document_service)
):
    document = await document_service.get_document(db, document_id, user_id)
    return ApiResponse[DocumentResponse](data=DocumentResponse.model_validate(document))


@router.put("/{document_id}", response_model=ApiResponse[DocumentResponse])
async def update_document(
    document_id: str,
    payload: DocumentUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    document_service: DocumentService = Depends(get_document_service)
):
    """Partial update of title, description, notes and type."""
    document = await document_service.update_document(
        db, document_id, user_id, payload.model_dump(exclude_unset=True)
    )
    return ApiResponse[DocumentResponse](data=DocumentResponse.model_validate(document))


@router.delete("/{document_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def delete_document(
    document_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    document_service: DocumentService = Depends(get_document_service)
):
    """Delete a document, its stored objects and its analysis."""
    await document_service.delete_document(db, document_id, user_id)
    return ApiResponse()
