from typing import List, Optional
from pydantic import AliasChoices, Field, field_validator
from app.models.document import DocumentType, DocumentStatus, OcrStatus
from app.schemas.common import CamelModel, UTCDateTime


class InsightResponse(CamelModel):
    """One tagged insight, e.g. {"category": "medication", "text": "Amoxicillin 500mg"}."""
    category: str
    text: str


class AnalysisResponse(CamelModel):
    """Enrichment output attached to a document."""
    extracted_text: Optional[str] = None
    summary: Optional[str] = None
    insights: List[InsightResponse] = Field(default_factory=list)
    processed_at: UTCDateTime


class DocumentResponse(CamelModel):
    """Response schema for document."""
    id: str
    user_id: str
    type: DocumentType
    title: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    file_url: str
    thumbnail_url: Optional[str] = None
    file_size: int
    mime_type: str
    status: DocumentStatus
    ocr_status: Optional[OcrStatus] = None
    uploaded_at: UTCDateTime
    ai_analysis: Optional[AnalysisResponse] = Field(
        default=None,
        validation_alias=AliasChoices("analysis", "aiAnalysis", "ai_analysis"),
        serialization_alias="aiAnalysis",
    )


class DocumentUploadOptions(CamelModel):
    """Multipart form fields accompanying an upload."""
    type: DocumentType = DocumentType.OTHER
    title: Optional[str] = None
    description: Optional[str] = None
    process_with_ai: bool = False
    process_with_ocr: bool = False


class DocumentUpdateRequest(CamelModel):
    """Partial update; only fields present in the body are applied."""
    title: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    notes: Optional[str] = None
    type: Optional[DocumentType] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be empty")
        return v

    @field_validator("description", "notes")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else v


class StorageInfoResponse(CamelModel):
    """Storage counters in bytes."""
    used: int
    quota: int
    remaining: int
    used_percentage: float


class StorageReconcileResponse(CamelModel):
    """Outcome of recomputing storage_used from the documents table."""
    previous: int
    actual: int
    drift: int
